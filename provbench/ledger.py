from __future__ import annotations

import datetime as dt
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Sequence, Union

from .provenance import (
    InvalidTimestampError,
    build_provenance_document,
    build_segment_document,
    format_timestamp,
)

LOGGER = logging.getLogger("provbench.ledger")

Timestamp = Union[dt.datetime, str]


class LedgerError(Exception):
    """Base class for failures reported by a ledger client."""


class SubmissionDispatchError(LedgerError):
    """Raised synchronously when a write cannot even be handed to the ledger."""


class SubmissionCompletionError(LedgerError):
    """Carried by a write handle that resolved to a rejection."""


class QueryError(LedgerError):
    """Raised when a query by fingerprint fails."""


class NotFoundError(QueryError):
    """Raised when the ledger holds no document for the queried key."""


@dataclass(frozen=True)
class AgentInfo:
    atype: str
    id: str
    name: str
    identity_provider: str

    def to_dict(self) -> dict[str, str]:
        return {
            "atype": self.atype,
            "id": self.id,
            "name": self.name,
            "identity_provider": self.identity_provider,
        }


@dataclass(frozen=True)
class LocationInfo:
    document_unique_id: str
    id: str
    name: str
    locality: str

    def to_dict(self) -> dict[str, str]:
        return {
            "document_unique_id": self.document_unique_id,
            "id": self.id,
            "name": self.name,
            "locality": self.locality,
        }


@dataclass(frozen=True)
class WriteMetadata:
    """Synthetic metadata attached to every write of a load-test run."""

    agent: AgentInfo = field(
        default_factory=lambda: AgentInfo("atype", "id", "name", "idpNameId")
    )
    location: LocationInfo = field(
        default_factory=lambda: LocationInfo("documentUniqueId", "id", "name", "locality")
    )
    action: str = "EX:CREATE"
    segments: tuple[str, ...] = ()


class LedgerClient(Protocol):
    def submit_write(
        self,
        fingerprint: str,
        agent: AgentInfo,
        location: LocationInfo,
        action: str,
        timestamp: Timestamp,
        payload: Sequence[str] | None = None,
    ) -> Future[bool]:
        ...

    def query_by_fingerprint(self, key: str) -> str:
        ...

    def close(self) -> None:
        ...


def timestamp_text(timestamp: Timestamp) -> str:
    if isinstance(timestamp, dt.datetime):
        return format_timestamp(timestamp)
    return timestamp


@dataclass(frozen=True)
class HistoryEntry:
    tx_id: str
    timestamp: str
    document: str


class InMemoryLedgerClient:
    """Process-local ledger that commits writes on a worker pool.

    Useful for exercising the harness without a gateway: writes resolve after
    ``write_delay_s`` on a pool thread, queries block for ``query_delay_s``.
    Fingerprints listed in ``reject`` resolve to ``SubmissionCompletionError``.
    """

    def __init__(
        self,
        write_delay_s: float = 0.0,
        query_delay_s: float = 0.0,
        reject: Iterable[str] = (),
        max_workers: int = 16,
    ) -> None:
        self._write_delay_s = write_delay_s
        self._query_delay_s = query_delay_s
        self._reject = frozenset(reject)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ledger-commit"
        )
        self._lock = threading.Lock()
        self._state: dict[str, list[HistoryEntry]] = {}
        self._tx_ids = itertools.count(start=1)
        self._closed = False

    def submit_write(
        self,
        fingerprint: str,
        agent: AgentInfo,
        location: LocationInfo,
        action: str,
        timestamp: Timestamp,
        payload: Sequence[str] | None = None,
    ) -> Future[bool]:
        if self._closed:
            raise SubmissionDispatchError("ledger client is closed")
        try:
            return self._executor.submit(
                self._commit,
                fingerprint,
                agent,
                location,
                action,
                timestamp_text(timestamp),
                tuple(payload or ()),
            )
        except RuntimeError as exc:
            raise SubmissionDispatchError(f"unable to dispatch write for {fingerprint}") from exc

    def query_by_fingerprint(self, key: str) -> str:
        return self._lookup(key)[-1].document

    def query_with_history(self, key: str) -> dict[str, Any]:
        """Return the latest document under ``Original`` and every write under ``History``."""
        entries = self._lookup(key)
        return {
            "Original": entries[-1].document,
            "History": [
                {
                    "TxId": entry.tx_id,
                    "Value": entry.document,
                    "Timestamp": entry.timestamp,
                    "IsDelete": False,
                }
                for entry in entries
            ],
        }

    def history(self, key: str) -> list[HistoryEntry]:
        with self._lock:
            return list(self._state.get(key, ()))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._state)

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)

    def _lookup(self, key: str) -> list[HistoryEntry]:
        if self._query_delay_s > 0:
            time.sleep(self._query_delay_s)
        with self._lock:
            entries = self._state.get(key)
            if not entries:
                raise NotFoundError(f"hash not found: {key}")
            return list(entries)

    def _commit(
        self,
        fingerprint: str,
        agent: AgentInfo,
        location: LocationInfo,
        action: str,
        generated_at: str,
        segments: tuple[str, ...],
    ) -> bool:
        if self._write_delay_s > 0:
            time.sleep(self._write_delay_s)
        if fingerprint in self._reject:
            raise SubmissionCompletionError(f"ledger rejected write for {fingerprint}")
        try:
            documents = [
                (fingerprint, build_provenance_document(fingerprint, agent, location, action, generated_at))
            ]
            documents.extend(
                (
                    segment,
                    build_segment_document(segment, fingerprint, agent, location, action, generated_at),
                )
                for segment in segments
            )
        except InvalidTimestampError as exc:
            raise SubmissionCompletionError(str(exc)) from exc

        with self._lock:
            for key, document in documents:
                entry = HistoryEntry(
                    tx_id=f"tx-{next(self._tx_ids)}", timestamp=generated_at, document=document
                )
                self._state.setdefault(key, []).append(entry)
        return True


__all__ = [
    "AgentInfo",
    "HistoryEntry",
    "InMemoryLedgerClient",
    "LedgerClient",
    "LedgerError",
    "LocationInfo",
    "NotFoundError",
    "QueryError",
    "SubmissionCompletionError",
    "SubmissionDispatchError",
    "WriteMetadata",
    "timestamp_text",
]
