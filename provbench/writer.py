from __future__ import annotations

import datetime as dt
import logging
import time
from concurrent import futures
from dataclasses import dataclass, field
from typing import Callable

from .corpus import Corpus, DocumentRecord
from .ledger import LedgerClient, WriteMetadata
from .metrics import Category, MetricsSink, elapsed_ms

LOGGER = logging.getLogger("provbench.writer")


@dataclass
class PendingWrite:
    record: DocumentRecord
    future: futures.Future


@dataclass(frozen=True)
class WriteOutcome:
    fingerprint: str
    succeeded: bool
    error: str | None = None


@dataclass(frozen=True)
class WriteReport:
    total_dispatch_ms: int
    total_drain_ms: int
    total_ms: int
    success_count: int
    failure_count: int
    outcomes: tuple[WriteOutcome, ...] = field(default=(), repr=False)

    @property
    def submitted(self) -> int:
        return self.success_count + self.failure_count


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class WriteDriver:
    """Fans writes out to the ledger, then waits for every one of them.

    Dispatch latency (the time spent inside ``submit_write``) and drain time
    (waiting for the backlog to resolve) are measured separately. Failures are
    tallied and logged, never retried.
    """

    def __init__(
        self,
        client: LedgerClient,
        sink: MetricsSink,
        metadata: WriteMetadata | None = None,
        drain_timeout_s: float | None = None,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._sink = sink
        self._metadata = metadata or WriteMetadata()
        self._drain_timeout_s = drain_timeout_s
        self._clock = clock

    def write_all(self, corpus: Corpus) -> WriteReport:
        started = time.perf_counter()
        pending = self._dispatch(corpus)
        total_dispatch_ms = elapsed_ms(started)
        LOGGER.info("Write took: %d ms for %d dispatch(es); waiting", total_dispatch_ms, len(pending))

        drain_started = time.perf_counter()
        outcomes = self._drain(pending)
        total_drain_ms = elapsed_ms(drain_started)

        failure_count = sum(1 for outcome in outcomes if not outcome.succeeded)
        report = WriteReport(
            total_dispatch_ms=total_dispatch_ms,
            total_drain_ms=total_drain_ms,
            total_ms=elapsed_ms(started),
            success_count=len(outcomes) - failure_count,
            failure_count=failure_count,
            outcomes=tuple(outcomes),
        )
        LOGGER.info("Wait done: %d ms, errors %d", report.total_drain_ms, report.failure_count)
        LOGGER.info("Took the whole write phase: %d ms", report.total_ms)
        return report

    def _dispatch(self, corpus: Corpus) -> list[PendingWrite]:
        metadata = self._metadata
        pending: list[PendingWrite] = []
        for record in corpus:
            start = time.perf_counter()
            future = self._client.submit_write(
                record.fingerprint,
                metadata.agent,
                metadata.location,
                metadata.action,
                self._clock(),
                metadata.segments or None,
            )
            duration_ms = elapsed_ms(start)
            self._sink.record(Category.WRITE, duration_ms, "dispatched")
            LOGGER.debug("Dispatched %s in %d ms", record.fingerprint, duration_ms)
            pending.append(PendingWrite(record=record, future=future))
        return pending

    def _drain(self, pending: list[PendingWrite]) -> list[WriteOutcome]:
        if not pending:
            return []
        _, not_done = futures.wait(
            [item.future for item in pending],
            timeout=self._drain_timeout_s,
            return_when=futures.ALL_COMPLETED,
        )
        if not_done:
            LOGGER.error(
                "%d write(s) still pending after %.1fs drain deadline",
                len(not_done),
                self._drain_timeout_s,
            )

        outcomes: list[WriteOutcome] = []
        for item in pending:
            fingerprint = item.record.fingerprint
            if item.future in not_done:
                item.future.cancel()
                outcomes.append(WriteOutcome(fingerprint, False, "drain timeout"))
                continue
            try:
                accepted = item.future.result()
            except futures.CancelledError:
                LOGGER.warning("Write for %s was cancelled", fingerprint)
                outcomes.append(WriteOutcome(fingerprint, False, "cancelled"))
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Write for %s failed: %s", fingerprint, exc)
                outcomes.append(WriteOutcome(fingerprint, False, str(exc)))
            else:
                if accepted is False:
                    LOGGER.warning("Write for %s was not accepted by the ledger", fingerprint)
                    outcomes.append(WriteOutcome(fingerprint, False, "not accepted"))
                else:
                    outcomes.append(WriteOutcome(fingerprint, True))
        return outcomes


__all__ = ["PendingWrite", "WriteDriver", "WriteOutcome", "WriteReport"]
