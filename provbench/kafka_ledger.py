from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Sequence

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError, NoBrokersAvailable

from .ledger import (
    AgentInfo,
    LedgerError,
    LocationInfo,
    NotFoundError,
    QueryError,
    SubmissionCompletionError,
    SubmissionDispatchError,
    Timestamp,
    timestamp_text,
)

LOGGER = logging.getLogger("provbench.kafka_ledger")

POLL_TIMEOUT_MS_DEFAULT = 1_000
CONNECT_DEADLINE_S = 60.0


def create_producer(broker: str) -> KafkaProducer:
    backoff = 1.0
    max_backoff = 10.0
    deadline = time.time() + CONNECT_DEADLINE_S

    while True:
        try:
            return KafkaProducer(
                bootstrap_servers=broker,
                key_serializer=lambda v: v.encode("utf-8") if v else None,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            )
        except NoBrokersAvailable as exc:
            if time.time() >= deadline:
                raise LedgerError(
                    "failed to connect to Kafka broker within 60 seconds"
                ) from exc

            time.sleep(backoff)
            backoff = min(backoff * 1.5, max_backoff)


def create_consumer(broker: str, topic: str, group_id: str) -> KafkaConsumer:
    backoff = 1.0
    max_backoff = 10.0
    deadline = time.time() + CONNECT_DEADLINE_S

    while True:
        try:
            return KafkaConsumer(
                topic,
                bootstrap_servers=broker,
                group_id=group_id,
                value_deserializer=lambda v: json.loads(v.decode("utf-8")),
                key_deserializer=lambda v: v.decode("utf-8") if v else None,
                enable_auto_commit=True,
                auto_offset_reset="latest",
            )
        except NoBrokersAvailable as exc:
            if time.time() >= deadline:
                raise LedgerError(
                    "failed to connect to Kafka broker within 60 seconds"
                ) from exc

            time.sleep(backoff)
            backoff = min(backoff * 1.5, max_backoff)


@dataclass
class _PendingReply:
    kind: str
    future: Future


class KafkaLedgerClient:
    """Ledger client speaking a JSON request/reply protocol with a ledger gateway.

    Writes and queries are produced to ``request_topic`` keyed by a request id.
    The gateway answers on ``reply_topic`` with the same id; a background
    consumer thread resolves the matching future.
    """

    def __init__(
        self,
        broker: str,
        request_topic: str,
        reply_topic: str,
        group_id: str,
        query_timeout_s: float | None = 60.0,
        poll_timeout_ms: int = POLL_TIMEOUT_MS_DEFAULT,
        assignment_timeout_s: float = 30.0,
        producer: KafkaProducer | None = None,
        consumer: KafkaConsumer | None = None,
    ) -> None:
        self._request_topic = request_topic
        self._query_timeout_s = query_timeout_s
        self._poll_timeout_ms = poll_timeout_ms
        self._producer = producer if producer is not None else create_producer(broker)
        self._consumer = (
            consumer if consumer is not None else create_consumer(broker, reply_topic, group_id)
        )

        self._lock = threading.Lock()
        self._pending: dict[str, _PendingReply] = {}
        self._stop_event = threading.Event()
        self._assigned = threading.Event()
        self._thread = threading.Thread(
            target=self._consume_replies, name="ledger-replies", daemon=True
        )
        self._thread.start()
        if not self._assigned.wait(timeout=assignment_timeout_s):
            LOGGER.warning(
                "Reply consumer has no partition assignment after %.1fs; early replies may be missed",
                assignment_timeout_s,
            )

    def submit_write(
        self,
        fingerprint: str,
        agent: AgentInfo,
        location: LocationInfo,
        action: str,
        timestamp: Timestamp,
        payload: Sequence[str] | None = None,
    ) -> Future[bool]:
        request = {
            "type": "set",
            "fingerprint": fingerprint,
            "agent": agent.to_dict(),
            "location": location.to_dict(),
            "action": action,
            "timestamp": timestamp_text(timestamp),
            "segments": list(payload or ()),
        }
        try:
            return self._send("set", request)
        except KafkaError as exc:
            raise SubmissionDispatchError(f"unable to dispatch write for {fingerprint}") from exc

    def query_by_fingerprint(self, key: str) -> str:
        try:
            future = self._send("get", {"type": "get", "key": key})
        except KafkaError as exc:
            raise QueryError(f"unable to send query for {key}") from exc
        try:
            return future.result(timeout=self._query_timeout_s)
        except FutureTimeoutError as exc:
            self._forget(future)
            raise QueryError(
                f"no reply for {key} within {self._query_timeout_s} seconds"
            ) from exc

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self) -> None:
        self._stop_event.set()
        self._thread.join(timeout=5.0)
        try:
            self._producer.flush()
        finally:
            self._producer.close()
            self._consumer.close()

        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for entry in pending:
            self._fail(entry, "ledger client closed before a reply arrived")

    def _send(self, kind: str, request: dict[str, Any]) -> Future:
        request_id = uuid.uuid4().hex
        request["id"] = request_id
        entry = _PendingReply(kind=kind, future=Future())
        with self._lock:
            self._pending[request_id] = entry
        try:
            send_future = self._producer.send(self._request_topic, key=request_id, value=request)
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
            raise
        send_future.add_errback(self._on_send_error, request_id)
        return entry.future

    def _on_send_error(self, request_id: str, exc: BaseException) -> None:
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is not None:
            self._fail(entry, f"broker rejected request {request_id}: {exc}")

    def _forget(self, future: Future) -> None:
        with self._lock:
            for request_id, entry in list(self._pending.items()):
                if entry.future is future:
                    del self._pending[request_id]

    def _consume_replies(self) -> None:
        while not self._stop_event.is_set():
            try:
                records = self._consumer.poll(timeout_ms=self._poll_timeout_ms)
            except KafkaError:
                LOGGER.exception("failed to poll ledger replies")
                self._stop_event.wait(1.0)
                continue
            if not self._assigned.is_set() and self._consumer.assignment():
                self._assigned.set()
            if not records:
                continue
            for batch in records.values():
                for message in batch:
                    try:
                        payload = message.value or {}
                        request_id = payload.get("id") or message.key
                        if request_id:
                            self._handle_reply(request_id, payload)
                    except Exception:  # noqa: BLE001
                        LOGGER.exception("failed to process ledger reply")

    def _handle_reply(self, request_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        if not entry.future.set_running_or_notify_cancel():
            return

        status = payload.get("status")
        error = payload.get("error") or f"ledger replied with status {status!r}"
        if status == "ok":
            entry.future.set_result(True if entry.kind == "set" else payload.get("document") or "")
        elif entry.kind == "set":
            entry.future.set_exception(SubmissionCompletionError(error))
        elif status == "not_found":
            entry.future.set_exception(NotFoundError(error))
        else:
            entry.future.set_exception(QueryError(error))

    @staticmethod
    def _fail(entry: _PendingReply, message: str) -> None:
        if not entry.future.set_running_or_notify_cancel():
            return
        if entry.kind == "set":
            entry.future.set_exception(SubmissionCompletionError(message))
        else:
            entry.future.set_exception(QueryError(message))


__all__ = [
    "KafkaLedgerClient",
    "POLL_TIMEOUT_MS_DEFAULT",
    "create_consumer",
    "create_producer",
]
