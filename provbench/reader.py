from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field

from .corpus import Corpus
from .fingerprint import DEFAULT_ALGORITHM, FingerprintError, canonicalize, fingerprint
from .ledger import LedgerClient, QueryError
from .metrics import Category, MetricsSink, elapsed_ms

LOGGER = logging.getLogger("provbench.reader")


class QueryKeyStrategy(str, enum.Enum):
    FINGERPRINT = "fingerprint"
    CANONICAL_TEXT = "canonical"

    def key_for(self, canonical: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
        if self is QueryKeyStrategy.CANONICAL_TEXT:
            return canonical.decode("utf-8")
        return fingerprint(canonical, algorithm)


@dataclass(frozen=True)
class ReadReport:
    total_ms: int
    success_count: int
    failure_count: int
    # fingerprints of the queried documents, whatever the query key was
    keys: tuple[str, ...] = field(default=(), repr=False)


class ReadDriver:
    """Replays the corpus as sequential queries, one record at a time.

    Each timed read re-canonicalizes the record's raw bytes before querying,
    so the sample covers the full read path rather than the lookup alone.
    """

    def __init__(
        self,
        client: LedgerClient,
        sink: MetricsSink,
        key_strategy: QueryKeyStrategy = QueryKeyStrategy.FINGERPRINT,
        algorithm: str = DEFAULT_ALGORITHM,
        progress_every: int = 100,
    ) -> None:
        self._client = client
        self._sink = sink
        self._key_strategy = QueryKeyStrategy(key_strategy)
        self._algorithm = algorithm
        self._progress_every = progress_every

    def read_all(self, corpus: Corpus) -> ReadReport:
        started = time.perf_counter()
        keys: list[str] = []
        successes = 0
        failures = 0

        for record in corpus:
            start = time.perf_counter()
            try:
                canonical = canonicalize(record.raw_bytes)
                digest = fingerprint(canonical, self._algorithm)
                if self._key_strategy is QueryKeyStrategy.FINGERPRINT:
                    key = digest
                else:
                    key = self._key_strategy.key_for(canonical, self._algorithm)
                keys.append(digest)
                self._client.query_by_fingerprint(key)
            except (QueryError, FingerprintError) as exc:
                failures += 1
                LOGGER.warning("Read for %s failed: %s", record.fingerprint, exc)
                continue
            duration_ms = elapsed_ms(start)
            self._sink.record(Category.READ, duration_ms)
            successes += 1
            if self._progress_every > 0 and successes % self._progress_every == 0:
                LOGGER.info("read %d", successes)

        report = ReadReport(
            total_ms=elapsed_ms(started),
            success_count=successes,
            failure_count=failures,
            keys=tuple(keys),
        )
        LOGGER.info(
            "Read phase took %d ms, %d ok, errors %d",
            report.total_ms,
            report.success_count,
            report.failure_count,
        )
        return report


__all__ = ["QueryKeyStrategy", "ReadDriver", "ReadReport"]
