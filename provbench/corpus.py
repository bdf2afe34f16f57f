from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from .fingerprint import (
    DEFAULT_ALGORITHM,
    FingerprintError,
    fingerprint,
    parse,
    timed_canonicalize,
)
from .metrics import Category, MetricsSink

LOGGER = logging.getLogger("provbench.corpus")


class CorpusLoadError(Exception):
    """Raised when a document aborts the load under the fail-fast policy."""


class LoadFailurePolicy(str, enum.Enum):
    FAIL_FAST = "fail-fast"
    SKIP = "skip"


@dataclass(frozen=True)
class DocumentRecord:
    path: Path
    fingerprint: str
    canonicalization_ms: int
    raw_bytes: bytes = field(repr=False)
    parsed: Any = field(repr=False, compare=False)


@dataclass(frozen=True)
class SkippedDocument:
    path: Path
    error: str


@dataclass(frozen=True)
class Corpus:
    """Documents in load order. Never mutated once the loader returns it."""

    records: tuple[DocumentRecord, ...] = ()
    skipped: tuple[SkippedDocument, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[DocumentRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> DocumentRecord:
        return self.records[index]

    def fingerprints(self) -> list[str]:
        return [record.fingerprint for record in self.records]


def list_document_files(directory: Path, sort_entries: bool = True) -> list[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        LOGGER.warning("Corpus directory %s does not exist or is not a directory", directory)
        return []
    try:
        with os.scandir(directory) as it:
            entries = [Path(entry.path) for entry in it if entry.is_file()]
    except OSError as exc:
        LOGGER.warning("Corpus directory %s is not readable: %s", directory, exc)
        return []
    if sort_entries:
        entries.sort(key=lambda path: path.name)
    return entries


def build_record(path: Path, raw_bytes: bytes, algorithm: str = DEFAULT_ALGORITHM) -> DocumentRecord:
    parsed = parse(raw_bytes)
    canonical, duration_ms = timed_canonicalize(raw_bytes)
    return DocumentRecord(
        path=path,
        fingerprint=fingerprint(canonical, algorithm),
        canonicalization_ms=duration_ms,
        raw_bytes=raw_bytes,
        parsed=parsed,
    )


def load_corpus(
    directory: Path,
    sink: MetricsSink,
    *,
    policy: LoadFailurePolicy = LoadFailurePolicy.FAIL_FAST,
    sort_entries: bool = True,
    algorithm: str = DEFAULT_ALGORITHM,
    progress_every: int = 100,
) -> Corpus:
    policy = LoadFailurePolicy(policy)
    records: list[DocumentRecord] = []
    skipped: list[SkippedDocument] = []

    for path in list_document_files(directory, sort_entries):
        try:
            record = build_record(path, path.read_bytes(), algorithm)
        except (FingerprintError, OSError) as exc:
            if policy is LoadFailurePolicy.FAIL_FAST:
                raise CorpusLoadError(f"failed to load {path}: {exc}") from exc
            LOGGER.warning("Skipping %s: %s", path, exc)
            skipped.append(SkippedDocument(path=path, error=str(exc)))
            continue

        sink.record(Category.CANONICALIZE, record.canonicalization_ms)
        records.append(record)
        LOGGER.debug(
            "File %s has hash %s (%d ms)", path.name, record.fingerprint, record.canonicalization_ms
        )
        if progress_every > 0 and len(records) % progress_every == 0:
            LOGGER.info("Loaded %d document(s)", len(records))

    LOGGER.info(
        "Loaded %d document(s) from %s (%d skipped)", len(records), directory, len(skipped)
    )
    return Corpus(records=tuple(records), skipped=tuple(skipped))


__all__ = [
    "Corpus",
    "CorpusLoadError",
    "DocumentRecord",
    "LoadFailurePolicy",
    "SkippedDocument",
    "build_record",
    "list_document_files",
    "load_corpus",
]
