from __future__ import annotations

import collections
import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

LOGGER = logging.getLogger("provbench.metrics")


class Category(str, enum.Enum):
    CANONICALIZE = "canonicalize"
    WRITE = "write"
    READ = "read"


@dataclass(frozen=True)
class Sample:
    duration_ms: int
    outcome: str = "ok"


@dataclass
class TimingSeries:
    """Append-only, ordered latency samples for a single category."""

    category: Category
    _samples: list[Sample] = field(default_factory=list)

    def append(self, duration_ms: int, outcome: str = "ok") -> None:
        if duration_ms < 0:
            raise ValueError(f"duration must be non-negative, got {duration_ms}")
        self._samples.append(Sample(duration_ms=int(duration_ms), outcome=outcome))

    def durations(self) -> list[int]:
        return [sample.duration_ms for sample in self._samples]

    def outcomes(self) -> dict[str, int]:
        return dict(collections.Counter(sample.outcome for sample in self._samples))

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(list(self._samples))


class MetricsSink:
    """Holds one timing series per category for the duration of a single run."""

    def __init__(self) -> None:
        self._series = {category: TimingSeries(category) for category in Category}

    def record(self, category: Category, duration_ms: int, outcome: str = "ok") -> None:
        self._series[Category(category)].append(duration_ms, outcome)

    def series(self, category: Category) -> TimingSeries:
        return self._series[Category(category)]

    def flush(self, category: Category, destination: Path) -> Path:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        durations = self.series(category).durations()
        with open(destination, "w", encoding="utf-8", newline="\n") as f:
            for duration in durations:
                f.write(f"{duration}\n")
        LOGGER.info(
            "Wrote %d %s sample(s) to %s", len(durations), Category(category).value, destination
        )
        return destination

    def flush_all(self, destinations: Mapping[Category, Path]) -> dict[Category, Path]:
        return {
            Category(category): self.flush(category, path)
            for category, path in destinations.items()
        }


def elapsed_ms(start: float) -> int:
    """Whole milliseconds elapsed since ``start``, a ``time.perf_counter()`` value."""
    return max(int((time.perf_counter() - start) * 1000), 0)


__all__ = ["Category", "MetricsSink", "Sample", "TimingSeries", "elapsed_ms"]
