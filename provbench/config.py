from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from .corpus import LoadFailurePolicy
from .fingerprint import DEFAULT_ALGORITHM, is_supported_algorithm
from .metrics import Category
from .reader import QueryKeyStrategy

LEDGER_BACKENDS: tuple[str, ...] = ("kafka", "memory")


class ConfigError(ValueError):
    """Raised when the harness configuration is invalid."""


@dataclass(frozen=True)
class HarnessConfig:
    """Everything a single load-test run needs, resolved from flags and environment."""

    corpus_dir: Path = Path("sampledata")
    output_dir: Path = Path("results")
    canon_file: str = "canontimes.txt"
    write_file: str = "writetimes.txt"
    read_file: str = "readtimes.txt"
    ledger: str = "kafka"
    broker: str = "kafka:9092"
    request_topic: str = "provenance-requests"
    reply_topic: str = "provenance-replies"
    group_id: str = "provbench"
    query_key: QueryKeyStrategy = QueryKeyStrategy.FINGERPRINT
    load_policy: LoadFailurePolicy = LoadFailurePolicy.FAIL_FAST
    sort_entries: bool = True
    drain_timeout_s: float | None = None
    query_timeout_s: float | None = 60.0
    hash_algorithm: str = DEFAULT_ALGORITHM
    memory_write_delay_ms: int = 0
    memory_query_delay_ms: int = 0
    charts: bool = False
    dry_run: bool = False
    log_level: str = "INFO"
    log_path: Path | None = None

    def output_paths(self) -> dict[Category, Path]:
        return {
            Category.CANONICALIZE: self.output_dir / self.canon_file,
            Category.WRITE: self.output_dir / self.write_file,
            Category.READ: self.output_dir / self.read_file,
        }


def _optional_seconds(name: str, value: str | float | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {name} value {value!r}") from exc
    if seconds <= 0:
        raise ConfigError(f"{name} must be > 0, got {seconds}")
    return seconds


def _non_negative_int(name: str, value: str | int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {name} value {value!r}") from exc
    if number < 0:
        raise ConfigError(f"{name} must be >= 0, got {number}")
    return number


def _choice(enum_type, name: str, value: str):
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ConfigError(f"invalid {name} {value!r} (expected one of: {allowed})") from exc


def config_from_args(args: argparse.Namespace) -> HarnessConfig:
    if args.ledger not in LEDGER_BACKENDS:
        raise ConfigError(
            f"invalid ledger backend {args.ledger!r} (expected one of: {', '.join(LEDGER_BACKENDS)})"
        )
    if not is_supported_algorithm(args.hash_algorithm):
        raise ConfigError(f"unsupported hash algorithm {args.hash_algorithm!r}")

    return HarnessConfig(
        corpus_dir=Path(args.corpus_dir),
        output_dir=Path(args.output_dir),
        canon_file=args.canon_file,
        write_file=args.write_file,
        read_file=args.read_file,
        ledger=args.ledger,
        broker=args.broker,
        request_topic=args.request_topic,
        reply_topic=args.reply_topic,
        group_id=args.group_id,
        query_key=_choice(QueryKeyStrategy, "query key strategy", args.query_key),
        load_policy=_choice(LoadFailurePolicy, "load policy", args.load_policy),
        sort_entries=not args.no_sort,
        drain_timeout_s=_optional_seconds("drain timeout", args.drain_timeout),
        query_timeout_s=_optional_seconds("query timeout", args.query_timeout),
        hash_algorithm=args.hash_algorithm,
        memory_write_delay_ms=_non_negative_int("memory write delay", args.memory_write_delay_ms),
        memory_query_delay_ms=_non_negative_int("memory query delay", args.memory_query_delay_ms),
        charts=args.charts,
        dry_run=args.dry_run,
        log_level=args.log_level,
        log_path=Path(args.log_path) if args.log_path else None,
    )


__all__ = ["ConfigError", "HarnessConfig", "LEDGER_BACKENDS", "config_from_args"]
