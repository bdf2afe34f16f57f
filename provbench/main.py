from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import LEDGER_BACKENDS, ConfigError, HarnessConfig, config_from_args
from .corpus import Corpus, CorpusLoadError, LoadFailurePolicy, load_corpus
from .fingerprint import DEFAULT_ALGORITHM
from .ledger import InMemoryLedgerClient, LedgerClient, LedgerError, WriteMetadata
from .metrics import Category, MetricsSink
from .reader import QueryKeyStrategy, ReadDriver, ReadReport
from .writer import WriteDriver, WriteReport

LOGGER = logging.getLogger("provbench")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(description="Provenance ledger load-test harness")
    parser.add_argument(
        "--corpus-dir",
        default=env.get("PROVBENCH_CORPUS_DIR", "sampledata"),
        help="Directory holding one XML document per file",
    )
    parser.add_argument(
        "--output-dir",
        default=env.get("PROVBENCH_OUTPUT_DIR", "results"),
        help="Directory receiving the timing files (and charts)",
    )
    parser.add_argument("--canon-file", default=env.get("PROVBENCH_CANON_FILE", "canontimes.txt"))
    parser.add_argument("--write-file", default=env.get("PROVBENCH_WRITE_FILE", "writetimes.txt"))
    parser.add_argument("--read-file", default=env.get("PROVBENCH_READ_FILE", "readtimes.txt"))
    parser.add_argument(
        "--ledger",
        default=env.get("PROVBENCH_LEDGER", "kafka"),
        help=f"Ledger backend ({', '.join(LEDGER_BACKENDS)})",
    )
    parser.add_argument("--broker", default=env.get("KAFKA_BROKER", "kafka:9092"))
    parser.add_argument(
        "--request-topic", default=env.get("LEDGER_REQUEST_TOPIC", "provenance-requests")
    )
    parser.add_argument(
        "--reply-topic", default=env.get("LEDGER_REPLY_TOPIC", "provenance-replies")
    )
    parser.add_argument("--group-id", default=env.get("KAFKA_CONSUMER_GROUP", "provbench"))
    parser.add_argument(
        "--query-key",
        default=env.get("PROVBENCH_QUERY_KEY", QueryKeyStrategy.FINGERPRINT.value),
        help="Read key: 'fingerprint' (hex digest) or 'canonical' (canonical XML text)",
    )
    parser.add_argument(
        "--load-policy",
        default=env.get("PROVBENCH_LOAD_POLICY", LoadFailurePolicy.FAIL_FAST.value),
        help="What to do with an unparseable document: 'fail-fast' or 'skip'",
    )
    parser.add_argument(
        "--no-sort",
        action="store_true",
        help="Keep directory enumeration order instead of sorting by file name",
    )
    parser.add_argument(
        "--drain-timeout",
        default=env.get("PROVBENCH_DRAIN_TIMEOUT"),
        help="Seconds to wait for outstanding writes (default: wait forever)",
    )
    parser.add_argument(
        "--query-timeout",
        default=env.get("PROVBENCH_QUERY_TIMEOUT", "60"),
        help="Seconds to wait for a single query reply",
    )
    parser.add_argument(
        "--hash-algorithm", default=env.get("PROVBENCH_HASH_ALGORITHM", DEFAULT_ALGORITHM)
    )
    parser.add_argument("--memory-write-delay-ms", default="0")
    parser.add_argument("--memory-query-delay-ms", default="0")
    parser.add_argument(
        "--charts",
        action="store_true",
        help="Render a latency summary and charts after the run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only load the corpus and print its fingerprints",
    )
    parser.add_argument(
        "--log-level",
        default=env.get("PROVBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    parser.add_argument(
        "--log-path",
        default=env.get("PROVBENCH_LOG_PATH"),
        help="Optional file receiving a copy of the log",
    )
    return parser.parse_args(argv)


def setup_logging(level: str, log_path: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="w", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def create_ledger_client(config: HarnessConfig) -> LedgerClient:
    if config.ledger == "memory":
        return InMemoryLedgerClient(
            write_delay_s=config.memory_write_delay_ms / 1000.0,
            query_delay_s=config.memory_query_delay_ms / 1000.0,
        )
    from .kafka_ledger import KafkaLedgerClient

    return KafkaLedgerClient(
        broker=config.broker,
        request_topic=config.request_topic,
        reply_topic=config.reply_topic,
        group_id=config.group_id,
        query_timeout_s=config.query_timeout_s,
    )


@dataclass(frozen=True)
class HarnessResult:
    corpus: Corpus
    write: WriteReport
    read: ReadReport
    sink: MetricsSink
    outputs: dict[Category, Path]

    @property
    def failed(self) -> bool:
        return self.write.failure_count > 0 or self.read.failure_count > 0


def run_harness(
    config: HarnessConfig,
    client: LedgerClient,
    metadata: WriteMetadata | None = None,
) -> HarnessResult:
    """Load the corpus, write it, read it back and flush the three timing files."""
    sink = MetricsSink()

    LOGGER.info("Reading all documents from %s", config.corpus_dir)
    corpus = load_corpus(
        config.corpus_dir,
        sink,
        policy=config.load_policy,
        sort_entries=config.sort_entries,
        algorithm=config.hash_algorithm,
    )
    LOGGER.info("Read done over %d file(s)", len(corpus))

    LOGGER.info("Now writing")
    write_report = WriteDriver(
        client,
        sink,
        metadata=metadata,
        drain_timeout_s=config.drain_timeout_s,
    ).write_all(corpus)

    LOGGER.info("Now reading")
    read_report = ReadDriver(
        client,
        sink,
        key_strategy=config.query_key,
        algorithm=config.hash_algorithm,
    ).read_all(corpus)

    outputs = sink.flush_all(config.output_paths())
    return HarnessResult(
        corpus=corpus,
        write=write_report,
        read=read_report,
        sink=sink,
        outputs=outputs,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, Path(args.log_path) if args.log_path else None)

    try:
        config = config_from_args(args)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    LOGGER.info("Corpus directory: %s", config.corpus_dir)
    LOGGER.info("Output directory: %s", config.output_dir)
    LOGGER.info("Ledger backend: %s", config.ledger)

    if config.dry_run:
        return _print_corpus(config)

    try:
        client = create_ledger_client(config)
    except LedgerError:
        LOGGER.exception("failed to initialise ledger client")
        return 1

    try:
        result = run_harness(config, client)
    except (CorpusLoadError, LedgerError):
        LOGGER.exception("load test aborted")
        return 1
    finally:
        client.close()

    if config.charts:
        from .charts import render_latency_report

        render_latency_report(
            {category: result.sink.series(category).durations() for category in Category},
            config.output_dir,
        )

    _print_summary(result)
    return 1 if result.failed else 0


def _print_corpus(config: HarnessConfig) -> int:
    try:
        corpus = load_corpus(
            config.corpus_dir,
            MetricsSink(),
            policy=config.load_policy,
            sort_entries=config.sort_entries,
            algorithm=config.hash_algorithm,
        )
    except CorpusLoadError:
        LOGGER.exception("corpus load failed")
        return 1
    for record in corpus:
        print(f"{record.fingerprint}  {record.path.name}  {record.canonicalization_ms}ms")
    for skipped in corpus.skipped:
        print(f"skipped  {skipped.path.name}  {skipped.error}")
    return 0


def _print_summary(result: HarnessResult) -> None:
    print("Documents:")
    print(f"  loaded: {len(result.corpus)}")
    print(f"  skipped: {len(result.corpus.skipped)}")
    print("Write phase:")
    print(f"  dispatch: {result.write.total_dispatch_ms} ms")
    print(f"  drain: {result.write.total_drain_ms} ms")
    print(f"  total: {result.write.total_ms} ms")
    print(f"  ok: {result.write.success_count}")
    print(f"  errors: {result.write.failure_count}")
    print("Read phase:")
    print(f"  total: {result.read.total_ms} ms")
    print(f"  ok: {result.read.success_count}")
    print(f"  errors: {result.read.failure_count}")
    print("Timing files:")
    for category, path in result.outputs.items():
        print(f"  {category.value}: {path}")
    status = "FAILURES" if result.failed else "OK"
    print(f"\nLoad test status: {status}", file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
