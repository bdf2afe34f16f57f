from conftest import write_documents
from provbench.config import HarnessConfig
from provbench.corpus import LoadFailurePolicy
from provbench.ledger import InMemoryLedgerClient
from provbench.main import main, run_harness
from provbench.metrics import Category


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


def test_run_harness_flushes_three_series(corpus_dir, tmp_path):
    config = HarnessConfig(corpus_dir=corpus_dir, output_dir=tmp_path / "out", ledger="memory")
    client = InMemoryLedgerClient()
    try:
        result = run_harness(config, client)
    finally:
        client.close()

    assert not result.failed
    for path in result.outputs.values():
        lines = _lines(path)
        assert len(lines) == 3
        assert all(line.isdigit() for line in lines)


def test_run_harness_reports_failures(corpus_dir, tmp_path, corpus):
    config = HarnessConfig(corpus_dir=corpus_dir, output_dir=tmp_path / "out", ledger="memory")
    client = InMemoryLedgerClient(reject={corpus[2].fingerprint})
    try:
        result = run_harness(config, client)
    finally:
        client.close()

    assert result.failed
    assert result.write.failure_count == 1
    assert result.read.failure_count == 1
    assert len(_lines(result.outputs[Category.WRITE])) == 3
    assert len(_lines(result.outputs[Category.READ])) == 2


def test_run_harness_on_empty_corpus(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    config = HarnessConfig(corpus_dir=empty, output_dir=tmp_path / "out", ledger="memory")
    client = InMemoryLedgerClient()
    try:
        result = run_harness(config, client)
    finally:
        client.close()

    assert len(result.corpus) == 0
    assert result.write.failure_count == 0
    assert all(path.read_text(encoding="utf-8") == "" for path in result.outputs.values())


def test_skip_policy_runs_remaining_documents(corpus_dir, tmp_path):
    (corpus_dir / "broken.xml").write_bytes(b"<oops")
    config = HarnessConfig(
        corpus_dir=corpus_dir,
        output_dir=tmp_path / "out",
        ledger="memory",
        load_policy=LoadFailurePolicy.SKIP,
    )
    client = InMemoryLedgerClient()
    try:
        result = run_harness(config, client)
    finally:
        client.close()
    assert len(result.corpus) == 3
    assert len(result.corpus.skipped) == 1


def test_cli_memory_run(corpus_dir, tmp_path, capsys):
    out = tmp_path / "out"
    exit_code = main(
        ["--ledger", "memory", "--corpus-dir", str(corpus_dir), "--output-dir", str(out)]
    )
    assert exit_code == 0
    assert len(_lines(out / "canontimes.txt")) == 3
    assert len(_lines(out / "writetimes.txt")) == 3
    assert len(_lines(out / "readtimes.txt")) == 3
    stdout = capsys.readouterr().out
    assert "errors: 0" in stdout


def test_cli_with_charts(corpus_dir, tmp_path):
    out = tmp_path / "out"
    exit_code = main(
        [
            "--ledger", "memory",
            "--corpus-dir", str(corpus_dir),
            "--output-dir", str(out),
            "--charts",
        ]
    )
    assert exit_code == 0
    assert (out / "latency_summary.csv").exists()
    assert (out / "latency_distribution.png").exists()


def test_cli_fail_fast_load_returns_error(corpus_dir, tmp_path):
    (corpus_dir / "broken.xml").write_bytes(b"<oops")
    exit_code = main(
        ["--ledger", "memory", "--corpus-dir", str(corpus_dir), "--output-dir", str(tmp_path)]
    )
    assert exit_code == 1
    assert not (tmp_path / "writetimes.txt").exists()


def test_cli_dry_run_prints_fingerprints(tmp_path, capsys):
    directory = write_documents(tmp_path / "docs", {"only.xml": b"<a/>"})
    exit_code = main(["--dry-run", "--corpus-dir", str(directory)])
    assert exit_code == 0
    assert "only.xml" in capsys.readouterr().out


def test_cli_configuration_error(capsys):
    assert main(["--query-key", "digest"]) == 2
    assert "configuration error" in capsys.readouterr().err
