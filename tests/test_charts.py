import pandas as pd
import pytest

from provbench.charts import (
    load_series_file,
    render_latency_report,
    series_frame,
    summarise_series,
)
from provbench.metrics import Category


def test_load_series_file_round_trips_flush(sink, tmp_path):
    for duration in (3, 14, 15):
        sink.record(Category.READ, duration)
    path = sink.flush(Category.READ, tmp_path / "readtimes.txt")
    assert load_series_file(path) == [3, 14, 15]


def test_summary_statistics():
    frame = series_frame({Category.WRITE: [1, 2, 3, 4], "read": [10]})
    summary = summarise_series(frame).set_index("category")

    assert list(summary.index) == ["write", "read"]
    assert summary.loc["write", "count"] == 4
    assert summary.loc["write", "mean_ms"] == pytest.approx(2.5)
    assert summary.loc["write", "p50_ms"] == pytest.approx(2.5)
    assert summary.loc["write", "max_ms"] == 4
    assert summary.loc["read", "p99_ms"] == pytest.approx(10.0)


def test_series_frame_keeps_sample_order():
    frame = series_frame({Category.CANONICALIZE: [7, 5]})
    assert list(frame["sample"]) == [0, 1]
    assert list(frame["duration_ms"]) == [7, 5]


def test_render_report_writes_artefacts(tmp_path):
    artefacts = render_latency_report(
        {Category.CANONICALIZE: [1, 2], Category.WRITE: [3, 4, 5], Category.READ: [6]},
        tmp_path,
    )
    assert set(artefacts) == {"summary", "distribution", "timeline"}
    assert all(path.exists() for path in artefacts.values())
    summary = pd.read_csv(artefacts["summary"])
    assert list(summary["category"]) == ["canonicalize", "write", "read"]


def test_render_report_without_samples_only_writes_summary(tmp_path):
    artefacts = render_latency_report({Category.READ: []}, tmp_path)
    assert set(artefacts) == {"summary"}
    assert pd.read_csv(artefacts["summary"]).empty
