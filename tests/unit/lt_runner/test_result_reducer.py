from __future__ import annotations

from pathlib import Path

import pytest

from lt_common.errors import ResultParseError
from lt_runner.results.reducer import OVERALL_LABEL, ResultReducer, Sample, reduce_rows
from lt_runner.results.statistics import percentile, round_half_up, round_to, std_dev

pytestmark = pytest.mark.unit_runner

HEADER = "timeStamp,elapsed,label,responseCode,success,bytes,grpThreads,allThreads\n"


def _write(path: Path, *rows: str, header: str = HEADER) -> Path:
    path.write_text(header + "".join(f"{row}\n" for row in rows), encoding="utf-8")
    return path


@pytest.mark.parametrize(
    ("values", "p", "expected"),
    [
        ([], 90, 0),
        ([5], 90, 5),
        (list(range(1, 11)), 90, 9),
        (list(range(1, 11)), 100, 10),
        ([10, 1, 5], 0, 1),
    ],
)
def test_percentile_nearest_rank(values, p, expected) -> None:
    assert percentile(values, p) == expected


def test_rounding_helpers() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round_to(2.857142, 2) == 2.86
    assert std_dev([42]) == 0.0


def test_reduce_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "results.csv",
        "1000,100,home,200,true,10,1,1",
        "1100,300,login,500,false,10,1,1",
        "1500,200,home,200,true,10,2,2",
        "",
        "2000,400,login,200,true,10,2,2",
    )

    summary = ResultReducer().reduce(path)

    assert summary.total_samples == 4
    assert summary.total_errors == 1
    assert summary.error_percent == 25.0
    assert summary.average_response_time == 250.0
    assert summary.p90_response_time == 400
    assert summary.start_time == 1000
    assert summary.end_time == 2400
    assert summary.duration_ms == 1400

    overall = summary.overall
    assert overall is not None
    assert overall.label == OVERALL_LABEL
    assert overall.median == 200
    assert overall.std_dev == 111.8
    assert overall.throughput == 2.86

    home, login = summary.transactions
    assert (home.label, home.sample_count, home.error_count) == ("home", 2, 0)
    assert (home.min, home.max, home.mean, home.p90) == (100, 200, 150, 200)
    assert login.error_percent == 50.0

    fields = summary.job_fields()
    assert fields["error_count"] == 1
    assert fields["total_samples"] == 4


def test_quoted_fields_and_custom_delimiter(tmp_path: Path) -> None:
    path = tmp_path / "results.tsv"
    path.write_text(
        "timeStamp\telapsed\tlabel\tsuccess\n"
        '1000\t50\t"search, advanced"\ttrue\n',
        encoding="utf-8",
    )
    summary = ResultReducer(delimiter="\t").reduce(path)
    assert [stats.label for stats in summary.transactions] == ["search, advanced"]


def test_header_only_file_gives_empty_summary(tmp_path: Path) -> None:
    summary = ResultReducer().reduce(_write(tmp_path / "empty.csv"))
    assert summary.total_samples == 0
    assert summary.overall is None
    assert summary.transactions == []


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ResultParseError, match="not found"):
        ResultReducer().reduce(tmp_path / "absent.csv")


def test_reduce_rows_without_io() -> None:
    samples = [Sample(timestamp=0, elapsed=10, label="a", success=False)]
    summary = reduce_rows(samples)
    assert summary.error_percent == 100.0
    assert summary.throughput == 100.0
