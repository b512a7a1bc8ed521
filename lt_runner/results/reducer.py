"""Reduce raw load-test result files into per-transaction statistics."""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from lt_common.errors import ResultParseError
from lt_runner.results.statistics import mean, percentile, round_half_up, round_to, std_dev

logger = logging.getLogger(__name__)

OVERALL_LABEL = "TOTAL"


@dataclass(frozen=True)
class Sample:
    """One row of a result file."""

    timestamp: int
    elapsed: int
    label: str
    response_code: str = ""
    success: bool = True
    bytes: int = 0
    grp_threads: int = 0
    all_threads: int = 0

    @property
    def end(self) -> int:
        return self.timestamp + self.elapsed


@dataclass(frozen=True)
class TransactionStats:
    label: str
    sample_count: int
    error_count: int
    error_percent: float
    min: int
    max: int
    mean: int
    median: int
    std_dev: float
    p90: int
    p95: int
    p99: int
    throughput: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransactionStats":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__})


@dataclass(frozen=True)
class ResultSummary:
    """Aggregate statistics for one result file."""

    total_samples: int = 0
    total_errors: int = 0
    error_percent: float = 0.0
    average_response_time: float = 0.0
    p90_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    throughput: float = 0.0
    start_time: int = 0
    end_time: int = 0
    duration_ms: int = 0
    overall: TransactionStats | None = None
    transactions: list[TransactionStats] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def job_fields(self) -> dict[str, Any]:
        """Summary values in the shape persisted on the job record."""
        return {
            "total_samples": self.total_samples,
            "error_count": self.total_errors,
            "error_percent": self.error_percent,
            "average_response_time": self.average_response_time,
            "p90_response_time": self.p90_response_time,
            "p95_response_time": self.p95_response_time,
            "throughput": self.throughput,
        }


def _to_int(value: str | None) -> int:
    if value is None:
        return 0
    try:
        return int(value.strip())
    except ValueError:
        try:
            return int(float(value))
        except ValueError:
            return 0


def _sample_from_record(record: Mapping[str, str | None]) -> Sample:
    return Sample(
        timestamp=_to_int(record.get("timeStamp")),
        elapsed=_to_int(record.get("elapsed")),
        label=(record.get("label") or "").strip() or "unknown",
        response_code=(record.get("responseCode") or "").strip(),
        success=(record.get("success") or "").strip().lower() == "true",
        bytes=_to_int(record.get("bytes")),
        grp_threads=_to_int(record.get("grpThreads")),
        all_threads=_to_int(record.get("allThreads")),
    )


def _window_seconds(samples: Sequence[Sample]) -> tuple[int, int, float]:
    start = min(sample.timestamp for sample in samples)
    end = max(sample.end for sample in samples)
    return start, end, (end - start) / 1000


def compute_stats(label: str, samples: Sequence[Sample]) -> TransactionStats:
    """Aggregate statistics for a non-empty group of samples."""
    elapsed = [sample.elapsed for sample in samples]
    errors = sum(1 for sample in samples if not sample.success)
    _, _, duration = _window_seconds(samples)
    count = len(samples)
    return TransactionStats(
        label=label,
        sample_count=count,
        error_count=errors,
        error_percent=(errors / count) * 100 if count else 0.0,
        min=min(elapsed),
        max=max(elapsed),
        mean=round_half_up(mean(elapsed)),
        median=round_half_up(percentile(elapsed, 50)),
        std_dev=round_to(std_dev(elapsed), 2),
        p90=round_half_up(percentile(elapsed, 90)),
        p95=round_half_up(percentile(elapsed, 95)),
        p99=round_half_up(percentile(elapsed, 99)),
        throughput=round_to(count / duration, 2) if duration > 0 else 0.0,
    )


def reduce_rows(samples: Iterable[Sample]) -> ResultSummary:
    """Pure reduction of samples into a summary (no I/O)."""
    rows = list(samples)
    if not rows:
        return ResultSummary()

    groups: dict[str, list[Sample]] = defaultdict(list)
    for sample in rows:
        groups[sample.label].append(sample)
    transactions = sorted(
        (compute_stats(label, group) for label, group in groups.items()),
        key=lambda stats: stats.label,
    )

    elapsed = [sample.elapsed for sample in rows]
    errors = sum(1 for sample in rows if not sample.success)
    start, end, duration = _window_seconds(rows)
    return ResultSummary(
        total_samples=len(rows),
        total_errors=errors,
        error_percent=(errors / len(rows)) * 100,
        average_response_time=mean(elapsed),
        p90_response_time=percentile(elapsed, 90),
        p95_response_time=percentile(elapsed, 95),
        p99_response_time=percentile(elapsed, 99),
        throughput=len(rows) / duration if duration > 0 else 0.0,
        start_time=start,
        end_time=end,
        duration_ms=end - start,
        overall=compute_stats(OVERALL_LABEL, rows),
        transactions=transactions,
    )


class ResultReducer:
    """Parse a delimited result file with a header row and reduce it."""

    def __init__(self, delimiter: str = ",") -> None:
        self.delimiter = delimiter

    def read_samples(self, path: str | Path) -> list[Sample]:
        path = Path(path)
        if not path.is_file():
            raise ResultParseError(
                f"Result file not found: {path}", context={"path": str(path)}
            )
        try:
            with path.open("r", encoding="utf-8", errors="replace", newline="") as handle:
                reader = csv.reader(handle, delimiter=self.delimiter)
                header = next(reader, None)
                if header is None:
                    return []
                columns = [name.strip() for name in header]
                samples = []
                for values in reader:
                    if not any(value.strip() for value in values):
                        continue
                    record = dict(zip(columns, values))
                    samples.append(_sample_from_record(record))
        except (OSError, csv.Error) as exc:
            raise ResultParseError(
                f"Could not read result file {path}: {exc}",
                context={"path": str(path)},
                cause=exc,
            ) from exc
        logger.debug("Read %d samples from %s", len(samples), path)
        return samples

    def reduce(self, path: str | Path) -> ResultSummary:
        return reduce_rows(self.read_samples(path))

    @staticmethod
    def reduce_rows(samples: Iterable[Sample]) -> ResultSummary:
        return reduce_rows(samples)
