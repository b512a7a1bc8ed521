"""Result reduction."""

from lt_runner.results.reducer import (
    ResultReducer,
    ResultSummary,
    Sample,
    TransactionStats,
    reduce_rows,
)
from lt_runner.results.statistics import mean, percentile, std_dev

__all__ = [
    "ResultReducer",
    "ResultSummary",
    "Sample",
    "TransactionStats",
    "mean",
    "percentile",
    "reduce_rows",
    "std_dev",
]
