"""Plan execution."""

from landform.execution.cancellation import CancellationToken
from landform.execution.executor import DEFAULT_CONCURRENCY, Executor, RetryPolicy
from landform.execution.results import ApplyReport, ApplyResult, Outcome

__all__ = [
    "DEFAULT_CONCURRENCY",
    "ApplyReport",
    "ApplyResult",
    "CancellationToken",
    "Executor",
    "Outcome",
    "RetryPolicy",
]
