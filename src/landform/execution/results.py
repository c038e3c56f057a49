"""Result types for plan execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from landform.core.errors import ConcurrencyError, ExitCode, StateCorruptionError
from landform.model import ResourceKey
from landform.planning.types import Action


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOOP = "no-op"


@dataclass(frozen=True)
class ApplyResult:
    """What happened to one resource during apply."""

    key: ResourceKey
    action: Action | None
    outcome: Outcome
    error: str | None = None
    error_type: str | None = None
    provider_id: str | None = None
    attempts: int = 0
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether dependents may proceed."""
        return self.outcome in (Outcome.SUCCESS, Outcome.NOOP)

    @property
    def changed(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "resource": str(self.key),
            "action": self.action.value if self.action else None,
            "outcome": self.outcome.value,
        }
        for name in ("error", "error_type", "provider_id", "reason"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.attempts:
            data["attempts"] = self.attempts
        return data


@dataclass
class ApplyReport:
    """Every resource's outcome plus the outputs of the run."""

    results: List[ApplyResult] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    duration_seconds: float = 0.0

    def result(self, key: ResourceKey) -> ApplyResult | None:
        return next((r for r in self.results if r.key == key), None)

    def by_outcome(self, outcome: Outcome) -> List[ApplyResult]:
        return [r for r in self.results if r.outcome is outcome]

    @property
    def success(self) -> bool:
        """Whether every resource succeeded or needed no change."""
        return all(r.succeeded for r in self.results) and not self.cancelled

    @property
    def partial(self) -> bool:
        """Some resources were applied while others failed or were skipped."""
        return not self.success and any(r.changed for r in self.results)

    @property
    def exit_code(self) -> ExitCode:
        """Exit code for the run.

        When nothing was applied and every failure has the same concurrency
        or state cause, that cause decides the code.
        """
        if self.success:
            return ExitCode.SUCCESS
        if self.partial:
            return ExitCode.PARTIAL_FAILURE
        causes = {r.error_type for r in self.by_outcome(Outcome.FAILED)}
        if causes == {ConcurrencyError.__name__}:
            return ExitCode.CONCURRENCY_ERROR
        if causes == {StateCorruptionError.__name__}:
            return ExitCode.STATE_ERROR
        return ExitCode.PROVIDER_ERROR

    def summary(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in Outcome}
        for r in self.results:
            counts[r.outcome.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "outputs": self.outputs,
            "summary": self.summary(),
            "cancelled": self.cancelled,
            "duration_seconds": self.duration_seconds,
            "success": self.success,
        }
