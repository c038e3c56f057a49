"""Differ and planner."""

from landform.planning.fingerprint import compute_fingerprint
from landform.planning.planner import Planner, build_plan, ensure_adapters, refresh
from landform.planning.types import Action, DestroyPolicy, Plan, PlanItem

__all__ = [
    "Action",
    "DestroyPolicy",
    "Plan",
    "PlanItem",
    "Planner",
    "build_plan",
    "compute_fingerprint",
    "ensure_adapters",
    "refresh",
]
