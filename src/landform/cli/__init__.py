"""
CLI commands for Landform.
"""

from landform.cli.apply import apply_command
from landform.cli.plan import plan_command
from landform.cli.unlock import unlock_command

__all__ = [
    "apply_command",
    "plan_command",
    "unlock_command",
]
