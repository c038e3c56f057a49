"""
Unified error handling for Landform.

This module provides the error taxonomy shared by the engine and the CLI,
standardized exit codes, and error reporting for all CLI commands.

Exit Codes:
- 0: Success
- 1: Partial failure (some resources applied, some failed or skipped)
- 10: Configuration error (cycle, unresolved reference, duplicate name)
- 11: Provider error (nothing could be applied)
- 12: Concurrency error (another run holds a resource)
- 13: State error (state unreadable or malformed)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    CONCURRENCY_ERROR = 12
    STATE_ERROR = 13
    UNKNOWN_ERROR = 127


class LandformError(Exception):
    """Base exception for Landform errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(LandformError):
    """Raised for declaration errors; always raised before any provider call."""

    exit_code = ExitCode.CONFIG_ERROR


class DuplicateResourceError(ConfigurationError):
    """Two resources share the same (kind, name)."""

    def __init__(self, key: Any):
        super().__init__(f"Duplicate resource {key}", {"resource": str(key)})
        self.key = key


class UnresolvedReferenceError(ConfigurationError):
    """A reference or depends_on entry points to an undeclared resource."""

    def __init__(self, source: Any, target: Any, attribute: str | None = None):
        message = f"{source} references undeclared resource {target}"
        if attribute:
            message = f"{source} references missing attribute {target}.{attribute}"
        super().__init__(message, {"source": str(source), "target": str(target)})
        self.source = source
        self.target = target
        self.attribute = attribute


class CycleError(ConfigurationError):
    """The dependency graph contains a cycle."""

    def __init__(self, path: Sequence[Any]):
        rendered = " -> ".join(str(p) for p in path)
        super().__init__(f"Dependency cycle: {rendered}", {"cycle": rendered})
        self.path = list(path)


class PlanError(ConfigurationError):
    """The plan cannot be computed from the declaration and state."""


class DeclarationError(ConfigurationError):
    """A declaration file is missing or malformed."""


class ProviderError(LandformError):
    """Raised when a provider adapter call fails.

    ``transient`` is set by the adapter: transient failures (timeouts, rate
    limiting, 5xx) are retried, permanent ones fail the resource at once.
    """

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.transient = transient


class TransientProviderError(ProviderError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, transient=True, details=details)


class PermanentProviderError(ProviderError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, transient=False, details=details)


class ResourceNotFound(ProviderError):
    """The provider has no resource with the given id."""

    def __init__(self, provider_id: str):
        super().__init__(f"Resource {provider_id} not found", details={"provider_id": provider_id})
        self.provider_id = provider_id


class ConcurrencyError(LandformError):
    """Another run holds the resource, or the state changed since planning."""

    exit_code = ExitCode.CONCURRENCY_ERROR


class StateCorruptionError(LandformError):
    """A state record is unreadable or malformed. Needs operator intervention."""

    exit_code = ExitCode.STATE_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - LandformError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except LandformError as e:
                print_error(e)
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: LandformError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg


def print_error(error: LandformError) -> None:
    """Print an error for the user of a CLI command."""
    from landform.cli.ux import error as show_error

    show_error(format_error_message(error))
