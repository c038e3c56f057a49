"""Core modules for Landform - centralized definitions and utilities."""

from landform.core.errors import (
    ConcurrencyError,
    ConfigurationError,
    CycleError,
    DeclarationError,
    DuplicateResourceError,
    ExitCode,
    LandformError,
    PermanentProviderError,
    PlanError,
    ProviderError,
    ResourceNotFound,
    StateCorruptionError,
    TransientProviderError,
    UnresolvedReferenceError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "LandformError",
    "ConfigurationError",
    "CycleError",
    "DeclarationError",
    "DuplicateResourceError",
    "PlanError",
    "UnresolvedReferenceError",
    "ProviderError",
    "TransientProviderError",
    "PermanentProviderError",
    "ResourceNotFound",
    "ConcurrencyError",
    "StateCorruptionError",
    "main_with_error_handling",
    "format_error_message",
]
