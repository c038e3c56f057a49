"""Shared wiring for CLI commands: settings overrides, store and engine."""

from __future__ import annotations

import argparse
from typing import Any

from landform.config import Settings, get_settings
from landform.engine import Engine
from landform.model import Declaration
from landform.providers import build_adapter_set
from landform.state import FileStateStore


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-dir",
        help="State directory (default: LANDFORM_STATE_DIR or .landform)",
    )


def resolve_settings(**overrides: Any) -> Settings:
    """Settings from the environment with non-None CLI overrides applied."""
    settings = get_settings()
    update = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=update) if update else settings


def build_engine(declaration: Declaration, settings: Settings) -> Engine:
    options = {
        kind: _with_defaults(entry, settings) for kind, entry in declaration.providers.items()
    }
    return Engine(
        FileStateStore(settings.state_dir),
        build_adapter_set(options),
        settings,
    )


def _with_defaults(entry: Any, settings: Settings) -> dict[str, Any]:
    options = dict(entry)
    if options.get("type") == "http":
        options.setdefault("timeout", settings.http_timeout)
    return options
