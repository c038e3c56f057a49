"""
File-backed state store.

Layout under the state directory::

    records/<kind>/<name>.json   one StateRecord per resource
    intents/<kind>/<name>.json   write-ahead markers for in-flight mutations
    locks/<kind>/<name>.lock     per-resource leases held by a running apply

Every write goes to a temporary file in the target directory followed by
``os.replace``, so a reader never sees a half-written record. A record that
fails to parse is reported as corrupt and left on disk untouched.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import quote, unquote

import structlog
from pydantic import ValidationError

from landform.core.errors import ConcurrencyError, StateCorruptionError
from landform.model import ResourceKey
from landform.state.base import check_serial
from landform.state.locks import KeyedLock
from landform.state.models import Intent, StateRecord, StateSnapshot

logger = structlog.get_logger()

RECORDS_DIR = "records"
INTENTS_DIR = "intents"
LOCKS_DIR = "locks"


def _segment(value: str) -> str:
    return quote(value, safe="")


def _write_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileStateStore:
    """State store persisted as a directory of JSON files."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()
        self._keys = KeyedLock()

    def _path(self, area: str, key: ResourceKey, suffix: str = ".json") -> Path:
        return self.directory / area / _segment(key.kind) / f"{_segment(key.name)}{suffix}"

    def _key_from_path(self, path: Path) -> ResourceKey:
        return ResourceKey(unquote(path.parent.name), unquote(path.stem))

    def _read_record(self, path: Path) -> StateRecord:
        key = self._key_from_path(path)
        try:
            record = StateRecord.model_validate_json(path.read_text())
        except (OSError, ValueError, ValidationError) as exc:
            raise StateCorruptionError(
                f"State record for {key} is unreadable: {exc}",
                {"resource": str(key), "path": str(path)},
            ) from exc
        if record.key != key:
            raise StateCorruptionError(
                f"State record at {path} describes {record.key}, expected {key}",
                {"resource": str(key), "path": str(path)},
            )
        return record

    def _read_optional(self, key: ResourceKey) -> StateRecord | None:
        path = self._path(RECORDS_DIR, key)
        if not path.exists():
            return None
        return self._read_record(path)

    def _load(self) -> StateSnapshot:
        snapshot = StateSnapshot()
        for path in sorted((self.directory / RECORDS_DIR).glob("*/*.json")):
            try:
                record = self._read_record(path)
            except StateCorruptionError as exc:
                key = self._key_from_path(path)
                logger.error("state_record_corrupt", resource=str(key), error=exc.message)
                snapshot.corrupt[key] = exc.message
                continue
            snapshot.records[record.key] = record
        for path in sorted((self.directory / INTENTS_DIR).glob("*/*.json")):
            try:
                intent = Intent.model_validate_json(path.read_text())
            except (OSError, ValueError, ValidationError) as exc:
                logger.warning("intent_unreadable", path=str(path), error=str(exc))
                continue
            snapshot.intents[intent.key] = intent
        return snapshot

    async def load(self) -> StateSnapshot:
        return await asyncio.to_thread(self._load)

    async def get(self, key: ResourceKey) -> StateRecord | None:
        return await asyncio.to_thread(self._read_optional, key)

    async def commit(self, record: StateRecord, *, expected_serial: int | None) -> StateRecord:
        def _commit() -> StateRecord:
            check_serial(record.key, self._read_optional(record.key), expected_serial)
            stored = record.model_copy(update={"serial": (expected_serial or 0) + 1})
            _write_atomic(self._path(RECORDS_DIR, record.key), stored.model_dump(mode="json"))
            self._path(INTENTS_DIR, record.key).unlink(missing_ok=True)
            return stored

        async with self._keys.hold(record.key):
            return await asyncio.to_thread(_commit)

    async def remove(self, key: ResourceKey, *, expected_serial: int | None) -> None:
        def _remove() -> None:
            check_serial(key, self._read_optional(key), expected_serial)
            self._path(RECORDS_DIR, key).unlink(missing_ok=True)
            self._path(INTENTS_DIR, key).unlink(missing_ok=True)

        async with self._keys.hold(key):
            await asyncio.to_thread(_remove)

    async def write_intent(self, intent: Intent) -> None:
        path = self._path(INTENTS_DIR, intent.key)
        async with self._keys.hold(intent.key):
            await asyncio.to_thread(_write_atomic, path, intent.model_dump(mode="json"))

    async def clear_intent(self, key: ResourceKey) -> None:
        path = self._path(INTENTS_DIR, key)
        async with self._keys.hold(key):
            await asyncio.to_thread(path.unlink, True)

    def _acquire(self, key: ResourceKey, owner: str) -> Path:
        path = self._path(LOCKS_DIR, key, suffix=".lock")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            try:
                holder = json.loads(path.read_text())
            except (OSError, ValueError):
                holder = {}
            raise ConcurrencyError(
                f"{key} is locked by another run",
                {"resource": str(key), "holder": holder.get("owner", "unknown")},
            ) from None
        with os.fdopen(fd, "w") as f:
            json.dump(
                {
                    "owner": owner,
                    "pid": os.getpid(),
                    "acquired_at": datetime.now(timezone.utc).isoformat(),
                },
                f,
            )
        return path

    def _release(self, path: Path, owner: str) -> None:
        try:
            holder = json.loads(path.read_text())
        except (OSError, ValueError):
            return
        if holder.get("owner") == owner:
            path.unlink(missing_ok=True)

    @asynccontextmanager
    async def lock(self, key: ResourceKey, owner: str) -> AsyncIterator[None]:
        path = await asyncio.to_thread(self._acquire, key, owner)
        try:
            yield
        finally:
            await asyncio.to_thread(self._release, path, owner)

    async def break_lock(self, key: ResourceKey) -> bool:
        path = self._path(LOCKS_DIR, key, suffix=".lock")
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink, True)
        logger.warning("lock_broken", resource=str(key))
        return True
