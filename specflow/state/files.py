"""
JSON file helpers for the state directory.

Writes go to a temp file in the same directory and are moved into place with
os.replace, so a reader never sees a half-written file. Reads never raise:
a missing, unreadable or invalid file comes back as None and the caller
substitutes its default.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from specflow.lib.errors import StateWriteError
from specflow.lib.validate import SchemaError, validate

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """Serialize data to path atomically.

    Raises:
        StateWriteError: if the directory or file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        logger.warning(f"[STATE] Cannot write {path}: {e}")
        raise StateWriteError(path, e) from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        logger.warning(f"[STATE] Cannot write {path}: {e}")
        raise StateWriteError(path, e) from e


def _previous_bytes(path: Path) -> bytes | None:
    if not path.is_file():
        return None
    try:
        return path.read_bytes()
    except OSError as e:
        raise StateWriteError(path, e) from e


def _restore_bytes(path: Path, previous: bytes | None) -> None:
    try:
        if previous is None:
            path.unlink(missing_ok=True)
            return
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as handle:
            handle.write(previous)
        os.replace(tmp_path, str(path))
    except OSError as e:
        logger.error(f"[STATE] Could not restore {path.name} after a failed write: {e}")


def write_json_group(entries: list[tuple[Path, Any]]) -> None:
    """Write several files in order as one unit.

    If a write fails, files already written by this call get their previous
    contents back (or are removed if they did not exist) before the error
    propagates.

    Raises:
        StateWriteError: from the first write that failed
    """
    written: list[tuple[Path, bytes | None]] = []
    for path, data in entries:
        try:
            previous = _previous_bytes(path)
            write_json_atomic(path, data)
        except StateWriteError:
            for done_path, done_previous in reversed(written):
                _restore_bytes(done_path, done_previous)
            raise
        written.append((path, previous))


def read_json(path: Path, schema_name: str | None = None) -> Any | None:
    """Load JSON from path, returning None if it is missing or unusable."""
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"[STATE] Ignoring unreadable {path.name}: {e}")
        return None

    if schema_name:
        try:
            validate(data, schema_name)
        except SchemaError as e:
            logger.warning(f"[STATE] Ignoring invalid {path.name}: {e}")
            return None

    return data


def append_jsonl(path: Path, entry: dict) -> None:
    """Append one JSON line to path."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")
    except OSError as e:
        logger.warning(f"[STATE] Cannot append to {path}: {e}")
        raise StateWriteError(path, e) from e


def read_jsonl(path: Path) -> list[dict]:
    """Read a JSONL file, skipping blank and corrupt lines."""
    if not path.exists():
        return []

    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"[STATE] Skipping corrupt line in {path.name}")
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


async def read_json_async(path: Path, schema_name: str | None = None) -> Any | None:
    return await asyncio.to_thread(read_json, path, schema_name)


async def write_json_group_async(entries: list[tuple[Path, Any]]) -> None:
    await asyncio.to_thread(write_json_group, entries)
