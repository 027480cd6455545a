"""Scratch directory for tool artifacts under the resolved workspace.

Files are named ``<hint>_<YYMMDDHHMMSS>.<ext>``.  Concurrent writers never
collide: names are claimed with exclusive create, and a ``-<n>`` suffix is
added when the timestamped name is already taken.  No lock is held across
writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from sfcontext.config import DEFAULT_RETENTION_DAYS, DEFAULT_TEMP_SUBDIR
from sfcontext.state import ProcessState

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400
_MAX_NAME_ATTEMPTS = 1000
_UNSAFE_HINT_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def compact_timestamp(now: datetime | None = None) -> str:
    """Return a ``YYMMDDHHMMSS`` timestamp in local time."""
    return (now or datetime.now()).strftime("%y%m%d%H%M%S")


def _safe_hint(name_hint: str) -> str:
    cleaned = _UNSAFE_HINT_CHARS.sub("_", name_hint).strip("._")
    return cleaned or "artifact"


def ensure_base_dir(workspace_path: str | Path, subdir: str = DEFAULT_TEMP_SUBDIR) -> Path:
    """Create ``<workspace>/<subdir>`` if needed and return it.

    Raises NotADirectoryError if something other than a directory occupies
    the path.
    """
    base_dir = Path(workspace_path) / subdir
    if base_dir.exists() and not base_dir.is_dir():
        msg = f"Temp path exists but is not a directory: {base_dir}"
        raise NotADirectoryError(msg)
    try:
        base_dir.mkdir(parents=True, exist_ok=True)
    except FileExistsError:
        # Lost a race against something creating a file at this path.
        msg = f"Temp path exists but is not a directory: {base_dir}"
        raise NotADirectoryError(msg) from None
    return base_dir


def cleanup_obsolete(base_dir: Path, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    """Delete regular files in *base_dir* older than *retention_days*.

    Best-effort: every failure is logged and swallowed.  Subdirectories are
    left alone.  Returns the number of files removed.
    """
    cutoff = time.time() - retention_days * _SECONDS_PER_DAY
    removed = 0
    try:
        entries = list(base_dir.iterdir())
    except OSError:
        logger.warning("Could not list temp dir %s for cleanup", base_dir, exc_info=True)
        return 0

    for entry in entries:
        try:
            if not entry.is_file() or entry.stat().st_mtime >= cutoff:
                continue
            entry.unlink()
            removed += 1
        except FileNotFoundError:
            continue  # removed by a concurrent cleanup
        except OSError:
            logger.warning("Could not remove obsolete temp file %s", entry, exc_info=True)
    if removed:
        logger.debug("Removed %d obsolete temp file(s) from %s", removed, base_dir)
    return removed


def _serialize(content: Any) -> tuple[str | bytes, str]:
    """Return (payload, default_extension) for *content*."""
    if isinstance(content, bytes):
        return content, "bin"
    if isinstance(content, str):
        return content, "txt"
    return json.dumps(content, indent=3, default=str), "json"


class TempFileManager:
    """Owns the scratch directory for one process."""

    def __init__(
        self,
        state: ProcessState,
        *,
        subdir: str = DEFAULT_TEMP_SUBDIR,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._state = state
        self.subdir = subdir
        self.retention_days = retention_days

    def ensure_base_dir(self, workspace_path: str | Path | None = None) -> Path:
        """Scratch dir under *workspace_path*, defaulting to the primary workspace."""
        if workspace_path is None:
            workspace_path = self._state.get().primary_workspace or Path.cwd()
        return ensure_base_dir(workspace_path, self.subdir)

    def cleanup_obsolete(self, base_dir: Path | None = None, retention_days: int | None = None) -> int:
        return cleanup_obsolete(
            base_dir or self.ensure_base_dir(),
            self.retention_days if retention_days is None else retention_days,
        )

    def write_sync(
        self,
        name_hint: str,
        content: Any,
        *,
        extension: str | None = None,
        encoding: str = "utf-8",
        workspace_path: str | Path | None = None,
    ) -> Path:
        """Write *content* to a new uniquely named file and return its path.

        Strings are written as-is (default ``.txt``), bytes verbatim (``.bin``)
        and anything else as indented JSON (``.json``).
        """
        base_dir = self.ensure_base_dir(workspace_path)
        self.cleanup_obsolete(base_dir)

        payload, default_ext = _serialize(content)
        ext = (extension or default_ext).lstrip(".")
        stem = f"{_safe_hint(name_hint)}_{compact_timestamp()}"

        for attempt in range(_MAX_NAME_ATTEMPTS):
            candidate = base_dir / (f"{stem}.{ext}" if attempt == 0 else f"{stem}-{attempt}.{ext}")
            try:
                if isinstance(payload, bytes):
                    with candidate.open("xb") as fh:
                        fh.write(payload)
                else:
                    with candidate.open("x", encoding=encoding) as fh:
                        fh.write(payload)
            except FileExistsError:
                continue
            logger.debug("Temp file written: %s", candidate)
            return candidate

        msg = f"Could not allocate a unique temp filename for {stem!r} in {base_dir}"
        raise FileExistsError(msg)

    async def write(
        self,
        name_hint: str,
        content: Any,
        *,
        extension: str | None = None,
        encoding: str = "utf-8",
        workspace_path: str | Path | None = None,
    ) -> Path:
        """Async wrapper around :meth:`write_sync`; disk I/O runs in a worker thread."""
        return await asyncio.to_thread(
            self.write_sync,
            name_hint,
            content,
            extension=extension,
            encoding=encoding,
            workspace_path=workspace_path,
        )
