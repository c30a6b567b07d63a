"""Local filesystem state store.

Stores the session snapshot as JSON inside the workspace::

    {state_dir}/session.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.

Writes are atomic: data is written to a temporary file in the same directory,
then renamed to the target path, so a crash mid-write never leaves a corrupt
snapshot behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread

from quantsync.workspace.models.binding import SessionSnapshot

SNAPSHOT_FILE = "session.json"


class LocalStateStore:
    """Local filesystem implementation of the StateStore protocol."""

    def __init__(self, state_dir: str | Path) -> None:
        self._path = Path(state_dir) / SNAPSHOT_FILE

    @property
    def path(self) -> Path:
        return self._path

    async def write_snapshot(self, snapshot: SessionSnapshot) -> None:
        data = snapshot.model_dump_json(indent=2)
        await to_thread.run_sync(partial(_atomic_write, self._path, data))

    async def read_snapshot(self) -> SessionSnapshot:
        raw = await to_thread.run_sync(partial(_read_file, self._path))
        return SessionSnapshot.model_validate_json(raw)

    async def exists(self) -> bool:
        return await to_thread.run_sync(self._path.exists)

    async def delete(self) -> None:
        await to_thread.run_sync(partial(self._path.unlink, missing_ok=True))


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8")
