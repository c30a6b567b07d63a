"""State store interface for workspace session persistence.

The state store keeps the list of open project bindings between runs.  It
holds records only; file contents always come from the project directories
themselves.  The interface is async so a slow disk never stalls the event
loop.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from quantsync.workspace.models.binding import SessionSnapshot


@runtime_checkable
class StateStore(Protocol):
    """Async protocol for reading and writing the session snapshot.

    Storage layout::

        {workspace_root}/{state_dir}/session.json
    """

    async def write_snapshot(self, snapshot: SessionSnapshot) -> None:
        """Persist the snapshot, replacing any previous one."""
        ...

    async def read_snapshot(self) -> SessionSnapshot:
        """Read the snapshot.  Raises ``FileNotFoundError`` if none was written."""
        ...

    async def exists(self) -> bool: ...

    async def delete(self) -> None:
        """Remove the stored snapshot.  No-op if not found."""
        ...
