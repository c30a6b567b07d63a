"""Workspace session controller.

Owns the ``SyncContext`` for one run: restores the open projects on start,
persists them on stop and reacts to file saves.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from quantsync.workspace.context import SyncContext
from quantsync.workspace.errors import SyncError
from quantsync.workspace.managers.reconciler import ProjectReconciler
from quantsync.workspace.models.binding import LocalProjectBinding, SessionSnapshot


class SyncSession:
    """Lifecycle of one workspace session.

    Usage::

        async with SyncSession(context) as session:
            await session.on_file_saved(path)
    """

    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.reconciler = ProjectReconciler(context)

    async def __aenter__(self) -> SyncSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> list[LocalProjectBinding]:
        """Restore the bindings persisted by the previous session."""
        store = self.context.store
        try:
            snapshot = await store.read_snapshot()
        except FileNotFoundError:
            logger.debug("No saved session state, starting empty")
            return []
        except PydanticValidationError as exc:
            logger.warning("Ignoring unreadable session state: {}", exc)
            return []

        restored = await self.reconciler.rehydrate(snapshot.bindings)
        logger.info("Session restored: {} of {} projects", len(restored), len(snapshot.bindings))
        return restored

    async def stop(self) -> None:
        """Persist the open bindings and release the API client."""
        snapshot = SessionSnapshot(bindings=self.context.registry.snapshot())
        try:
            await self.context.store.write_snapshot(snapshot)
            logger.debug("Session state saved ({} projects)", len(snapshot.bindings))
        finally:
            await self.context.credentials.aclose()

    async def on_file_saved(self, path: str | Path) -> bool:
        """Upload a just-saved file when upload-on-save is enabled.

        Files outside any project, in a project sub-folder, hidden or holding
        workspace settings are ignored.  Returns whether the file was uploaded.
        """
        if not self.context.settings.upload_on_save:
            return False
        if self.reconciler.uploadable_project(path) is None:
            return False
        try:
            return await self.reconciler.save_active_file(path)
        except SyncError as exc:
            logger.warning("Upload on save failed for {}: {}", path, exc)
            self.context.prompter.error(exc.user_message)
            return False
