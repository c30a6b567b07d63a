"""In-process project registry.

Tracks the project bindings open in the current workspace session, keyed by
their resolved local directory.  Ephemeral: what survives a restart is the
snapshot written by the session controller, re-hydrated on the next start.

Only touched from the event loop, so there is no locking.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from quantsync.workspace.errors import DuplicatePathError
from quantsync.workspace.models.binding import (
    BindingRecord,
    LocalFile,
    LocalProjectBinding,
    binding_from_record,
    binding_to_record,
    scan_project_files,
)


class ProjectRegistry:
    """Registry of project bindings, one per local directory."""

    def __init__(self) -> None:
        self._bindings: dict[Path, LocalProjectBinding] = {}

    # -- Mutation --------------------------------------------------------------

    def register(self, binding: LocalProjectBinding) -> None:
        """Register a binding.  Raises ``DuplicatePathError`` if its directory is taken."""
        if binding.local_path in self._bindings:
            raise DuplicatePathError(str(binding.local_path))
        logger.debug("Registry: register {} at {} (remote_id={})", binding.name, binding.local_path, binding.remote_id)
        self._bindings[binding.local_path] = binding

    def unregister(self, local_path: str | Path) -> LocalProjectBinding | None:
        binding = self._bindings.pop(Path(local_path).resolve(), None)
        if binding:
            logger.debug("Registry: unregister {}", binding.local_path)
        return binding

    # -- Query -----------------------------------------------------------------

    def get(self, local_path: str | Path) -> LocalProjectBinding | None:
        return self._bindings.get(Path(local_path).resolve())

    def all_bindings(self) -> list[LocalProjectBinding]:
        """Return a snapshot of all bindings in registration order."""
        return list(self._bindings.values())

    def find_by_path(self, path: str | Path) -> LocalProjectBinding | None:
        """Return the binding whose directory contains *path*.

        Containment is checked per path component, so ``/ws/foo_1/main.py``
        does not belong to ``/ws/foo``.  When bindings nest (a flat-workspace
        project around a sub-folder project) the deepest directory wins.
        """
        target = Path(path).resolve()
        best: LocalProjectBinding | None = None
        for binding in self._bindings.values():
            if not target.is_relative_to(binding.local_path):
                continue
            if best is None or len(binding.local_path.parts) > len(best.local_path.parts):
                best = binding
        return best

    @staticmethod
    def find_open_file(binding: LocalProjectBinding, path: str | Path) -> LocalFile | None:
        return binding.file_for(path)

    @property
    def active_count(self) -> int:
        return len(self._bindings)

    # -- Persistence -----------------------------------------------------------

    def snapshot(self) -> list[BindingRecord]:
        return [binding_to_record(binding) for binding in self._bindings.values()]

    def restore(self, records: list[BindingRecord]) -> list[LocalProjectBinding]:
        """Rebuild bindings from records, re-scanning each directory from disk.

        Records whose directory is gone are dropped; records that collide with
        an already registered directory are skipped.  Returns the bindings
        that were registered.
        """
        restored: list[LocalProjectBinding] = []
        for record in records:
            binding = binding_from_record(record)
            if not binding.local_path.is_dir():
                logger.info("Registry: dropping {} ({} no longer exists)", binding.name, binding.local_path)
                continue
            if binding.local_path in self._bindings:
                logger.warning("Registry: {} already registered, skipping restored record", binding.local_path)
                continue
            binding.files = scan_project_files(binding.local_path)
            self.register(binding)
            restored.append(binding)
        return restored
