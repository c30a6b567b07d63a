"""State store implementations for workspace session persistence."""

from quantsync.workspace.store.base import StateStore
from quantsync.workspace.store.local import LocalStateStore

__all__ = ["LocalStateStore", "StateStore"]
