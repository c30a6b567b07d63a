"""Workspace session context.

Everything the reconciler and command handlers share lives here and is
passed around explicitly: no module-level registry, no global credential
manager.  The session controller builds one context per run.
"""

from __future__ import annotations

from dataclasses import dataclass

from quantsync.workspace.credentials import CredentialProvider
from quantsync.workspace.prompts import Prompter
from quantsync.workspace.registry import ProjectRegistry
from quantsync.workspace.settings import SyncSettings
from quantsync.workspace.store.base import StateStore
from quantsync.workspace.store.local import LocalStateStore


@dataclass
class SyncContext:
    """Shared state for one workspace session."""

    settings: SyncSettings
    prompter: Prompter
    registry: ProjectRegistry
    credentials: CredentialProvider
    store: StateStore

    @classmethod
    def create(
        cls,
        settings: SyncSettings,
        prompter: Prompter,
        *,
        credentials: CredentialProvider | None = None,
        store: StateStore | None = None,
    ) -> SyncContext:
        return cls(
            settings=settings,
            prompter=prompter,
            registry=ProjectRegistry(),
            credentials=credentials or CredentialProvider(settings, prompter),
            store=store or LocalStateStore(settings.state_path),
        )
