"""Domain exceptions.

Managers and the registry raise these; only the command surface turns them
into user-visible messages.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error the command surface reports to the user."""

    @property
    def user_message(self) -> str:
        return str(self)


# -- Validation ----------------------------------------------------------------


class ValidationError(SyncError, ValueError):
    """Bad user input or missing configuration.  Never retried."""


class InvalidNameError(ValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"The project name {name!r} only contains special characters and can not be initialized"
        )
        self.name = name


class MissingCredentialsError(ValidationError):
    def __init__(self, detail: str = "API key and user ID are required") -> None:
        super().__init__(f"You are not connected to the QuantConnect API: {detail}")


class ProjectNotResolvedError(ValidationError):
    """The binding has no remote project id yet (local-only)."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Project {name!r} is not linked to a cloud project")
        self.name = name


# -- Remote --------------------------------------------------------------------


class RemoteRequestError(SyncError):
    """Network failure, bad HTTP status or an envelope with ``success == false``."""

    def __init__(self, endpoint: str, errors: list[str] | None = None, *, detail: str | None = None) -> None:
        self.endpoint = endpoint
        self.errors = list(errors or [])
        reason = detail or "; ".join(self.errors) or "no reason given"
        super().__init__(f"Request to '{endpoint}' failed: {reason}")


# -- Local filesystem ----------------------------------------------------------


class LocalFilesystemError(SyncError):
    """Local state prevents the operation; nothing was changed."""


class DirectoryExhaustedError(LocalFilesystemError):
    def __init__(self, base: str, attempts: int) -> None:
        super().__init__(
            f"Project directory names for {base!r} are occupied ({attempts} tries). "
            "Please rename a folder and run this again"
        )
        self.base = base
        self.attempts = attempts


class DuplicatePathError(LocalFilesystemError):
    def __init__(self, path: str) -> None:
        super().__init__(f"A project is already registered at {path}")
        self.path = path


# -- Lookup --------------------------------------------------------------------


class NotFoundError(SyncError, LookupError):
    pass


class ProjectNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No cloud project named {name!r}")
        self.name = name
