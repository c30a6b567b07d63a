"""Local project bindings and their persisted records.

A binding links a cloud project to a local directory and the files in it.
Bindings are mutable in-process objects; what survives a restart is the
``BindingRecord`` produced by :func:`binding_to_record`.  File contents are
never persisted: they are re-read from disk on restore.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from quantsync.workspace.models.enums import Language

SNAPSHOT_VERSION = 1


# -- In-process state ----------------------------------------------------------


@dataclass
class LocalFile:
    """One file of a bound project.

    ``synced_to_remote`` is read-only: it only becomes true through
    :meth:`mark_synced` with the exact content the server acknowledged, and
    :meth:`reload` clears it whenever the content on disk changed.
    """

    path: Path
    content: str = ""
    _synced: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path).resolve()

    @classmethod
    def downloaded(cls, path: Path, content: str) -> LocalFile:
        """A file whose content was just written from the cloud copy."""
        local = cls(path, content)
        local._synced = True
        return local

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def synced_to_remote(self) -> bool:
        return self._synced

    def reload(self) -> str:
        """Re-read the file from disk.  Raises ``OSError`` if it is gone."""
        content = self.path.read_text(encoding="utf-8")
        if content != self.content:
            self.content = content
            self._synced = False
        return content

    def mark_synced(self, content: str) -> None:
        """Record a confirmed remote write of *content*."""
        self._synced = content == self.content


@dataclass
class LocalProjectBinding:
    """A cloud project materialised in a local directory."""

    name: str
    language: Language
    local_path: Path
    remote_id: int | None = None
    files: list[LocalFile] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.local_path = Path(self.local_path).resolve()

    @property
    def is_resolved(self) -> bool:
        return self.remote_id is not None

    def contains(self, path: str | Path) -> bool:
        """Whether *path* is the project directory or anything below it."""
        return Path(path).resolve().is_relative_to(self.local_path)

    def file_for(self, path: str | Path) -> LocalFile | None:
        target = Path(path).resolve()
        for local in self.files:
            if local.path == target:
                return local
        return None

    def add_file(self, local: LocalFile) -> LocalFile:
        """Add or replace the entry for ``local.path``."""
        for index, existing in enumerate(self.files):
            if existing.path == local.path:
                self.files[index] = local
                return local
        self.files.append(local)
        return local


# -- Persisted records ---------------------------------------------------------


class BindingRecord(BaseModel):
    """Serialized form of a binding (no file contents, no sync flags)."""

    remote_id: int | None = None
    name: str
    language: Language
    local_path: str
    files: list[str] = Field(default_factory=list, description="File names relative to local_path")


class SessionSnapshot(BaseModel):
    """Everything the workspace needs to restore its open projects."""

    version: int = SNAPSHOT_VERSION
    bindings: list[BindingRecord] = Field(default_factory=list)


def binding_to_record(binding: LocalProjectBinding) -> BindingRecord:
    return BindingRecord(
        remote_id=binding.remote_id,
        name=binding.name,
        language=binding.language,
        local_path=str(binding.local_path),
        files=[local.name for local in binding.files],
    )


def binding_from_record(record: BindingRecord) -> LocalProjectBinding:
    """Rebuild a binding shell; ``files`` is left empty for a disk re-scan."""
    return LocalProjectBinding(
        name=record.name,
        language=record.language,
        local_path=Path(record.local_path),
        remote_id=record.remote_id,
    )


# -- Disk scanning -------------------------------------------------------------


def is_project_file_name(name: str) -> bool:
    """Whether a top-level file called *name* belongs in the cloud project.

    Hidden files (``.env``, ``.quantsync``, editor state) always stay local.
    """
    return bool(name) and not name.startswith(".")


def scan_project_files(directory: Path) -> list[LocalFile]:
    """Load every regular file directly inside *directory*.

    Cloud projects have a flat file namespace, so subdirectories are ignored.
    Hidden entries (``.quantsync``, ``.env``, editor folders) and files that
    are not valid UTF-8 are skipped.
    """
    files: list[LocalFile] = []
    for entry in sorted(directory.iterdir()):
        if not is_project_file_name(entry.name) or not entry.is_file():
            continue
        try:
            content = entry.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping non-text file {}", entry)
            continue
        files.append(LocalFile(entry, content))
    return files
