"""Project reconciliation -- brings local directories and cloud projects into line.

Three entry points:

1. **Create** (:meth:`ProjectReconciler.create_project`): normalize the name,
   pick a free directory, create the cloud project, download its template
   files without clobbering anything, register the binding.
2. **Download** (:meth:`ProjectReconciler.download_project`): find the cloud
   project by name (most recently modified wins among duplicates), ask what
   to do about existing local files, download, register.
3. **Re-hydrate** (:meth:`ProjectReconciler.rehydrate`): rebuild bindings
   from the persisted snapshot and re-link the ones whose cloud id is
   unknown.

Uploads go through :meth:`ProjectReconciler.save_file`.  A file's sync flag
only flips after the server acknowledged the write.  Nothing is rolled back
on failure: files already written stay written, and the registry only ever
holds bindings whose directory exists.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
from loguru import logger

from quantsync.workspace.errors import (
    DirectoryExhaustedError,
    DuplicatePathError,
    InvalidNameError,
    LocalFilesystemError,
    NotFoundError,
    ProjectNotFoundError,
    ProjectNotResolvedError,
    RemoteRequestError,
    SyncError,
    ValidationError,
)
from quantsync.workspace.models.binding import (
    BindingRecord,
    LocalFile,
    LocalProjectBinding,
    is_project_file_name,
    scan_project_files,
)
from quantsync.workspace.models.enums import Disposition, Language

if TYPE_CHECKING:
    from quantsync.workspace.client import LeanApiClient
    from quantsync.workspace.context import SyncContext
    from quantsync.workspace.models.api import Project, ProjectFile
    from quantsync.workspace.registry import ProjectRegistry

_DISALLOWED_NAME_CHARS = re.compile(r"[^A-Za-z0-9_ .\-]")

_DISPOSITION_CHOICES = {
    "Skip existing files": Disposition.SKIP,
    "Overwrite existing files": Disposition.OVERWRITE,
}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def normalize_project_name(name: str) -> str:
    """Strip every character outside ``[A-Za-z0-9_ .-]`` and surrounding blanks."""
    return _DISALLOWED_NAME_CHARS.sub("", name).strip()


def allocate_project_directory(
    workspace_root: Path,
    name: str,
    *,
    flat: bool = False,
    max_attempts: int = 20,
) -> Path:
    """Pick the directory a new project goes into.

    ``flat`` returns the workspace root itself.  Otherwise ``<root>/<name>``,
    then ``<name>_1`` ... ``<name>_<max_attempts>``, whichever is free first.
    """
    if flat:
        return workspace_root
    candidate = workspace_root / name
    if not candidate.exists():
        return candidate
    for attempt in range(1, max_attempts + 1):
        candidate = workspace_root / f"{name}_{attempt}"
        if not candidate.exists():
            return candidate
    raise DirectoryExhaustedError(name, max_attempts)


def select_latest_project(projects: Iterable[Project], name: str) -> Project:
    """Among the projects called *name*, return the most recently modified.

    Ties keep the first one encountered.  Raises ``ProjectNotFoundError`` if
    no project has that exact name.
    """
    latest: Project | None = None
    for project in projects:
        if project.name != name:
            continue
        if latest is None or _modified_key(project) > _modified_key(latest):
            latest = project
    if latest is None:
        raise ProjectNotFoundError(name)
    return latest


def _modified_key(project: Project) -> float:
    return project.modified.timestamp() if project.modified else float("-inf")


def _is_flat_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and name not in {".", ".."}


def write_project_files(directory: Path, files: Sequence[ProjectFile], *, overwrite: bool) -> list[LocalFile]:
    """Materialise cloud files in *directory*.

    Without ``overwrite`` an existing local file is left exactly as it is and
    returned with its local content.  Returns one ``LocalFile`` per file
    handled; names that would escape the flat project directory are skipped.
    """
    written: list[LocalFile] = []
    for remote in files:
        if not _is_flat_name(remote.name):
            logger.warning("Skipping cloud file with nested or unsafe name {!r}", remote.name)
            continue
        target = directory / remote.name
        if target.exists() and not overwrite:
            try:
                content = target.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.warning("Keeping non-text local file {} untouched", target)
                continue
            local = LocalFile.downloaded(target, content) if content == remote.content else LocalFile(target, content)
            logger.debug("Kept existing {}", target)
        else:
            target.write_text(remote.content, encoding="utf-8", newline="")
            local = LocalFile.downloaded(target, remote.content)
            logger.debug("Wrote {}", target)
        written.append(local)
    return written


def _has_visible_files(directory: Path) -> bool:
    if not directory.is_dir():
        return False
    return any(entry.is_file() and not entry.name.startswith(".") for entry in directory.iterdir())


def _saved_path(active_path: str | Path | None) -> Path | None:
    """The active editor file as a path, or ``None`` if untitled/unsaved."""
    if not active_path:
        return None
    path = Path(active_path)
    if not path.is_file():
        return None
    return path.resolve()


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class ProjectReconciler:
    """Create, download, re-link and upload projects for one workspace session."""

    def __init__(self, context: SyncContext) -> None:
        self._ctx = context

    @property
    def registry(self) -> ProjectRegistry:
        return self._ctx.registry

    async def _client(self) -> LeanApiClient:
        return await self._ctx.credentials.ensure_client()

    # -- Scenario A: create ----------------------------------------------------

    async def create_project(self, name: str, language: Language) -> LocalProjectBinding:
        """Create a cloud project and set it up in a fresh local directory."""
        settings = self._ctx.settings
        normalized = normalize_project_name(name)
        if not normalized or set(normalized) == {"."}:
            raise InvalidNameError(name)

        client = await self._client()

        directory = allocate_project_directory(
            settings.workspace_path,
            normalized,
            flat=settings.workspace_as_root_path,
            max_attempts=settings.max_directory_attempts,
        )
        if self.registry.get(directory) is not None:
            raise DuplicatePathError(str(directory))
        directory.mkdir(parents=True, exist_ok=True)

        response = await client.create_project(name, language)
        if not response.projects:
            raise RemoteRequestError("projects/create", detail="the server did not return the new project")
        project = response.projects[0]
        logger.info("Created cloud project {} (id={}) in {}", project.name, project.project_id, directory)

        binding = LocalProjectBinding(
            name=project.name,
            language=project.language,
            local_path=directory,
            remote_id=project.project_id,
            files=scan_project_files(directory),
        )
        self.registry.register(binding)
        await self._download_into(client, binding, overwrite=False)
        return binding

    # -- Scenario B: download --------------------------------------------------

    async def download_project(
        self,
        name: str,
        *,
        disposition: Disposition | None = None,
    ) -> LocalProjectBinding:
        """Download the cloud project called *name* into the workspace.

        If the target directory already holds files and no *disposition* is
        given, the user is asked whether to skip or overwrite them; no answer
        means skip.
        """
        settings = self._ctx.settings
        client = await self._client()

        response = await client.list_projects()
        project = select_latest_project(response.projects, name)

        normalized = normalize_project_name(project.name)
        if not normalized or set(normalized) == {"."}:
            raise InvalidNameError(project.name)
        directory = settings.workspace_path if settings.workspace_as_root_path else settings.workspace_path / normalized

        existing = self.registry.get(directory)
        if existing is not None and existing.remote_id not in (None, project.project_id):
            raise DuplicatePathError(str(directory))

        if disposition is None and _has_visible_files(directory):
            disposition = await self._ask_disposition(directory)
        overwrite = disposition == Disposition.OVERWRITE

        directory.mkdir(parents=True, exist_ok=True)
        if existing is None:
            binding = LocalProjectBinding(
                name=project.name,
                language=project.language,
                local_path=directory,
                remote_id=project.project_id,
                files=scan_project_files(directory),
            )
            self.registry.register(binding)
        else:
            binding = existing
            binding.remote_id = project.project_id

        logger.info(
            "Downloading cloud project {} (id={}) into {} ({})",
            project.name,
            project.project_id,
            directory,
            "overwrite" if overwrite else "skip existing",
        )
        await self._download_into(client, binding, overwrite=overwrite)
        return binding

    async def _ask_disposition(self, directory: Path) -> Disposition:
        answer = await self._ctx.prompter.pick(
            list(_DISPOSITION_CHOICES),
            placeholder=f"{directory} already contains files",
        )
        if answer is None:
            return Disposition.SKIP
        return _DISPOSITION_CHOICES[answer]

    async def _download_into(self, client: LeanApiClient, binding: LocalProjectBinding, *, overwrite: bool) -> None:
        if binding.remote_id is None:
            raise ProjectNotResolvedError(binding.name)
        response = await client.read_project_files(binding.remote_id)
        for local in write_project_files(binding.local_path, response.files, overwrite=overwrite):
            binding.add_file(local)
        logger.info("Project {}: {} cloud files reconciled", binding.name, len(response.files))

    # -- Scenario C: re-hydrate ------------------------------------------------

    async def rehydrate(self, records: list[BindingRecord]) -> list[LocalProjectBinding]:
        """Restore persisted bindings and re-link the ones without a cloud id.

        Failing to re-link is reported but never fatal: the binding stays
        registered with ``remote_id = None`` so local-only lookups still work.
        """
        restored = self.registry.restore(records)
        unresolved = [binding for binding in restored if not binding.is_resolved]
        if not unresolved:
            return restored

        try:
            client = await self._client()
            projects = (await client.list_projects()).projects
        except SyncError as exc:
            logger.warning("Could not list cloud projects to re-link {} bindings: {}", len(unresolved), exc)
            self._ctx.prompter.error(f"Could not link {len(unresolved)} project(s) to the cloud: {exc.user_message}")
            return restored

        for binding in unresolved:
            try:
                binding.remote_id = select_latest_project(projects, binding.name).project_id
            except ProjectNotFoundError as exc:
                self._ctx.prompter.error(exc.user_message)
                continue
            logger.info("Re-linked {} to cloud project {}", binding.local_path, binding.remote_id)
        return restored

    # -- Active file resolution ------------------------------------------------

    def current_project(self, active_path: str | Path | None) -> LocalProjectBinding | None:
        path = _saved_path(active_path)
        if path is None:
            return None
        return self.registry.find_by_path(path)

    def current_file(self, active_path: str | Path | None) -> LocalFile | None:
        binding = self.current_project(active_path)
        if binding is None:
            return None
        return self.registry.find_open_file(binding, active_path)

    # -- Upload ----------------------------------------------------------------

    async def save_file(
        self,
        binding: LocalProjectBinding,
        local: LocalFile,
        *,
        confirm: bool | None = None,
        create: bool = False,
    ) -> bool:
        """Upload one file.  Returns ``False`` if the user declined.

        The content is always re-read from disk first and always sent, even
        when it matches the last upload.  ``confirm`` overrides the
        ``upload_skip_dialog`` setting; ``create`` uploads through
        ``files/create`` for files the cloud project does not have yet.
        """
        if binding.remote_id is None:
            raise ProjectNotResolvedError(binding.name)
        try:
            content = local.reload()
        except OSError as exc:
            raise LocalFilesystemError(f"Can not read {local.path}: {exc}") from exc

        ask = confirm if confirm is not None else not self._ctx.settings.upload_skip_dialog
        if ask:
            answer = await self._ctx.prompter.confirm(
                f"Overwrite '{local.name}' in cloud project '{binding.name}' with your local copy?"
            )
            if not answer:
                logger.info("Upload of {} declined", local.path)
                return False

        client = await self._client()
        if create:
            await client.add_project_file(binding.remote_id, local.name, content)
        else:
            await client.update_project_file_content(binding.remote_id, local.name, content)
        local.mark_synced(content)
        logger.info("Uploaded {} to cloud project {} (id={})", local.name, binding.name, binding.remote_id)
        return True

    async def save_project(self, binding: LocalProjectBinding, *, confirm: bool | None = None) -> int:
        """Upload every file of *binding*, pausing between requests.

        A failing file is reported and the rest still go out.  Returns the
        number of files uploaded.
        """
        if binding.remote_id is None:
            raise ProjectNotResolvedError(binding.name)
        uploaded = 0
        for index, local in enumerate(list(binding.files)):
            if index:
                await anyio.sleep(self._ctx.settings.upload_interval)
            try:
                if await self.save_file(binding, local, confirm=confirm):
                    uploaded += 1
            except SyncError as exc:
                logger.warning("Upload of {} failed: {}", local.path, exc)
                self._ctx.prompter.error(f"{local.name}: {exc.user_message}")
        return uploaded

    def uploadable_project(self, active_path: str | Path | None) -> LocalProjectBinding | None:
        """The project *active_path* would be uploaded to, or ``None`` if it stays local."""
        binding = self.current_project(active_path)
        if binding is None or self._local_only_reason(Path(active_path).resolve(), binding):
            return None
        return binding

    def _local_only_reason(self, path: Path, binding: LocalProjectBinding) -> str | None:
        if path.parent != binding.local_path:
            return f"{path.name} is inside a sub-folder; cloud projects only hold top-level files"
        if not is_project_file_name(path.name) or path == self._ctx.settings.env_path:
            return f"{path.name} is a hidden or workspace settings file and is never uploaded"
        return None

    async def save_active_file(self, active_path: str | Path | None, *, confirm: bool | None = None) -> bool:
        """Upload the file open in the editor, adding it to its project if new."""
        path = _saved_path(active_path)
        if path is None:
            raise NotFoundError("There is no saved file to upload")
        binding = self.registry.find_by_path(path)
        if binding is None:
            raise NotFoundError(f"{path} is not part of a QuantConnect project")
        reason = self._local_only_reason(path, binding)
        if reason:
            raise ValidationError(reason)

        local = binding.file_for(path)
        if local is not None:
            return await self.save_file(binding, local, confirm=confirm)

        local = LocalFile(path)
        if await self.save_file(binding, local, confirm=confirm, create=True):
            binding.add_file(local)
            return True
        return False
