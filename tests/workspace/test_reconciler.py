"""Tests for the project reconciler: create, download, re-hydrate, upload."""

from __future__ import annotations

from pathlib import Path

import pytest

from quantsync.workspace.errors import (
    DirectoryExhaustedError,
    DuplicatePathError,
    InvalidNameError,
    NotFoundError,
    ProjectNotFoundError,
    ProjectNotResolvedError,
    RemoteRequestError,
    ValidationError,
)
from quantsync.workspace.managers import reconciler as reconciler_module
from quantsync.workspace.managers.reconciler import (
    allocate_project_directory,
    normalize_project_name,
    select_latest_project,
)
from quantsync.workspace.models.api import Project
from quantsync.workspace.models.binding import BindingRecord, LocalFile, LocalProjectBinding
from quantsync.workspace.models.enums import Disposition, Language

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_normalize_project_name() -> None:
    assert normalize_project_name("My Algo #1!") == "My Algo 1"
    assert normalize_project_name("keep_this-one.v2") == "keep_this-one.v2"
    assert normalize_project_name("!!!") == ""


def test_allocate_directory_uses_first_free_suffix(tmp_path: Path) -> None:
    (tmp_path / "foo").mkdir()
    (tmp_path / "foo_1").mkdir()
    assert allocate_project_directory(tmp_path, "foo") == tmp_path / "foo_2"
    assert allocate_project_directory(tmp_path, "bar") == tmp_path / "bar"
    assert allocate_project_directory(tmp_path, "foo", flat=True) == tmp_path


def test_allocate_directory_gives_up_after_max_attempts(tmp_path: Path) -> None:
    for name in ("foo", "foo_1", "foo_2"):
        (tmp_path / name).mkdir()
    with pytest.raises(DirectoryExhaustedError) as exc_info:
        allocate_project_directory(tmp_path, "foo", max_attempts=2)
    assert exc_info.value.attempts == 2


def test_select_latest_project_prefers_newest_then_first() -> None:
    projects = [
        Project.model_validate({"projectId": 1, "name": "X", "language": "Py", "modified": "2024-01-01 00:00:00"}),
        Project.model_validate({"projectId": 2, "name": "X", "language": "Py", "modified": "2024-06-01 00:00:00"}),
        Project.model_validate({"projectId": 3, "name": "X", "language": "Py", "modified": "2024-06-01 00:00:00"}),
        Project.model_validate({"projectId": 4, "name": "Y", "language": "Py", "modified": "2025-01-01 00:00:00"}),
    ]
    assert select_latest_project(projects, "X").project_id == 2
    with pytest.raises(ProjectNotFoundError):
        select_latest_project(projects, "x")


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def test_create_project_sets_up_directory_and_binding(reconciler, server, workspace) -> None:
    binding = await reconciler.create_project("My Algo #1!", Language.PYTHON)

    assert binding.local_path == workspace / "My Algo 1"
    assert binding.remote_id is not None
    assert binding.language is Language.PYTHON
    assert (binding.local_path / "main.py").read_text() == "# QuantConnect template\n"
    assert [f.name for f in binding.files] == ["main.py"]
    assert binding.files[0].synced_to_remote is True
    assert reconciler.registry.get(binding.local_path) is binding
    assert server.endpoints() == ["authenticate", "projects/create", "files/read"]
    assert server.form(1)["name"] == "My Algo #1!"


async def test_create_project_picks_sibling_directory(reconciler, workspace) -> None:
    (workspace / "Algo").mkdir()
    binding = await reconciler.create_project("Algo", Language.CSHARP)
    assert binding.local_path == workspace / "Algo_1"


async def test_create_project_rejects_invalid_name_without_requests(reconciler, server, workspace) -> None:
    with pytest.raises(InvalidNameError):
        await reconciler.create_project("!!!", Language.PYTHON)
    with pytest.raises(InvalidNameError):
        await reconciler.create_project("..", Language.PYTHON)
    assert server.requests == []
    assert list(workspace.iterdir()) == []


async def test_create_project_never_clobbers_local_files(reconciler, context, workspace) -> None:
    context.settings.workspace_as_root_path = True
    (workspace / "main.py").write_text("A")

    binding = await reconciler.create_project("Algo", Language.PYTHON)

    assert binding.local_path == workspace
    assert (workspace / "main.py").read_text() == "A"
    [local] = binding.files
    assert local.content == "A"
    assert local.synced_to_remote is False


async def test_create_project_remote_failure_leaves_registry_empty(reconciler, server) -> None:
    server.fail["projects/create"] = ["Too many projects"]
    with pytest.raises(RemoteRequestError, match="Too many projects"):
        await reconciler.create_project("Algo", Language.PYTHON)
    assert reconciler.registry.active_count == 0


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


async def test_download_picks_most_recent_duplicate(reconciler, server, workspace) -> None:
    server.add_project("Algo", modified="2024-01-01 00:00:00", files={"main.py": "old"}, project_id=1)
    server.add_project("Algo", modified="2024-05-01 00:00:00", files={"main.py": "new"}, project_id=2)

    binding = await reconciler.download_project("Algo")

    assert binding.remote_id == 2
    assert (workspace / "Algo" / "main.py").read_text() == "new"


async def test_download_overwrite_replaces_local_content(reconciler, server, workspace) -> None:
    server.add_project("Algo", files={"main.py": "B"})
    (workspace / "Algo").mkdir()
    (workspace / "Algo" / "main.py").write_text("A")

    binding = await reconciler.download_project("Algo", disposition=Disposition.OVERWRITE)

    assert (workspace / "Algo" / "main.py").read_text() == "B"
    assert binding.files[0].synced_to_remote is True


async def test_download_dismissed_question_means_skip(reconciler, server, prompter, workspace) -> None:
    server.add_project("Algo", files={"main.py": "B", "utils.py": "U"})
    (workspace / "Algo").mkdir()
    (workspace / "Algo" / "main.py").write_text("A")

    binding = await reconciler.download_project("Algo")

    assert any("already contains files" in asked for asked in prompter.asked)
    assert (workspace / "Algo" / "main.py").read_text() == "A"
    assert (workspace / "Algo" / "utils.py").read_text() == "U"
    by_name = {f.name: f for f in binding.files}
    assert by_name["main.py"].synced_to_remote is False
    assert by_name["utils.py"].synced_to_remote is True


async def test_download_answered_overwrite(reconciler, server, prompter, workspace) -> None:
    server.add_project("Algo", files={"main.py": "B"})
    (workspace / "Algo").mkdir()
    (workspace / "Algo" / "main.py").write_text("A")
    prompter.queue("Overwrite existing files")

    await reconciler.download_project("Algo")

    assert (workspace / "Algo" / "main.py").read_text() == "B"


async def test_download_unknown_project(reconciler, server, workspace) -> None:
    server.add_project("Other")
    with pytest.raises(ProjectNotFoundError):
        await reconciler.download_project("Algo")
    assert list(workspace.iterdir()) == []


async def test_download_refuses_directory_bound_to_other_project(reconciler, server, workspace) -> None:
    server.add_project("Algo", project_id=5)
    (workspace / "Algo").mkdir()
    reconciler.registry.register(
        LocalProjectBinding(name="Algo", language=Language.PYTHON, local_path=workspace / "Algo", remote_id=9)
    )
    with pytest.raises(DuplicatePathError):
        await reconciler.download_project("Algo")


async def test_download_skips_unsafe_file_names(reconciler, server, workspace) -> None:
    server.add_project("Algo", files={"main.py": "x", "../escape.py": "y"})

    binding = await reconciler.download_project("Algo")

    assert [f.name for f in binding.files] == ["main.py"]
    assert not (workspace / "escape.py").exists()


# ---------------------------------------------------------------------------
# Re-hydrate
# ---------------------------------------------------------------------------


async def test_rehydrate_relinks_and_drops_missing(reconciler, server, workspace) -> None:
    pid = server.add_project("Algo")
    (workspace / "Algo").mkdir()
    (workspace / "Algo" / "main.py").write_text("x")
    records = [
        BindingRecord(name="Algo", language=Language.PYTHON, local_path=str(workspace / "Algo")),
        BindingRecord(remote_id=3, name="Gone", language=Language.PYTHON, local_path=str(workspace / "Gone")),
    ]

    restored = await reconciler.rehydrate(records)

    assert [b.name for b in restored] == ["Algo"]
    assert restored[0].remote_id == pid
    assert [f.name for f in restored[0].files] == ["main.py"]
    assert reconciler.registry.active_count == 1


async def test_rehydrate_remote_failure_is_not_fatal(reconciler, server, prompter, workspace) -> None:
    server.fail["projects/read"] = ["Service unavailable"]
    (workspace / "Algo").mkdir()
    records = [BindingRecord(name="Algo", language=Language.PYTHON, local_path=str(workspace / "Algo"))]

    restored = await reconciler.rehydrate(records)

    assert restored[0].remote_id is None
    assert reconciler.registry.get(workspace / "Algo") is restored[0]
    assert prompter.errors and "Service unavailable" in prompter.errors[0]


async def test_rehydrate_with_resolved_records_makes_no_requests(reconciler, server, workspace) -> None:
    (workspace / "Algo").mkdir()
    records = [BindingRecord(remote_id=7, name="Algo", language=Language.PYTHON, local_path=str(workspace / "Algo"))]

    await reconciler.rehydrate(records)

    assert server.requests == []


# ---------------------------------------------------------------------------
# Active file resolution
# ---------------------------------------------------------------------------


async def test_current_project_for_untitled_or_unknown_files(reconciler, server, workspace, tmp_path) -> None:
    server.add_project("Algo", files={"main.py": "x"})
    binding = await reconciler.download_project("Algo")
    outside = tmp_path / "elsewhere.py"
    outside.write_text("x")

    assert reconciler.current_project(None) is None
    assert reconciler.current_project(str(workspace / "Algo" / "unsaved.py")) is None
    assert reconciler.current_project(outside) is None
    assert reconciler.current_project(workspace / "Algo" / "main.py") is binding
    assert reconciler.current_file(workspace / "Algo" / "main.py") is binding.files[0]


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


@pytest.fixture
async def downloaded(reconciler, server) -> LocalProjectBinding:
    server.add_project("Algo", files={"main.py": "A", "utils.py": "U"})
    binding = await reconciler.download_project("Algo")
    server.requests.clear()
    return binding


async def test_save_file_uploads_even_when_unchanged(reconciler, server, downloaded) -> None:
    local = downloaded.file_for(downloaded.local_path / "main.py")

    assert await reconciler.save_file(downloaded, local) is True
    assert await reconciler.save_file(downloaded, local) is True

    assert server.endpoints() == ["files/update", "files/update"]
    assert local.synced_to_remote is True


async def test_save_file_sends_content_read_from_disk(reconciler, server, downloaded) -> None:
    local = downloaded.file_for(downloaded.local_path / "main.py")
    local.path.write_text("C")

    await reconciler.save_file(downloaded, local)

    assert server.form(0)["content"] == "C"
    assert server.files[downloaded.remote_id]["main.py"] == "C"
    assert local.synced_to_remote is True


async def test_failed_upload_keeps_file_unsynced(reconciler, server, downloaded) -> None:
    local = downloaded.file_for(downloaded.local_path / "main.py")
    local.path.write_text("C")
    server.fail["files/update"] = ["Rate limited"]

    with pytest.raises(RemoteRequestError):
        await reconciler.save_file(downloaded, local)

    assert local.content == "C"
    assert local.synced_to_remote is False


async def test_declined_confirmation_skips_upload(reconciler, server, prompter, context, downloaded) -> None:
    context.settings.upload_skip_dialog = False
    prompter.queue(False)
    local = downloaded.file_for(downloaded.local_path / "main.py")

    assert await reconciler.save_file(downloaded, local) is False

    assert server.requests == []
    assert "Overwrite 'main.py' in cloud project 'Algo'" in prompter.asked[-1]


async def test_save_file_requires_remote_id(reconciler, workspace) -> None:
    binding = LocalProjectBinding(name="Local", language=Language.PYTHON, local_path=workspace)
    (workspace / "main.py").write_text("x")
    with pytest.raises(ProjectNotResolvedError):
        await reconciler.save_file(binding, LocalFile(workspace / "main.py"))


async def test_save_project_paces_uploads(reconciler, server, context, downloaded, monkeypatch) -> None:
    context.settings.upload_interval = 0.25
    pauses: list[float] = []

    async def _sleep(delay: float) -> None:
        pauses.append(delay)

    monkeypatch.setattr(reconciler_module.anyio, "sleep", _sleep)

    assert await reconciler.save_project(downloaded) == 2
    assert pauses == [0.25]
    assert server.endpoints() == ["files/update", "files/update"]


async def test_save_project_reports_and_continues(reconciler, server, prompter, downloaded) -> None:
    (downloaded.local_path / "main.py").unlink()

    assert await reconciler.save_project(downloaded) == 1

    assert server.endpoints() == ["files/update"]
    assert server.form(0)["name"] == "utils.py"
    assert prompter.errors and prompter.errors[0].startswith("main.py:")


async def test_save_active_file_adds_new_file(reconciler, server, downloaded) -> None:
    extra = downloaded.local_path / "extra.py"
    extra.write_text("E")

    assert await reconciler.save_active_file(extra) is True

    assert server.endpoints() == ["files/create"]
    assert server.files[downloaded.remote_id]["extra.py"] == "E"
    assert downloaded.file_for(extra).synced_to_remote is True


async def test_save_active_file_rejects_subfolders_and_strangers(reconciler, downloaded, tmp_path) -> None:
    nested = downloaded.local_path / "lib"
    nested.mkdir()
    (nested / "helper.py").write_text("h")
    stranger = tmp_path / "stranger.py"
    stranger.write_text("s")

    with pytest.raises(ValidationError):
        await reconciler.save_active_file(nested / "helper.py")
    with pytest.raises(NotFoundError):
        await reconciler.save_active_file(stranger)
    with pytest.raises(NotFoundError):
        await reconciler.save_active_file(None)


async def test_save_active_file_keeps_credentials_local(reconciler, server, context, workspace) -> None:
    context.settings.workspace_as_root_path = True
    binding = await reconciler.create_project("Algo", Language.PYTHON)
    (workspace / ".env").write_text("QUANTCONNECT_API_KEY='secret-key'\n")
    context.settings.env_file = "secrets.env"
    (workspace / "secrets.env").write_text("QUANTCONNECT_API_KEY='secret-key'\n")
    server.requests.clear()

    with pytest.raises(ValidationError, match="never uploaded"):
        await reconciler.save_active_file(workspace / ".env")
    with pytest.raises(ValidationError, match="never uploaded"):
        await reconciler.save_active_file(workspace / "secrets.env")

    assert server.requests == []
    assert set(server.files[binding.remote_id]) == {"main.py"}
    assert reconciler.uploadable_project(workspace / ".env") is None
    assert reconciler.uploadable_project(workspace / "main.py") is binding
