import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

T = TypeVar("T")

_LANGUAGE_CHOICES = ("Python", "C#", "F#")


def _load_settings(workspace: str | None):
    from quantsync.workspace.settings import SyncSettings, get_settings

    if workspace is None:
        return get_settings()
    return SyncSettings(_env_file=Path(workspace) / ".env", workspace_root=workspace)


def _run_session(workspace: str | None, handler: Callable[..., Awaitable[T]]) -> T:
    """Run *handler(session)* inside a workspace session and persist state afterwards."""
    from quantsync.workspace.context import SyncContext
    from quantsync.workspace.log import setup_logging
    from quantsync.workspace.prompts import ClickPrompter
    from quantsync.workspace.session import SyncSession

    settings = _load_settings(workspace)
    setup_logging(settings.log_level, settings.state_path if settings.log_to_file else None)

    async def _main() -> T:
        context = SyncContext.create(settings, ClickPrompter())
        async with SyncSession(context) as session:
            return await handler(session)

    return asyncio.run(_main())


def _run(workspace: str | None, handler: Callable[..., Awaitable[T]]) -> T:
    """Run *handler(context)* inside a workspace session."""
    return _run_session(workspace, lambda session: handler(session.context))


def _exit_unless(ok: object) -> None:
    if not ok:
        raise SystemExit(1)


@click.group()
@click.option(
    "--workspace",
    "-w",
    default=None,
    type=click.Path(file_okay=False),
    help="Workspace root (default: from QUANTCONNECT_WORKSPACE_ROOT or the current directory).",
)
@click.pass_context
def main(ctx: click.Context, workspace: str | None) -> None:
    """quantsync - work on QuantConnect cloud projects from a local workspace."""
    ctx.obj = workspace


@main.command()
@click.argument("name")
@click.option("--language", "-l", type=click.Choice(_LANGUAGE_CHOICES, case_sensitive=False), default="Python")
@click.pass_obj
def create(workspace: str | None, name: str, language: str) -> None:
    """Create a new cloud project and set it up locally."""
    from quantsync.workspace import commands
    from quantsync.workspace.models.enums import language_from_display_name

    label = next(choice for choice in _LANGUAGE_CHOICES if choice.lower() == language.lower())
    lang = language_from_display_name(label)
    _exit_unless(_run(workspace, lambda context: commands.create_project(context, name, lang)))


@main.command()
@click.argument("name")
@click.option(
    "--overwrite/--skip",
    default=None,
    help="Overwrite or keep local files that already exist (default: ask).",
)
@click.pass_obj
def download(workspace: str | None, name: str, overwrite: bool | None) -> None:
    """Download the cloud project NAME (newest one if several share the name)."""
    from quantsync.workspace import commands
    from quantsync.workspace.models.enums import Disposition

    disposition = None if overwrite is None else (Disposition.OVERWRITE if overwrite else Disposition.SKIP)
    _exit_unless(_run(workspace, lambda context: commands.download_project(context, name, disposition)))


@main.command()
@click.pass_obj
def pick(workspace: str | None) -> None:
    """Interactively create a project or choose cloud projects to download."""
    from quantsync.workspace import commands

    _exit_unless(_run(workspace, commands.create_or_download_project))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def save(workspace: str | None, path: str) -> None:
    """Upload one project file to the cloud."""
    from quantsync.workspace import commands

    _exit_unless(_run(workspace, lambda context: commands.save_file_to_cloud(context, path)))


@main.command()
@click.argument("project_dir", type=click.Path(exists=True, file_okay=False))
@click.pass_obj
def push(workspace: str | None, project_dir: str) -> None:
    """Upload every file of a project to the cloud."""
    from quantsync.workspace import commands

    _exit_unless(_run(workspace, lambda context: commands.save_project_to_cloud(context, project_dir)))


@main.command()
@click.argument("project_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--name", default=None, help="Backtest name (default: project name and UTC time).")
@click.pass_obj
def backtest(workspace: str | None, project_dir: str, name: str | None) -> None:
    """Save a project, compile it and run a backtest."""
    from quantsync.workspace import commands

    result = _run(workspace, lambda context: commands.backtest_project(context, project_dir, name))
    _exit_unless(result is not None and not result.error)


@main.command()
@click.argument("directory", required=False, type=click.Path(exists=True, file_okay=False))
@click.option("--debounce", default=0.5, show_default=True, help="Seconds of quiet before saved files are uploaded.")
@click.pass_obj
def watch(workspace: str | None, directory: str | None, debounce: float) -> None:
    """Upload project files as they are saved, until interrupted."""
    from quantsync.workspace.watcher import WorkspaceWatcher

    async def _watch(session) -> None:
        settings = session.context.settings
        if not settings.upload_on_save:
            session.context.prompter.info("Upload on save is turned off (QUANTCONNECT_UPLOAD_ON_SAVE)")
            return
        click.echo("Watching for saved files, press Ctrl+C to stop.")
        await WorkspaceWatcher(session, directory or settings.workspace_path, debounce=debounce).run()

    try:
        _run_session(workspace, _watch)
    except KeyboardInterrupt:
        click.echo("Stopped watching.")


@main.command()
@click.pass_obj
def status(workspace: str | None) -> None:
    """List the projects open in this workspace."""
    from quantsync.workspace import commands

    async def _status(context) -> list[str]:
        return commands.describe_bindings(context)

    lines = _run(workspace, _status)
    if not lines:
        click.echo("No projects in this workspace.")
    for line in lines:
        click.echo(line)


@main.command()
@click.pass_obj
def login(workspace: str | None) -> None:
    """Enter QuantConnect credentials and check them."""
    from quantsync.workspace import commands

    _exit_unless(_run(workspace, commands.login))


if __name__ == "__main__":
    main()
