"""Command handlers.

Each handler runs one user action end to end and reports the outcome
through the prompter.  ``SyncError`` never escapes a handler: it becomes an
error message and a falsy return value, and whatever succeeded before the
failure is kept.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from quantsync.workspace.context import SyncContext
from quantsync.workspace.errors import NotFoundError, SyncError
from quantsync.workspace.managers.backtests import run_backtest
from quantsync.workspace.managers.reconciler import ProjectReconciler
from quantsync.workspace.models.api import Backtest, Project
from quantsync.workspace.models.binding import LocalProjectBinding
from quantsync.workspace.models.enums import (
    LANGUAGE_DISPLAY_NAMES,
    Disposition,
    Language,
    language_from_display_name,
)

CREATE = "Create"
DOWNLOAD = "Download"

_SUMMARY_STATISTICS = ("Total Trades", "Net Profit", "Compounding Annual Return", "Drawdown", "Sharpe Ratio")


def project_label(project: Project) -> str:
    return f"{LANGUAGE_DISPLAY_NAMES[project.language]} - {project.name}"


def _report(context: SyncContext, exc: SyncError) -> None:
    logger.debug("Command failed: {!r}", exc)
    context.prompter.error(exc.user_message)


def _binding_at(context: SyncContext, path: str | Path) -> LocalProjectBinding:
    binding = context.registry.find_by_path(path)
    if binding is None:
        raise NotFoundError(f"{path} is not part of a QuantConnect project")
    return binding


# -- Create / download ---------------------------------------------------------


async def create_project(context: SyncContext, name: str, language: Language) -> LocalProjectBinding | None:
    try:
        binding = await ProjectReconciler(context).create_project(name, language)
    except SyncError as exc:
        _report(context, exc)
        return None
    context.prompter.info(f"Project successfully created in {binding.local_path}")
    return binding


async def download_project(
    context: SyncContext,
    name: str,
    disposition: Disposition | None = None,
) -> LocalProjectBinding | None:
    try:
        binding = await ProjectReconciler(context).download_project(name, disposition=disposition)
    except SyncError as exc:
        _report(context, exc)
        return None
    context.prompter.info(f"Project {binding.name} downloaded to {binding.local_path}")
    return binding


async def create_or_download_project(context: SyncContext) -> list[LocalProjectBinding]:
    """Interactive entry point: create a new project or pick cloud projects to download."""
    prompter = context.prompter
    choice = await prompter.pick([CREATE, DOWNLOAD])
    if choice is None:
        return []

    if choice == CREATE:
        name = await prompter.ask_text("Enter your project name")
        if not name:
            return []
        label = await prompter.pick(
            list(LANGUAGE_DISPLAY_NAMES.values()),
            placeholder="Select a programming language for your project",
        )
        language = language_from_display_name(label) if label else None
        if language is None:
            return []
        binding = await create_project(context, name, language)
        return [binding] if binding else []

    try:
        client = await context.credentials.ensure_client()
        projects = (await client.list_projects()).projects
    except SyncError as exc:
        _report(context, exc)
        return []

    by_label = {project_label(project): project for project in projects}
    selection = await prompter.pick_many(list(by_label), placeholder="Select projects to import")
    if not selection:
        return []

    bindings: list[LocalProjectBinding] = []
    for label in selection:
        binding = await download_project(context, by_label[label].name)
        if binding is not None:
            bindings.append(binding)
    return bindings


# -- Upload --------------------------------------------------------------------


async def save_file_to_cloud(context: SyncContext, active_path: str | Path | None) -> bool:
    try:
        uploaded = await ProjectReconciler(context).save_active_file(active_path)
    except SyncError as exc:
        _report(context, exc)
        return False
    if uploaded:
        context.prompter.info(f"Saved {Path(str(active_path)).name} to the cloud")
    return uploaded


async def save_project_to_cloud(context: SyncContext, project_path: str | Path) -> int:
    try:
        binding = _binding_at(context, project_path)
        uploaded = await ProjectReconciler(context).save_project(binding)
    except SyncError as exc:
        _report(context, exc)
        return 0
    context.prompter.info(f"Uploaded {uploaded} of {len(binding.files)} files of {binding.name}")
    return uploaded


# -- Backtest ------------------------------------------------------------------


async def backtest_project(
    context: SyncContext,
    project_path: str | Path,
    name: str | None = None,
) -> Backtest | None:
    try:
        binding = _binding_at(context, project_path)
        backtest = await run_backtest(context, binding, name)
    except SyncError as exc:
        _report(context, exc)
        return None
    except TimeoutError:
        context.prompter.error("The backtest did not finish in time; check its progress on QuantConnect")
        return None

    if backtest.error:
        context.prompter.error(f"Backtest {backtest.name} failed: {backtest.error}")
        return backtest
    context.prompter.info(f"Backtest {backtest.name} completed")
    statistics = (backtest.result or {}).get("Statistics") or {}
    for key in _SUMMARY_STATISTICS:
        if key in statistics:
            context.prompter.info(f"  {key}: {statistics[key]}")
    return backtest


# -- Account -------------------------------------------------------------------


async def login(context: SyncContext) -> bool:
    """Prompt for fresh credentials and check them against the API."""
    await context.credentials.reset()
    try:
        return await context.credentials.verify()
    except SyncError as exc:
        _report(context, exc)
        return False


def describe_bindings(context: SyncContext) -> list[str]:
    lines = []
    for binding in context.registry.all_bindings():
        synced = sum(1 for local in binding.files if local.synced_to_remote)
        remote = binding.remote_id if binding.remote_id is not None else "not linked"
        lines.append(
            f"{binding.name} [{LANGUAGE_DISPLAY_NAMES[binding.language]}] {binding.local_path} "
            f"(cloud id: {remote}, {synced}/{len(binding.files)} files synced)"
        )
    return lines
