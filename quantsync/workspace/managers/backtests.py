"""Save a project to the cloud and run a backtest on it.

Pipeline: upload every file -> ``compile/create`` -> poll ``compile/read``
until the build leaves the queue -> ``backtests/create`` -> poll
``backtests/read`` until the backtest completes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import anyio
from loguru import logger

from quantsync.workspace.errors import ProjectNotResolvedError, RemoteRequestError
from quantsync.workspace.managers.reconciler import ProjectReconciler
from quantsync.workspace.models.enums import CompileState

if TYPE_CHECKING:
    from quantsync.workspace.client import LeanApiClient
    from quantsync.workspace.context import SyncContext
    from quantsync.workspace.models.api import Backtest, Compile
    from quantsync.workspace.models.binding import LocalProjectBinding


def default_backtest_name(binding: LocalProjectBinding, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y-%m-%d %H:%M:%S")
    return f"{binding.name} {stamp}"


async def wait_for_compile(
    client: LeanApiClient,
    project_id: int,
    compile_id: str,
    *,
    poll_interval: float,
) -> Compile:
    """Poll until the build is no longer queued.  Raises on a build error."""
    while True:
        result = await client.read_compile(project_id, compile_id)
        if result.state == CompileState.BUILD_ERROR:
            raise RemoteRequestError("compile/read", result.logs, detail="the project failed to build")
        if result.state == CompileState.BUILD_SUCCESS:
            return result
        await anyio.sleep(poll_interval)


async def wait_for_backtest(
    client: LeanApiClient,
    project_id: int,
    backtest_id: str,
    *,
    poll_interval: float,
) -> Backtest:
    while True:
        backtest = await client.read_backtest(project_id, backtest_id)
        if backtest.completed:
            return backtest
        logger.debug("Backtest {} at {:.0%}", backtest_id, backtest.progress)
        await anyio.sleep(poll_interval)


async def run_backtest(
    context: SyncContext,
    binding: LocalProjectBinding,
    name: str | None = None,
    *,
    poll_interval: float = 2.0,
    timeout: float = 600.0,
) -> Backtest:
    """Upload *binding*, compile it and run a backtest to completion.

    Nothing is compiled unless every file of *binding* was uploaded.  Raises
    ``TimeoutError`` if compile plus backtest take longer than
    *timeout* seconds.  A backtest that ran but hit a runtime error is
    returned as-is; check ``Backtest.error``.
    """
    if binding.remote_id is None:
        raise ProjectNotResolvedError(binding.name)
    project_id = binding.remote_id

    expected = len(binding.files)
    uploaded = await ProjectReconciler(context).save_project(binding, confirm=False)
    if uploaded < expected:
        raise RemoteRequestError(
            "files/update",
            detail=f"only {uploaded} of {expected} files were uploaded; the backtest was not started",
        )
    client = await context.credentials.ensure_client()

    with anyio.fail_after(timeout):
        compiled = await client.create_compile(project_id)
        logger.info("Compile {} queued for project {}", compiled.compile_id, binding.name)
        if compiled.state != CompileState.BUILD_SUCCESS:
            compiled = await wait_for_compile(client, project_id, compiled.compile_id, poll_interval=poll_interval)

        created = await client.create_backtest(project_id, compiled.compile_id, name or default_backtest_name(binding))
        logger.info("Backtest {} started for project {}", created.backtest_id, binding.name)
        if created.completed:
            return created
        return await wait_for_backtest(client, project_id, created.backtest_id, poll_interval=poll_interval)
