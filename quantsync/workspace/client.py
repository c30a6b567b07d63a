"""Async client for the LEAN REST API (v2).

Every request is signed with a fresh timestamp::

    Authorization: Basic base64("<user_id>:<sha256hex(api_key + ':' + ts)>")
    Timestamp: <ts>

GET endpoints take query parameters, POST endpoints take form fields.  All
responses are envelopes; a response with ``success == false`` is turned into
a :class:`RemoteRequestError` carrying the server's error list, so callers
only ever see successful envelopes.
"""

from __future__ import annotations

import base64
import hashlib
import time
from datetime import datetime
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from quantsync.workspace.errors import RemoteRequestError
from quantsync.workspace.models.api import (
    Backtest,
    BacktestList,
    BacktestReport,
    Compile,
    Envelope,
    LiveAlgorithm,
    LiveAlgorithmResults,
    LiveList,
    LiveLog,
    ProjectFilesResponse,
    ProjectResponse,
)
from quantsync.workspace.models.enums import LISTABLE_LIVE_STATUSES, AlgorithmStatus, BrokerageEnvironment, Language

CLIENT_VERSION = "0.1.0"
USER_AGENT = f"quantsync/{CLIENT_VERSION}"

E = TypeVar("E", bound=Envelope)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def build_auth_headers(user_id: str, api_key: str, timestamp: int) -> dict[str, str]:
    """Return the ``Authorization`` and ``Timestamp`` headers for one request."""
    stamp = str(timestamp)
    digest = hashlib.sha256(f"{api_key}:{stamp}".encode()).hexdigest()
    token = base64.b64encode(f"{user_id}:{digest}".encode()).decode("ascii")
    return {"Authorization": f"Basic {token}", "Timestamp": stamp}


def epoch_seconds(moment: datetime | None = None) -> int:
    if moment is None:
        return int(time.time())
    return int(moment.timestamp())


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def _flatten_form(data: dict[str, Any]) -> dict[str, str]:
    """Drop ``None`` values and encode nested dicts as ``key[sub]`` fields."""
    form: dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            for sub_key, sub_value in _flatten_form(value).items():
                form[f"{key}[{sub_key}]"] = sub_value
        elif isinstance(value, bool):
            form[key] = "true" if value else "false"
        else:
            form[key] = str(value)
    return form


def _error_list(response: httpx.Response) -> list[str]:
    """Best-effort extraction of the envelope error list from a failed response."""
    try:
        return Envelope.model_validate_json(response.content).errors
    except PydanticValidationError:
        return []


class LeanApiClient:
    """Authenticated client for one user.

    Owns its ``httpx.AsyncClient`` unless one is injected (tests pass a client
    built on ``httpx.MockTransport``).  Use as an async context manager or
    call :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.user_id = user_id
        self._api_key = api_key
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> LeanApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -- Transport -------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        model: type[E],
        *,
        params: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
        check: bool = True,
    ) -> E:
        headers = build_auth_headers(self.user_id, self._api_key, epoch_seconds())
        headers["User-Agent"] = USER_AGENT
        url = self.base_url + endpoint

        try:
            response = await self._http.request(
                method,
                url,
                params=_flatten_form(params) if params else None,
                data=_flatten_form(form) if form else None,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("{} {} failed: {!r}", method, endpoint, exc)
            raise RemoteRequestError(endpoint, detail=str(exc) or type(exc).__name__) from exc

        if response.is_error:
            logger.warning("{} {} returned HTTP {}", method, endpoint, response.status_code)
            raise RemoteRequestError(endpoint, _error_list(response), detail=f"HTTP {response.status_code}")

        try:
            envelope = model.model_validate_json(response.content)
        except PydanticValidationError as exc:
            raise RemoteRequestError(endpoint, detail="malformed response from server") from exc

        if check and not envelope.success:
            logger.info("{} {} unsuccessful: {}", method, endpoint, envelope.errors)
            raise RemoteRequestError(endpoint, envelope.errors)
        return envelope

    async def _get(self, endpoint: str, model: type[E], **params: Any) -> E:
        return await self._request("GET", endpoint, model, params=params)

    async def _post(self, endpoint: str, model: type[E], **form: Any) -> E:
        return await self._request("POST", endpoint, model, form=form)

    # -- Account ---------------------------------------------------------------

    async def authenticated(self) -> bool:
        """Whether the credentials are accepted.  Transport errors still raise."""
        envelope = await self._request("GET", "authenticate", Envelope, check=False)
        return envelope.success

    # -- Projects --------------------------------------------------------------

    async def create_project(self, name: str, language: Language) -> ProjectResponse:
        return await self._post("projects/create", ProjectResponse, name=name, language=language.value)

    async def read_project(self, project_id: int) -> ProjectResponse:
        return await self._get("projects/read", ProjectResponse, projectId=project_id)

    async def list_projects(self) -> ProjectResponse:
        return await self._get("projects/read", ProjectResponse)

    async def delete_project(self, project_id: int) -> Envelope:
        return await self._post("projects/delete", Envelope, projectId=project_id)

    # -- Files -----------------------------------------------------------------

    async def add_project_file(self, project_id: int, name: str, content: str) -> ProjectFilesResponse:
        return await self._post("files/create", ProjectFilesResponse, projectId=project_id, name=name, content=content)

    async def update_project_file_name(self, project_id: int, old_name: str, new_name: str) -> Envelope:
        return await self._post("files/update", Envelope, projectId=project_id, name=old_name, newName=new_name)

    async def update_project_file_content(self, project_id: int, name: str, content: str) -> Envelope:
        return await self._post("files/update", Envelope, projectId=project_id, name=name, content=content)

    async def read_project_files(self, project_id: int) -> ProjectFilesResponse:
        return await self._get("files/read", ProjectFilesResponse, projectId=project_id)

    async def read_project_file(self, project_id: int, name: str) -> ProjectFilesResponse:
        return await self._get("files/read", ProjectFilesResponse, projectId=project_id, name=name)

    async def delete_project_file(self, project_id: int, name: str) -> Envelope:
        return await self._post("files/delete", Envelope, projectId=project_id, name=name)

    # -- Compile ---------------------------------------------------------------

    async def create_compile(self, project_id: int) -> Compile:
        return await self._post("compile/create", Compile, projectId=project_id)

    async def read_compile(self, project_id: int, compile_id: str) -> Compile:
        return await self._get("compile/read", Compile, projectId=project_id, compileId=compile_id)

    # -- Backtests -------------------------------------------------------------

    async def create_backtest(self, project_id: int, compile_id: str, name: str) -> Backtest:
        return await self._post(
            "backtests/create", Backtest, projectId=project_id, compileId=compile_id, backtestName=name
        )

    async def read_backtest(self, project_id: int, backtest_id: str) -> Backtest:
        return await self._get("backtests/read", Backtest, projectId=project_id, backtestId=backtest_id)

    async def update_backtest(
        self, project_id: int, backtest_id: str, *, name: str | None = None, note: str | None = None
    ) -> Backtest:
        return await self._post(
            "backtests/update", Backtest, projectId=project_id, backtestId=backtest_id, name=name, note=note
        )

    async def list_backtests(self, project_id: int) -> BacktestList:
        return await self._get("backtests/read", BacktestList, projectId=project_id)

    async def delete_backtest(self, project_id: int, backtest_id: str) -> Envelope:
        return await self._post("backtests/delete", Envelope, projectId=project_id, backtestId=backtest_id)

    async def read_backtest_report(self, project_id: int, backtest_id: str) -> BacktestReport:
        return await self._post("backtests/read/report", BacktestReport, projectId=project_id, backtestId=backtest_id)

    # -- Live ------------------------------------------------------------------

    async def create_live_algorithm(
        self,
        project_id: int,
        compile_id: str,
        server_type: str,
        brokerage: dict[str, Any],
        version_id: str | None = None,
        *,
        environment: BrokerageEnvironment | None = None,
    ) -> LiveAlgorithm:
        """Deploy a compiled project.  *environment* picks live or paper trading at the brokerage."""
        if environment is not None:
            brokerage = {**brokerage, "environment": environment}
        return await self._post(
            "live/create",
            LiveAlgorithm,
            projectId=project_id,
            compileId=compile_id,
            serverType=server_type,
            versionId=version_id,
            brokerage=brokerage,
        )

    async def list_live_algorithms(
        self,
        status: AlgorithmStatus = AlgorithmStatus.RUNNING,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> LiveList:
        if status not in LISTABLE_LIVE_STATUSES:
            msg = "The API only supports algorithm statuses of: Running, Stopped, RuntimeError, and Liquidated"
            raise ValueError(msg)
        return await self._get(
            "live/read",
            LiveList,
            status=int(status),
            start=epoch_seconds(start) if start else 0,
            end=epoch_seconds(end),
        )

    async def read_live_algorithm(self, project_id: int, deploy_id: str) -> LiveAlgorithmResults:
        return await self._get("live/read", LiveAlgorithmResults, projectId=project_id, deployId=deploy_id)

    async def liquidate_live_algorithm(self, project_id: int) -> Envelope:
        return await self._post("live/update/liquidate", Envelope, projectId=project_id)

    async def stop_live_algorithm(self, project_id: int) -> Envelope:
        return await self._post("live/update/stop", Envelope, projectId=project_id)

    async def read_live_logs(
        self,
        project_id: int,
        algorithm_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> LiveLog:
        return await self._get(
            "live/read/log",
            LiveLog,
            format="json",
            projectId=project_id,
            algorithmId=algorithm_id,
            start=epoch_seconds(start) if start else 0,
            end=epoch_seconds(end),
        )
