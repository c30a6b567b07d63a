"""Shared fixtures for workspace tests: fake LEAN API, scripted prompter, context."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest

from quantsync.workspace.client import LeanApiClient
from quantsync.workspace.context import SyncContext
from quantsync.workspace.credentials import CredentialProvider
from quantsync.workspace.managers.reconciler import ProjectReconciler
from quantsync.workspace.settings import SyncSettings

API_PREFIX = "/api/v2/"


# ---------------------------------------------------------------------------
# Fake LEAN API
# ---------------------------------------------------------------------------


class FakeLeanServer:
    """In-memory stand-in for the LEAN REST API.

    ``fail[endpoint] = [...]`` makes that endpoint answer with
    ``success: false`` and the given errors.
    """

    def __init__(self) -> None:
        self.projects: list[dict[str, Any]] = []
        self.files: dict[int, dict[str, str]] = {}
        self.requests: list[httpx.Request] = []
        self.fail: dict[str, list[str]] = {}
        self.authenticated = True
        self.template = {"main.py": "# QuantConnect template\n"}
        self.compile_states: deque[int] = deque()
        self.backtest_progress: deque[float] = deque()
        self._next_id = 100

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_project(
        self,
        name: str,
        *,
        language: str = "Py",
        modified: str = "2024-01-01 00:00:00",
        files: dict[str, str] | None = None,
        project_id: int | None = None,
    ) -> int:
        if project_id is None:
            project_id = self._next_id
            self._next_id += 1
        self.projects.append(
            {
                "projectId": project_id,
                "name": name,
                "language": language,
                "created": "2024-01-01 00:00:00",
                "modified": modified,
            }
        )
        self.files[project_id] = dict(files or {})
        return project_id

    def endpoints(self) -> list[str]:
        return [request.url.path.removeprefix(API_PREFIX) for request in self.requests]

    def form(self, index: int) -> dict[str, str]:
        return dict(parse_qsl(self.requests[index].content.decode()))

    # -- Dispatch --------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.removeprefix(API_PREFIX)
        args = dict(request.url.params)
        if request.method == "POST":
            args.update(parse_qsl(request.content.decode()))

        if endpoint in self.fail:
            return _json({"success": False, "errors": self.fail[endpoint]})

        handler = getattr(self, "_" + endpoint.replace("/", "_"), None)
        if handler is None:
            return httpx.Response(404, json={"success": False, "errors": [f"Unknown endpoint {endpoint}"]})
        return _json(handler(args))

    def _authenticate(self, args: dict[str, str]) -> dict[str, Any]:
        return {"success": self.authenticated, "errors": [] if self.authenticated else ["Hash doesn't match."]}

    def _projects_create(self, args: dict[str, str]) -> dict[str, Any]:
        project_id = self.add_project(args["name"], language=args["language"], files=self.template)
        return {"success": True, "errors": [], "projects": [self.projects[-1]], "projectId": project_id}

    def _projects_read(self, args: dict[str, str]) -> dict[str, Any]:
        projects = self.projects
        if "projectId" in args:
            projects = [p for p in projects if p["projectId"] == int(args["projectId"])]
        return {"success": True, "errors": [], "projects": projects}

    def _files_read(self, args: dict[str, str]) -> dict[str, Any]:
        files = self.files.get(int(args["projectId"]), {})
        listed = [
            {"name": name, "content": content, "modified": "2024-01-01 00:00:00"}
            for name, content in files.items()
            if "name" not in args or args["name"] == name
        ]
        return {"success": True, "errors": [], "files": listed}

    def _files_create(self, args: dict[str, str]) -> dict[str, Any]:
        files = self.files.setdefault(int(args["projectId"]), {})
        if args["name"] in files:
            return {"success": False, "errors": ["File already exist."]}
        files[args["name"]] = args.get("content", "")
        return {"success": True, "errors": [], "files": [{"name": args["name"], "content": files[args["name"]]}]}

    def _files_update(self, args: dict[str, str]) -> dict[str, Any]:
        files = self.files.setdefault(int(args["projectId"]), {})
        if args["name"] not in files:
            return {"success": False, "errors": ["File not found."]}
        if "newName" in args:
            files[args["newName"]] = files.pop(args["name"])
        else:
            files[args["name"]] = args.get("content", "")
        return {"success": True, "errors": []}

    def _compile_create(self, args: dict[str, str]) -> dict[str, Any]:
        return {"success": True, "errors": [], "compileId": "compile-1", "state": 0, "logs": []}

    def _compile_read(self, args: dict[str, str]) -> dict[str, Any]:
        state = self.compile_states.popleft() if self.compile_states else 1
        logs = ["Build error: main.py(1)"] if state == 2 else []
        return {"success": True, "errors": [], "compileId": args["compileId"], "state": state, "logs": logs}

    def _backtests_create(self, args: dict[str, str]) -> dict[str, Any]:
        return {
            "success": True,
            "errors": [],
            "backtestId": "backtest-1",
            "name": args["backtestName"],
            "completed": False,
            "progress": 0,
        }

    def _backtests_read(self, args: dict[str, str]) -> dict[str, Any]:
        progress = self.backtest_progress.popleft() if self.backtest_progress else 1.0
        body: dict[str, Any] = {
            "success": True,
            "errors": [],
            "backtestId": args["backtestId"],
            "name": "bt",
            "completed": progress >= 1.0,
            "progress": progress,
        }
        if progress >= 1.0:
            body["result"] = {"Statistics": {"Net Profit": "12.5%", "Sharpe Ratio": "1.1"}}
        return body


def _json(body: dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})


# ---------------------------------------------------------------------------
# Scripted prompter
# ---------------------------------------------------------------------------


class FakePrompter:
    """Answers prompts from a queue; an exhausted queue means "dismissed"."""

    def __init__(self) -> None:
        self.answers: deque[Any] = deque()
        self.asked: list[str] = []
        self.infos: list[str] = []
        self.errors: list[str] = []

    def queue(self, *answers: Any) -> None:
        self.answers.extend(answers)

    def _next(self) -> Any:
        return self.answers.popleft() if self.answers else None

    async def ask_text(self, prompt: str, *, password: bool = False) -> str | None:
        self.asked.append(prompt)
        return self._next()

    async def pick(self, items, *, placeholder: str | None = None) -> str | None:
        self.asked.append(placeholder or "pick")
        return self._next()

    async def pick_many(self, items, *, placeholder: str | None = None) -> list[str] | None:
        self.asked.append(placeholder or "pick_many")
        return self._next()

    async def confirm(self, message: str) -> bool | None:
        self.asked.append(message)
        return self._next()

    def info(self, message: str) -> None:
        self.infos.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def settings(workspace: Path) -> SyncSettings:
    return SyncSettings(
        _env_file=None,
        workspace_root=str(workspace),
        api_key="secret-key",
        user_id="4242",
        upload_skip_dialog=True,
        upload_interval=0,
    )


@pytest.fixture
def server() -> FakeLeanServer:
    return FakeLeanServer()


@pytest.fixture
async def http_client(server: FakeLeanServer) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=server.transport) as client:
        yield client


@pytest.fixture
def prompter() -> FakePrompter:
    return FakePrompter()


@pytest.fixture
def persisted() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def credentials(
    settings: SyncSettings,
    prompter: FakePrompter,
    http_client: httpx.AsyncClient,
    persisted: list[tuple[str, str]],
) -> CredentialProvider:
    return CredentialProvider(
        settings,
        prompter,
        persist=lambda api_key, user_id: persisted.append((api_key, user_id)),
        client_factory=lambda creds: LeanApiClient(
            settings.cloud_api_url, creds.user_id, creds.api_key, http_client=http_client
        ),
    )


@pytest.fixture
def context(settings: SyncSettings, prompter: FakePrompter, credentials: CredentialProvider) -> SyncContext:
    return SyncContext.create(settings, prompter, credentials=credentials)


@pytest.fixture
def reconciler(context: SyncContext) -> ProjectReconciler:
    return ProjectReconciler(context)
