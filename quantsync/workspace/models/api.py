"""Response envelopes of the LEAN REST API.

Every response carries ``success`` and ``errors``; an HTTP 200 says nothing
about whether the call worked.  Field names follow the wire format through
aliases so the rest of the code can stay snake_case.  Payloads the project
never inspects (statistics, orders, charts) are kept as plain dicts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quantsync.workspace.models.enums import AlgorithmStatus, CompileState, Language


class Envelope(BaseModel):
    """Base of every API response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    errors: list[str] = Field(default_factory=list)


# -- Projects ----------------------------------------------------------------


class Project(BaseModel):
    """A cloud project as returned by ``projects/read`` and ``projects/create``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: int = Field(alias="projectId")
    name: str
    language: Language
    created: datetime | None = None
    modified: datetime | None = None


class ProjectResponse(Envelope):
    projects: list[Project] = Field(default_factory=list)


class ProjectFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    content: str = ""
    modified: datetime | None = None


class ProjectFilesResponse(Envelope):
    files: list[ProjectFile] = Field(default_factory=list)


# -- Compile / backtest ------------------------------------------------------


class Compile(Envelope):
    compile_id: str = Field(default="", alias="compileId")
    state: CompileState = CompileState.IN_QUEUE
    logs: list[str] = Field(default_factory=list)


class Backtest(Envelope):
    backtest_id: str = Field(default="", alias="backtestId")
    name: str = ""
    note: str | None = None
    completed: bool = False
    progress: float = 0.0
    result: dict[str, Any] | None = None
    error: str | None = None
    stacktrace: str | None = None
    created: datetime | None = None


class BacktestList(Envelope):
    backtests: list[Backtest] = Field(default_factory=list)


class BacktestReport(Envelope):
    report: str = ""


# -- Live --------------------------------------------------------------------


class LiveAlgorithm(Envelope):
    project_id: int | None = Field(default=None, alias="projectId")
    deploy_id: str = Field(default="", alias="deployId")
    status: AlgorithmStatus | None = None
    launched: datetime | None = None
    stopped: datetime | None = None
    brokerage: str | None = None
    subscription: str | None = None
    error: str | None = None


class LiveList(Envelope):
    live: list[LiveAlgorithm] = Field(default_factory=list)


class LiveAlgorithmResults(Envelope):
    live_results: dict[str, Any] = Field(default_factory=dict, alias="LiveResults")


class LiveLog(Envelope):
    live_logs: list[str] = Field(default_factory=list, alias="LiveLogs")
