"""Data models for the workspace runtime."""

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
    Project,
    ProjectFile,
    ProjectFilesResponse,
    ProjectResponse,
)
from quantsync.workspace.models.binding import (
    BindingRecord,
    LocalFile,
    LocalProjectBinding,
    SessionSnapshot,
    binding_from_record,
    binding_to_record,
    scan_project_files,
)
from quantsync.workspace.models.enums import (
    LANGUAGE_DISPLAY_NAMES,
    AlgorithmStatus,
    BrokerageEnvironment,
    CompileState,
    Disposition,
    Language,
    language_from_display_name,
)

__all__ = [
    # Enums
    "LANGUAGE_DISPLAY_NAMES",
    "AlgorithmStatus",
    # API envelopes
    "Backtest",
    "BacktestList",
    "BacktestReport",
    # Bindings
    "BindingRecord",
    "BrokerageEnvironment",
    "Compile",
    "CompileState",
    "Disposition",
    "Envelope",
    "Language",
    "LiveAlgorithm",
    "LiveAlgorithmResults",
    "LiveList",
    "LiveLog",
    "LocalFile",
    "LocalProjectBinding",
    "Project",
    "ProjectFile",
    "ProjectFilesResponse",
    "ProjectResponse",
    "SessionSnapshot",
    "binding_from_record",
    "binding_to_record",
    "language_from_display_name",
    "scan_project_files",
]
