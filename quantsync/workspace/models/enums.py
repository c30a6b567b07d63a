"""Shared enumerations used across the workspace runtime."""

from __future__ import annotations

from enum import IntEnum, StrEnum

# -- Project -----------------------------------------------------------------


class Language(StrEnum):
    """Project language as sent to and received from the API."""

    PYTHON = "Py"
    CSHARP = "C#"
    FSHARP = "F#"


LANGUAGE_DISPLAY_NAMES: dict[Language, str] = {
    Language.PYTHON: "Python",
    Language.CSHARP: "C#",
    Language.FSHARP: "F#",
}
"""Human-facing labels, kept apart from the wire values above."""


def language_from_display_name(label: str) -> Language | None:
    for language, display in LANGUAGE_DISPLAY_NAMES.items():
        if display == label:
            return language
    return None


class Disposition(StrEnum):
    """What to do with files that already exist locally during a download."""

    SKIP = "skip"
    OVERWRITE = "overwrite"


# -- Compile / backtest ------------------------------------------------------


class CompileState(IntEnum):
    IN_QUEUE = 0
    BUILD_SUCCESS = 1
    BUILD_ERROR = 2


# -- Live --------------------------------------------------------------------


class AlgorithmStatus(IntEnum):
    DEPLOY_ERROR = 1
    IN_QUEUE = 2
    RUNNING = 3
    STOPPED = 4
    LIQUIDATED = 5
    DELETED = 6
    COMPLETED = 7
    RUNTIME_ERROR = 8
    INVALID = 9
    LOGGING_IN = 10
    INITIALIZING = 11
    HISTORY = 12


LISTABLE_LIVE_STATUSES = frozenset(
    {
        AlgorithmStatus.RUNNING,
        AlgorithmStatus.RUNTIME_ERROR,
        AlgorithmStatus.STOPPED,
        AlgorithmStatus.LIQUIDATED,
    }
)
"""The only statuses ``live/read`` accepts as a filter."""


class BrokerageEnvironment(StrEnum):
    LIVE = "live"
    PAPER = "paper"