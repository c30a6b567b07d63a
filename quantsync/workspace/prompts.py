"""User interaction surfaces.

The reconciler and credential provider never talk to a terminal or an editor
directly; they go through a :class:`Prompter`.  ``None`` from any ``ask``/
``pick``/``confirm`` call means the user dismissed the prompt.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import partial
from typing import Protocol, runtime_checkable

import click
from anyio import to_thread


@runtime_checkable
class Prompter(Protocol):
    async def ask_text(self, prompt: str, *, password: bool = False) -> str | None:
        """Free-form input.  Returns ``""`` for an empty answer, ``None`` if dismissed."""
        ...

    async def pick(self, items: Sequence[str], *, placeholder: str | None = None) -> str | None:
        """Pick exactly one of *items*."""
        ...

    async def pick_many(self, items: Sequence[str], *, placeholder: str | None = None) -> list[str] | None:
        """Pick any number of *items*."""
        ...

    async def confirm(self, message: str) -> bool | None: ...

    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class ClickPrompter:
    """Terminal prompter for the CLI.

    Blocking ``click`` prompts run in a worker thread so the event loop keeps
    servicing in-flight requests.
    """

    async def ask_text(self, prompt: str, *, password: bool = False) -> str | None:
        return await to_thread.run_sync(partial(_prompt_text, prompt, password))

    async def pick(self, items: Sequence[str], *, placeholder: str | None = None) -> str | None:
        if not items:
            return None
        chosen = await to_thread.run_sync(partial(_prompt_indices, list(items), placeholder, False))
        return chosen[0] if chosen else None

    async def pick_many(self, items: Sequence[str], *, placeholder: str | None = None) -> list[str] | None:
        if not items:
            return None
        return await to_thread.run_sync(partial(_prompt_indices, list(items), placeholder, True))

    async def confirm(self, message: str) -> bool | None:
        return await to_thread.run_sync(partial(_prompt_confirm, message))

    def info(self, message: str) -> None:
        click.echo(message)

    def error(self, message: str) -> None:
        click.secho(message, fg="red", err=True)


# -- Sync helpers (run in thread pool) -----------------------------------------


def _prompt_text(prompt: str, password: bool) -> str | None:
    try:
        return click.prompt(prompt, default="", show_default=False, hide_input=password)
    except click.Abort:
        return None


def _prompt_confirm(message: str) -> bool | None:
    try:
        return click.confirm(message, default=False)
    except click.Abort:
        return None


def _prompt_indices(items: list[str], placeholder: str | None, many: bool) -> list[str] | None:
    if placeholder:
        click.echo(placeholder)
    for number, item in enumerate(items, start=1):
        click.echo(f"  {number}) {item}")
    hint = "Numbers, comma separated" if many else "Number"
    try:
        answer: str = click.prompt(hint, default="", show_default=False)
    except click.Abort:
        return None

    picked: list[str] = []
    for token in answer.replace(" ", "").split(","):
        if not token.isdigit() or not 1 <= int(token) <= len(items):
            continue
        item = items[int(token) - 1]
        if item not in picked:
            picked.append(item)
        if not many:
            break
    return picked or None
