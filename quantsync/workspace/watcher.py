"""Upload-on-save driven by filesystem events.

watchdog reports writes from its observer thread.  ``SaveEventHandler`` hands
each saved path over to the event loop, and ``WorkspaceWatcher`` waits for a
short quiet period before passing the batch to ``SyncSession.on_file_saved``.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from quantsync.workspace.session import SyncSession


def is_editor_temp_file(path: str | Path) -> bool:
    """Swap, backup and lock files editors write next to the real one."""
    name = Path(path).name
    return (
        name.endswith("~")
        or name.endswith(".swp")
        or name.isdigit()  # vim's write test file (4913)
        or (name.startswith("#") and name.endswith("#"))
    )


class SaveEventHandler(FileSystemEventHandler):
    """Forward file writes from the observer thread to an asyncio queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[Path]) -> None:
        self._loop = loop
        self._queue = queue

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save atomically rename a temp file over the target.
        self._forward(event, event.dest_path)

    def _forward(self, event: FileSystemEvent, path: str | bytes) -> None:
        if event.is_directory or not path:
            return
        saved = Path(os.fsdecode(path))
        if is_editor_temp_file(saved):
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, saved)


class WorkspaceWatcher:
    """Watch a directory tree and upload project files as they are saved.

    Which files are uploaded is decided by ``SyncSession.on_file_saved``;
    the watcher only collapses bursts of events into one upload per file.
    """

    def __init__(self, session: SyncSession, root: str | Path, *, debounce: float = 0.5) -> None:
        self.session = session
        self.root = Path(root).resolve()
        self.debounce = debounce
        self._queue: asyncio.Queue[Path] = asyncio.Queue()

    def handler(self) -> SaveEventHandler:
        """Build an event handler bound to the running loop."""
        return SaveEventHandler(asyncio.get_running_loop(), self._queue)

    async def run(self) -> None:
        """Watch until cancelled."""
        observer = Observer()
        observer.schedule(self.handler(), str(self.root), recursive=True)
        observer.start()
        logger.info("Watching {} for saved files", self.root)
        try:
            while True:
                await self.flush(await self.next_batch())
        finally:
            observer.stop()
            observer.join()
            logger.info("Stopped watching {}", self.root)

    async def next_batch(self) -> list[Path]:
        """Wait for one saved path, then gather the rest of the burst."""
        batch = [await self._queue.get()]
        while True:
            try:
                with anyio.fail_after(self.debounce):
                    batch.append(await self._queue.get())
            except TimeoutError:
                return list(dict.fromkeys(batch))

    async def flush(self, paths: Iterable[Path]) -> int:
        """Hand each saved file to the session once.  Returns the number uploaded."""
        uploaded = 0
        for path in dict.fromkeys(paths):
            if not path.is_file():
                continue
            if await self.session.on_file_saved(path):
                uploaded += 1
                self.session.context.prompter.info(f"Saved {path.name} to the cloud")
        return uploaded
