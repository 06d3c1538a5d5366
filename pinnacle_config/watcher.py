"""
File watcher for the configuration script.

Monitors the script's directory and triggers a debounced restart when a
Python file in it changes.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[str]], Awaitable[None]]


class ScriptFileHandler(FileSystemEventHandler):
    """Handles file system events for configuration scripts."""

    def __init__(
        self,
        callback: ChangeCallback,
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = 500,
    ):
        """
        Initialize file handler.

        Args:
            callback: Async function called with the changed paths
            loop: Event loop the callback runs on
            debounce_ms: Debounce delay in milliseconds
        """
        super().__init__()
        self.callback = callback
        self.loop = loop
        self.debounce_ms = debounce_ms
        self.pending_events: Set[str] = set()
        self.debounce_task: Optional[asyncio.Task] = None

    def on_modified(self, event: FileSystemEvent):
        self._record(event, event.src_path)

    def on_created(self, event: FileSystemEvent):
        self._record(event, event.src_path)

    def on_moved(self, event: FileSystemEvent):
        # Editors that save atomically write a temp file and rename it over the script
        self._record(event, getattr(event, "dest_path", event.src_path))

    def _record(self, event: FileSystemEvent, raw_path) -> None:
        if event.is_directory:
            return

        path = Path(raw_path if isinstance(raw_path, str) else raw_path.decode())

        if path.suffix != ".py" or path.name.startswith("."):
            return
        if "__pycache__" in path.parts:
            return

        logger.debug(f"File changed: {path}")
        # Called on the observer thread
        self.loop.call_soon_threadsafe(self._schedule, str(path))

    def _schedule(self, path: str) -> None:
        self.pending_events.add(path)

        if self.debounce_task:
            self.debounce_task.cancel()

        self.debounce_task = self.loop.create_task(self._debounced_reload())

    async def _debounced_reload(self):
        """Execute debounced reload after delay."""
        try:
            await asyncio.sleep(self.debounce_ms / 1000.0)

            if self.pending_events:
                files = sorted(self.pending_events)
                self.pending_events.clear()

                logger.info(f"Triggering reload for {len(files)} changed files")
                await self.callback(files)

        except asyncio.CancelledError:
            # Debounce was cancelled - another event came in
            pass
        except Exception as e:
            logger.error(f"Error in debounced reload: {e}")


class ScriptWatcher:
    """Watches the configuration script and triggers restarts."""

    def __init__(self, script_path: Path, reload_callback: ChangeCallback, debounce_ms: int = 500):
        """
        Initialize file watcher.

        Args:
            script_path: Configuration script; its directory is watched
            reload_callback: Async function to call on file changes
            debounce_ms: Debounce delay in milliseconds
        """
        self.script_path = Path(script_path)
        self.watch_dir = self.script_path.resolve().parent
        self.reload_callback = reload_callback
        self.debounce_ms = debounce_ms

        self.observer: Optional[Observer] = None
        self.handler: Optional[ScriptFileHandler] = None
        self.running = False

    def start(self):
        """Start file watcher. Must be called from the event loop thread."""
        if self.running:
            logger.warning("File watcher already running")
            return

        logger.info(f"Starting file watcher for {self.watch_dir}")

        self.handler = ScriptFileHandler(
            callback=self.reload_callback,
            loop=asyncio.get_running_loop(),
            debounce_ms=self.debounce_ms,
        )

        self.observer = Observer()
        self.observer.schedule(self.handler, path=str(self.watch_dir), recursive=True)
        self.observer.start()
        self.running = True

    def stop(self):
        """Stop file watcher."""
        if not self.running:
            return

        logger.info("Stopping file watcher")

        if self.handler and self.handler.debounce_task:
            self.handler.debounce_task.cancel()

        if self.observer:
            self.observer.stop()
            self.observer.join()

        self.running = False

    def is_running(self) -> bool:
        return self.running
