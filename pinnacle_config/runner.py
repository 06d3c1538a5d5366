"""
Configuration runner.

Runs configuration sessions until shutdown: restarts the session when the
compositor asks for a reload or (with watch enabled) when the script
changes on disk.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

from .bridge import ScriptSession
from .settings import ClientSettings
from .watcher import ScriptWatcher

logger = logging.getLogger(__name__)


class ConfigRunner:
    """Supervises ScriptSessions for one configuration script."""

    def __init__(
        self,
        script_path: Path,
        settings: Optional[ClientSettings] = None,
        watch: bool = False,
        debounce_ms: int = 500,
    ):
        """
        Initialize configuration runner.

        Args:
            script_path: Configuration script to run
            settings: Client settings (read from the environment if None)
            watch: Restart the session when the script changes
            debounce_ms: Debounce delay for file changes in milliseconds
        """
        self.script_path = Path(script_path)
        self.settings = settings or ClientSettings.from_env()
        self.watch = watch
        self.debounce_ms = debounce_ms

        self.session: Optional[ScriptSession] = None
        self.watcher: Optional[ScriptWatcher] = None
        self.sessions_started = 0
        self.shutting_down = False
        self._changed: Optional[asyncio.Event] = None

    async def run(self) -> int:
        """
        Run sessions until shutdown.

        Returns:
            Exit code of the last session (0 after a signal-initiated shutdown)
        """
        loop = asyncio.get_running_loop()
        self._changed = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        if self.watch:
            self.watcher = ScriptWatcher(self.script_path, self._on_script_changed, self.debounce_ms)
            self.watcher.start()

        try:
            while True:
                self._changed.clear()
                self.session = ScriptSession(self.script_path, self.settings)
                self.sessions_started += 1
                exit_code = await self.session.run()

                if self.shutting_down:
                    logger.info("Configuration runner stopped")
                    return 0

                if self.session.reload_requested:
                    logger.info(f"Restarting configuration (session {self.sessions_started + 1})")
                    continue

                if not self.watch:
                    return exit_code

                logger.info("Session ended; waiting for the script to change")
                await self._changed.wait()
                if self.shutting_down:
                    return 0

        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            if self.watcher:
                self.watcher.stop()

    def _signal_handler(self):
        logger.info("Received shutdown signal")
        self.shutting_down = True
        if self.session:
            self.session.stop()
        self._changed.set()

    async def _on_script_changed(self, files: List[str]):
        logger.info(f"Configuration changed: {', '.join(Path(f).name for f in files)}")
        if self.session and not self.session.stop_requested:
            self.session.stop(reload=True)
        self._changed.set()
