"""
Scripting bridge.

Runs a synchronous Python configuration script against the async client.
The script executes on its own thread and sees `pinnacle`, a SyncProxy of
the API whose every coroutine method blocks until the event loop has run
it. Script callables passed as handlers are wrapped so they receive
script-native values and run on the client's handler pool.
"""

import asyncio
import concurrent.futures
import functools
import inspect
import logging
import runpy
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from . import models
from .api import Binding, Pinnacle, SignalHandle
from .api import layout as layout_api
from .api import rules as rules_api
from .api.base import ApiSection
from .api.handles import Handle
from .api.layout import LayoutRequester
from .client import PinnacleClient
from .errors import ClientMisuseError, ErrorCode, PinnacleError, TransportError
from .marshal import Marshaller, ScriptProxy, to_script, unwrap
from .models import EventCategory
from .multiplexer import is_async_handler
from .settings import ClientSettings

logger = logging.getLogger(__name__)

PROXY_TYPES = (Pinnacle, ApiSection, Handle, Binding, SignalHandle, LayoutRequester)

# Names every configuration script can use without importing anything
SCRIPT_NAMESPACE = {
    name: getattr(module, name)
    for module, names in (
        (models, (
            "Mod", "MouseButton", "Edge", "BindAction", "Vrr", "VrrDemand", "Transform",
            "DecorationMode", "Direction", "DeviceType", "AccelProfile", "ClickMethod",
            "ScrollMethod", "EventCategory", "LibinputSettings",
        )),
        (layout_api, (
            "LayoutNode", "LayoutArgs", "LayoutResponse", "NodeStyle", "Gaps", "FlexDir",
            "MasterStack", "Dwindle", "Cycle",
        )),
        (rules_api, ("WindowRule", "WindowCriteria", "WindowRuleActions")),
    )
    for name in names
}


class SyncProxy(ScriptProxy):
    """Blocking view of an API object for script code.

    Coroutine methods become blocking calls, results are converted to
    script values, and attributes are read-only.
    """

    __slots__ = ("_bridge",)

    def __init__(self, target: Any, bridge: "ScriptBridge"):
        super().__init__(target)
        object.__setattr__(self, "_bridge", bridge)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        target = object.__getattribute__(self, "_target")
        bridge = object.__getattribute__(self, "_bridge")
        attr = getattr(target, name)

        if inspect.iscoroutinefunction(attr):
            def blocking(*args, **kwargs):
                return bridge.call(attr, *args, **kwargs)
            functools.update_wrapper(blocking, attr, assigned=("__name__", "__qualname__", "__doc__"))
            return blocking

        if callable(attr) and not isinstance(attr, type):
            def plain(*args, **kwargs):
                return bridge.to_script(attr(*unwrap(args), **unwrap(kwargs)))
            functools.update_wrapper(plain, attr, assigned=("__name__", "__qualname__", "__doc__"))
            return plain

        return bridge.to_script(attr)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{name} is read-only")

    def __dir__(self):
        target = object.__getattribute__(self, "_target")
        return [name for name in dir(target) if not name.startswith("_")]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SyncProxy):
            return NotImplemented
        return unwrap(self) == unwrap(other)

    def __hash__(self) -> int:
        return hash(unwrap(self))

    def __repr__(self) -> str:
        return repr(unwrap(self))


class ScriptBridge:
    """Connects script threads to the client's event loop.

    Must be created on the event loop thread.
    """

    def __init__(self, client: PinnacleClient):
        self.client = client
        self.loop = asyncio.get_running_loop()
        self.pinnacle = Pinnacle(client)
        self.marshaller = Marshaller(self.wrap_callback, handle_types=PROXY_TYPES)
        self._loop_thread = threading.get_ident()
        self._futures: Set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def proxy(self) -> SyncProxy:
        return SyncProxy(self.pinnacle, self)

    def script_globals(self) -> Dict[str, Any]:
        return {**SCRIPT_NAMESPACE, "pinnacle": self.proxy}

    def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """Marshal script arguments, run an API coroutine method and convert its result."""
        bound = self.marshaller.bind_arguments(func, args, kwargs)
        return self.to_script(self.run(lambda: func(*bound.args, **bound.kwargs)))

    def run(self, make_coro: Callable[[], Any]) -> Any:
        """
        Run a coroutine on the event loop and block for its result.

        Raises:
            TransportError: If the session is closed or closes while waiting
            ClientMisuseError: If called from the event loop thread
        """
        self._check_open()
        if threading.get_ident() == self._loop_thread:
            raise ClientMisuseError(
                "Blocking API called from the event loop thread",
                suggestion="Use the async API inside coroutine handlers",
            )

        coro = make_coro()
        try:
            future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        except RuntimeError:
            coro.close()
            raise TransportError("event loop is closed", code=ErrorCode.NOT_CONNECTED)

        with self._lock:
            self._futures.add(future)
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            raise self._closed_error()
        finally:
            with self._lock:
                self._futures.discard(future)

    def to_script(self, value: Any) -> Any:
        return to_script(value, self._proxy_for, PROXY_TYPES)

    def wrap_callback(self, field: str, fn: Callable) -> Callable:
        """Wrap a script callable so it receives script values and returns API values."""
        if isinstance(fn, ScriptProxy):
            return unwrap(fn)

        bridge = self

        if is_async_handler(fn):
            async def async_callback(*args):
                return unwrap(await fn(*[bridge.to_script(arg) for arg in args]))
            async_callback.__qualname__ = f"script:{getattr(fn, '__qualname__', field)}"
            return async_callback

        def callback(*args):
            return unwrap(fn(*[bridge.to_script(arg) for arg in args]))
        callback.__qualname__ = f"script:{getattr(fn, '__qualname__', field)}"
        return callback

    def shutdown(self) -> None:
        """Fail every blocked script call and refuse new ones."""
        self._closed = True
        with self._lock:
            futures, self._futures = self._futures, set()
        for future in futures:
            future.cancel()
        if futures:
            logger.debug(f"Cancelled {len(futures)} blocked script call(s)")

    def _proxy_for(self, value: Any) -> SyncProxy:
        return SyncProxy(value, self)

    def _check_open(self) -> None:
        if self._closed or self.client.closed:
            raise self._closed_error()

    def _closed_error(self) -> TransportError:
        if self.client.close_reason is not None:
            return self.client.close_reason.clone()
        return TransportError("configuration session closed", code=ErrorCode.NOT_CONNECTED)


class ScriptSession:
    """One run of a configuration script against the compositor.

    Connects, runs the script, keeps serving its handlers until the
    compositor disconnects or stop() is called, then closes the client.
    """

    def __init__(
        self,
        script_path: Path,
        settings: Optional[ClientSettings] = None,
        client: Optional[PinnacleClient] = None,
    ):
        self.script_path = Path(script_path)
        self.settings = settings or ClientSettings.from_env()
        self.client = client or PinnacleClient(self.settings)
        self.bridge: Optional[ScriptBridge] = None
        self.reload_requested = False
        self.stop_requested = False
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def run(self) -> int:
        """
        Run the session to completion.

        Returns:
            0 when stopped or reloaded, 1 when the script failed or the connection was lost

        Raises:
            ClientMisuseError: If the script file does not exist
        """
        if not self.script_path.is_file():
            raise ClientMisuseError(
                f"Configuration script not found: {self.script_path}",
                code=ErrorCode.SCRIPT_NOT_FOUND,
                suggestion="Pass a script path or create $XDG_CONFIG_HOME/pinnacle/config.py",
            )

        self.loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self.stop_requested:
            self._stop_event.set()

        try:
            await self.client.connect()
        except TransportError as e:
            logger.error(f"Cannot start configuration: {e.message}")
            return 1

        self.bridge = ScriptBridge(self.client)
        self.client.subscribe(EventCategory.RELOAD.value, self._on_reload)

        script_done = self._start_script()
        closed = asyncio.ensure_future(self.client.wait_closed())
        stopped = asyncio.ensure_future(self._stop_event.wait())
        exit_code = 0

        try:
            done, _ = await asyncio.wait(
                {script_done, closed, stopped}, return_when=asyncio.FIRST_COMPLETED
            )

            if script_done in done:
                error = script_done.exception()
                if error is not None and not isinstance(error, TransportError):
                    self._report_script_error(error)
                    return 1
                if error is None:
                    logger.info(f"Configuration script {self.script_path.name} finished; serving handlers")
                    done, _ = await asyncio.wait({closed, stopped}, return_when=asyncio.FIRST_COMPLETED)

            if not self.stop_requested and self.client.closed:
                reason = self.client.close_reason
                logger.error(f"Lost connection to compositor: {reason.message if reason else 'unknown'}")
                exit_code = 1

            return exit_code

        finally:
            stopped.cancel()
            self.bridge.shutdown()
            await self.client.close()
            closed.cancel()
            if script_done.done() and not script_done.cancelled():
                script_done.exception()

    def stop(self, reload: bool = False) -> None:
        """Ask the session to end. Safe to call from any thread."""
        self.stop_requested = True
        self.reload_requested = self.reload_requested or reload
        if self.loop is not None and self._stop_event is not None:
            self.loop.call_soon_threadsafe(self._stop_event.set)

    async def _on_reload(self, event: models.Event) -> None:
        logger.info("Compositor requested a configuration reload")
        self.stop(reload=True)

    def _start_script(self) -> asyncio.Future:
        loop = self.loop
        future = loop.create_future()
        script_globals = self.bridge.script_globals()
        path = str(self.script_path)

        def settle(error: Optional[BaseException]) -> None:
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        def target() -> None:
            error: Optional[BaseException] = None
            try:
                runpy.run_path(path, init_globals=script_globals, run_name="__pinnacle_config__")
            except SystemExit as e:
                if e.code not in (None, 0):
                    error = e
            except BaseException as e:
                error = e
            try:
                loop.call_soon_threadsafe(settle, error)
            except RuntimeError:
                logger.debug("Event loop closed before the configuration script finished")

        logger.info(f"Running configuration script {path}")
        threading.Thread(target=target, name="pinnacle-config-script", daemon=True).start()
        return future

    def _report_script_error(self, error: BaseException) -> None:
        if isinstance(error, PinnacleError):
            logger.error(f"Configuration script failed: {error.message}")
            if error.suggestion:
                logger.error(f"  {error.suggestion}")
        else:
            logger.error(
                f"Configuration script {self.script_path.name} raised",
                exc_info=(type(error), error, error.__traceback__),
            )
