"""Pinnacle compositor client.

Composes the transport, the request correlator and the event multiplexer.
One receive task drains the transport and is the only code path resolving
calls and dispatching events; the subscription and pending-call tables are
owned by the event loop thread.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .correlator import RequestCorrelator
from .errors import ClientMisuseError, ErrorCode, TransportError
from .models import Event
from .multiplexer import EventMultiplexer, Handler, Subscription
from .settings import ClientSettings
from .state import ClientStats
from .transport import UnixSocketTransport

logger = logging.getLogger(__name__)

_UNSET = object()


class PinnacleClient:
    """Async client for the compositor's config protocol.

    Usage:
        async with PinnacleClient() as client:
            outputs = await client.call("output.get_outputs")
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        transport: Optional[UnixSocketTransport] = None,
    ):
        """Initialize client.

        Args:
            settings: Client settings (defaults read from the environment)
            transport: Transport to use (a UnixSocketTransport for settings.socket_path if None)
        """
        self.settings = settings or ClientSettings.from_env()
        self.transport = transport or UnixSocketTransport(
            self.settings.socket_path,
            connect_timeout=self.settings.connect_timeout,
            max_message_bytes=self.settings.max_message_bytes,
        )
        self.stats = ClientStats()
        self.executor = ThreadPoolExecutor(
            max_workers=self.settings.handler_workers,
            thread_name_prefix="pinnacle-handler",
        )
        self.correlator = RequestCorrelator(self.transport.send, stats=self.stats)
        self.multiplexer = EventMultiplexer(
            executor=self.executor,
            queue_size=self.settings.handler_queue_size,
            stats=self.stats,
        )
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closed_event: Optional[asyncio.Event] = None
        self._close_reason: Optional[TransportError] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._connected = False

    async def __aenter__(self) -> "PinnacleClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected and self._close_reason is None

    @property
    def closed(self) -> bool:
        return self._close_reason is not None

    @property
    def close_reason(self) -> Optional[TransportError]:
        return self._close_reason

    async def connect(self) -> None:
        """Connect to the compositor and start the receive loop.

        Raises:
            TransportError: If the compositor cannot be reached
        """
        if self.closed:
            raise ClientMisuseError("Client already closed", code=ErrorCode.CLIENT_CLOSED)
        if self._connected:
            return

        self.loop = asyncio.get_running_loop()
        self._closed_event = asyncio.Event()

        if not self.transport.connected:
            await self.transport.connect_with_retry(max_attempts=self.settings.connect_attempts)

        self.transport.add_close_callback(self._on_transport_closed)
        self._connected = True
        self.stats.record_connected()
        self._receive_task = self.loop.create_task(self._receive_loop(), name="pinnacle-receive")

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        timeout: Any = _UNSET,
    ) -> Any:
        """Send a request and wait for its result.

        Args:
            method: Compositor method name
            params: Method parameters
            timeout: Deadline in seconds; defaults to settings.default_call_timeout

        Raises:
            CompositorRejection: If the compositor rejected the request
            CallTimeoutError: If the deadline passed
            TransportError: If the connection is closed
        """
        self._require_connected()
        if timeout is _UNSET:
            timeout = self.settings.default_call_timeout
        return await self.correlator.call(method, params, timeout=timeout)

    def subscribe(
        self,
        category: str,
        handler: Handler,
        event_filter: Optional[str] = None,
    ) -> Subscription:
        """Register a local event subscription (no request is sent)."""
        self._require_connected()
        return self.multiplexer.subscribe(category, handler, event_filter)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.multiplexer.unsubscribe(subscription)

    async def wait_closed(self) -> Optional[TransportError]:
        """Wait until the connection ends and teardown completes.

        Returns:
            The TransportError that ended the session
        """
        if self._closed_event is None:
            return self._close_reason
        await self._closed_event.wait()
        if self._teardown_task is not None:
            await asyncio.shield(self._teardown_task)
        return self._close_reason

    async def close(self) -> None:
        """Close the connection, fail pending calls and clear subscriptions."""
        if self._teardown_task is None:
            if not self._connected:
                self.executor.shutdown(wait=False)
                return
            await self.transport.close()

        if self._teardown_task is not None:
            await asyncio.shield(self._teardown_task)

        if self._receive_task is not None and self._receive_task is not asyncio.current_task():
            if not self._receive_task.done():
                self._receive_task.cancel()
            await asyncio.gather(self._receive_task, return_exceptions=True)

    def _require_connected(self) -> None:
        if self._close_reason is not None:
            raise self._close_reason.clone()
        if not self._connected:
            raise ClientMisuseError(
                "Client is not connected",
                code=ErrorCode.CLIENT_CLOSED,
                suggestion="Call connect() or use 'async with PinnacleClient()'",
            )

    async def _receive_loop(self) -> None:
        try:
            while True:
                message = await self.transport.receive()
                if message is None:
                    break
                self._route(message)
        except asyncio.CancelledError:
            pass
        except TransportError as e:
            logger.error(f"Receive loop stopped: {e.message}")
        finally:
            if not self.transport.closed:
                await self.transport.close()

    def _route(self, message: Dict[str, Any]) -> None:
        if "id" in message and ("result" in message or "error" in message):
            self.correlator.resolve(message["id"], message.get("result"), message.get("error"))
            return

        if message.get("method") == "event":
            params = message.get("params")
            if not isinstance(params, dict) or "category" not in params:
                logger.warning(f"Skipping event without category: {message}")
                return
            try:
                event = Event.from_params(params)
            except ValidationError as e:
                logger.warning(f"Skipping malformed '{params['category']}' event: {e.error_count()} invalid field(s)")
                return
            self.stats.increment("events_received")
            self.multiplexer.dispatch(event)
            return

        logger.warning(f"Skipping unrecognized message: {message}")

    def _on_transport_closed(self, reason: TransportError) -> None:
        if self._close_reason is not None:
            return
        self._close_reason = reason
        self.stats.record_disconnected(reason.context.get("reason", reason.message))

        # Fail calls synchronously so no caller observes a half-closed client
        self.correlator.cancel_all(reason)
        self._teardown_task = self.loop.create_task(self._teardown(), name="pinnacle-teardown")

    async def _teardown(self) -> None:
        try:
            await self.multiplexer.close()
        finally:
            self.executor.shutdown(wait=False, cancel_futures=True)
            self._closed_event.set()
            logger.info(f"Client session ended: {self.stats.to_dict()['telemetry']}")
