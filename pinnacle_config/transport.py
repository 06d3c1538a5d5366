"""Unix socket transport to the Pinnacle compositor.

Frames messages as newline-delimited JSON-RPC 2.0 objects over a single
duplex stream. The transport owns both halves of the connection; on write
failure or peer close it marks itself closed and notifies its dependents
exactly once.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import ErrorCode, TransportError

logger = logging.getLogger(__name__)

CloseCallback = Callable[[TransportError], None]


class UnixSocketTransport:
    """Duplex newline-delimited JSON channel to the compositor."""

    def __init__(
        self,
        socket_path: Path,
        connect_timeout: float = 5.0,
        max_message_bytes: int = 16 * 1024 * 1024,
    ):
        """Initialize transport.

        Args:
            socket_path: Path to the compositor's Unix socket
            connect_timeout: Timeout for a single connect attempt in seconds
            max_message_bytes: Largest frame accepted from the compositor
        """
        self.socket_path = Path(socket_path)
        self.connect_timeout = connect_timeout
        self.max_message_bytes = max_message_bytes
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._close_reason: Optional[TransportError] = None
        self._close_callbacks: List[CloseCallback] = []

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> Optional[TransportError]:
        return self._close_reason

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback invoked once when the connection closes."""
        if self._closed:
            callback(self._close_reason)
            return
        self._close_callbacks.append(callback)

    async def connect(self) -> None:
        """Connect to the compositor socket.

        Raises:
            TransportError: If connection fails
        """
        if self._closed:
            raise TransportError("transport already closed", code=ErrorCode.NOT_CONNECTED)

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_unix_connection(
                    str(self.socket_path), limit=self.max_message_bytes
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"connection timeout after {self.connect_timeout}s",
                code=ErrorCode.CONNECTION_REFUSED,
                socket_path=str(self.socket_path),
            )
        except FileNotFoundError:
            raise TransportError(
                "socket not found",
                code=ErrorCode.SOCKET_NOT_FOUND,
                socket_path=str(self.socket_path),
            )
        except OSError as e:
            raise TransportError(
                f"connection refused: {e}",
                code=ErrorCode.CONNECTION_REFUSED,
                socket_path=str(self.socket_path),
            )

        logger.info(f"Connected to compositor at {self.socket_path}")

    async def connect_with_retry(self, max_attempts: int = 10, initial_delay: float = 0.1) -> None:
        """Connect with exponential backoff retry.

        Args:
            max_attempts: Maximum connection attempts
            initial_delay: Delay before the second attempt in seconds

        Raises:
            TransportError: If connection fails after max attempts
        """
        delay = initial_delay
        last_error: Optional[TransportError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                logger.debug(f"Connecting to compositor (attempt {attempt}/{max_attempts})")
                await self.connect()
                return
            except TransportError as e:
                last_error = e
                logger.warning(f"Connection attempt {attempt} failed: {e.context.get('reason')}")
                if attempt < max_attempts:
                    await asyncio.sleep(delay)
                    # Exponential backoff: double delay up to 5s max
                    delay = min(delay * 2, 5.0)

        raise TransportError(
            f"failed after {max_attempts} attempts ({last_error.context.get('reason') if last_error else 'unknown'})",
            code=last_error.code if last_error else ErrorCode.CONNECTION_REFUSED,
            socket_path=str(self.socket_path),
        )

    async def send(self, message: Dict[str, Any]) -> None:
        """Send one message.

        Args:
            message: JSON-serializable message

        Raises:
            TransportError: If the transport is closed or the write fails
        """
        self._check_writable()
        data = (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")

        async with self._write_lock:
            # close() may have run while this sender waited for the lock
            self._check_writable()
            writer = self._writer
            try:
                writer.write(data)
                await writer.drain()
            except (ConnectionError, OSError, RuntimeError) as e:
                error = TransportError(f"write failed: {e}", code=ErrorCode.WRITE_FAILED)
                self._mark_closed(error)
                raise error

    async def receive(self) -> Optional[Dict[str, Any]]:
        """Receive the next message.

        Lines that do not decode to a JSON object are logged and skipped.

        Returns:
            Next message, or None when the compositor closed the connection

        Raises:
            TransportError: If the read fails
        """
        if self._reader is None:
            raise TransportError("not connected", code=ErrorCode.NOT_CONNECTED)

        while True:
            try:
                line = await self._reader.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                error = TransportError(f"frame exceeds {self.max_message_bytes} bytes", code=ErrorCode.READ_FAILED)
                self._mark_closed(error)
                raise error from e
            except (ConnectionError, OSError) as e:
                error = TransportError(f"read failed: {e}", code=ErrorCode.READ_FAILED)
                self._mark_closed(error)
                raise error

            if not line:
                self._mark_closed(TransportError("compositor closed the connection"))
                return None

            line = line.strip()
            if not line:
                continue

            try:
                message = json.loads(line.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping undecodable frame from compositor: {e}")
                continue

            if not isinstance(message, dict):
                logger.warning(f"Skipping non-object frame from compositor: {type(message).__name__}")
                continue

            return message

    async def close(self) -> None:
        """Close the connection."""
        self._mark_closed(TransportError("connection closed by client", code=ErrorCode.NOT_CONNECTED))

        if self._writer:
            writer = self._writer
            self._writer = None
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error while closing socket: {e}")

    def _check_writable(self) -> None:
        if self._closed or self._writer is None:
            if self._close_reason is not None:
                raise self._close_reason.clone()
            raise TransportError("not connected", code=ErrorCode.NOT_CONNECTED)

    def _mark_closed(self, reason: TransportError) -> None:
        if self._closed:
            return

        self._closed = True
        self._close_reason = reason
        logger.info(f"Compositor connection closed: {reason.context.get('reason')}")

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Transport close callback failed")
