"""
Pytest configuration and fixtures for pinnacle-config tests.

Provides an in-memory transport with a scriptable fake compositor behind it,
and a real Unix-socket compositor for transport-level tests.
"""

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from pinnacle_config.client import PinnacleClient
from pinnacle_config.errors import ErrorCode, TransportError
from pinnacle_config.settings import ClientSettings

NO_REPLY = object()


class RemoteError(Exception):
    """Raised by a responder to send a JSON-RPC error response."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Wait until predicate() is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached within timeout")
        await asyncio.sleep(0.005)


class FakeTransport:
    """In-memory stand-in for UnixSocketTransport."""

    def __init__(self, responder: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.responder = responder
        self.sent: List[Dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self.close_reason: Optional[TransportError] = None
        self.fail_sends = False
        self._incoming: Optional[asyncio.Queue] = None
        self._callbacks = []

    @property
    def incoming(self) -> asyncio.Queue:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    def add_close_callback(self, callback) -> None:
        if self.closed:
            callback(self.close_reason)
            return
        self._callbacks.append(callback)

    async def connect(self) -> None:
        self.connected = True

    async def connect_with_retry(self, max_attempts: int = 10, initial_delay: float = 0.1) -> None:
        await self.connect()

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise self.close_reason.clone()
        if self.fail_sends:
            error = TransportError("write failed: broken pipe", code=ErrorCode.WRITE_FAILED)
            self._mark_closed(error)
            raise error
        json.dumps(message)
        self.sent.append(message)

        if self.responder is not None and "id" in message:
            try:
                result = self.responder(message)
            except RemoteError as e:
                self.reject(message["id"], e.code, e.message, e.data)
                return
            if result is not NO_REPLY:
                self.respond(message["id"], result)

    async def receive(self) -> Optional[Dict[str, Any]]:
        message = await self.incoming.get()
        if message is None:
            self._mark_closed(TransportError("compositor closed the connection"))
            return None
        return message

    async def close(self) -> None:
        self._mark_closed(TransportError("connection closed by client", code=ErrorCode.NOT_CONNECTED))
        self.incoming.put_nowait(None)

    def _mark_closed(self, reason: TransportError) -> None:
        if self.closed:
            return
        self.closed = True
        self.connected = False
        self.close_reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    # Compositor side

    def respond(self, request_id: Any, result: Any = None) -> None:
        self.incoming.put_nowait({"jsonrpc": "2.0", "id": request_id, "result": result})

    def reject(self, request_id: Any, code: int, message: str, data: Any = None) -> None:
        error = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        self.incoming.put_nowait({"jsonrpc": "2.0", "id": request_id, "error": error})

    def push_event(self, category: str, event_filter: Optional[str] = None, payload: Optional[dict] = None) -> None:
        self.incoming.put_nowait({
            "jsonrpc": "2.0",
            "method": "event",
            "params": {"category": category, "filter": event_filter, "payload": payload or {}},
        })

    def disconnect(self) -> None:
        """Simulate the compositor closing the connection."""
        self.incoming.put_nowait(None)

    def methods(self) -> List[str]:
        return [message["method"] for message in self.sent]

    def requests(self, method: str) -> List[Dict[str, Any]]:
        return [message["params"] for message in self.sent if message["method"] == method]


class FakeCompositor:
    """Answers API requests from a small in-memory model of compositor state."""

    def __init__(self):
        self.outputs: List[Dict[str, Any]] = [
            {
                "name": "DP-1",
                "make": "Dell",
                "model": "U2723QE",
                "focused": True,
                "current_mode": {"width": 3840, "height": 2160, "refresh_rate_mhz": 60000},
                "scale": 2.0,
            },
            {"name": "HDMI-A-1", "focused": False, "scale": 1.0},
        ]
        self.windows: List[Dict[str, Any]] = [
            {"id": 1, "app_id": "firefox", "title": "Mozilla Firefox", "tags": [1], "focused": True},
            {"id": 2, "app_id": "org.wezfurlong.wezterm", "title": "zsh", "tags": [2]},
        ]
        self.tags: List[Dict[str, Any]] = []
        self.devices: List[Dict[str, Any]] = [
            {"sysname": "event3", "name": "AT Keyboard", "device_type": "keyboard"},
            {"sysname": "event5", "name": "SYNA Touchpad", "device_type": "touchpad"},
        ]
        self.overrides: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self._tag_ids = itertools.count(1)

    def __call__(self, message: Dict[str, Any]) -> Any:
        method = message["method"]
        params = message.get("params") or {}

        if method in self.overrides:
            return self.overrides[method](params)
        if method == "output.get_outputs":
            return self.outputs
        if method == "window.get_windows":
            return self.windows
        if method == "tag.get_tags":
            return self.tags
        if method == "input.get_devices":
            return self.devices
        if method == "tag.add":
            ids = []
            for name in params["names"]:
                tag_id = next(self._tag_ids)
                self.tags.append({"id": tag_id, "name": name, "output": params["output"], "active": False})
                ids.append(tag_id)
            return ids
        if method == "pinnacle.version":
            return "0.1.0"
        if method == "output.set_scale" and params["output"] not in {o["name"] for o in self.outputs}:
            raise RemoteError(-32602, f"unknown output {params['output']}")
        return None


@pytest.fixture
def compositor() -> FakeCompositor:
    return FakeCompositor()


@pytest.fixture
def fake_transport(compositor) -> FakeTransport:
    return FakeTransport(responder=compositor)


@pytest.fixture
def settings(tmp_path) -> ClientSettings:
    return ClientSettings(socket_path=tmp_path / "config.sock", handler_workers=2, connect_attempts=1)


@pytest_asyncio.fixture
async def client(settings, fake_transport):
    """Connected client over the fake transport."""
    client = PinnacleClient(settings=settings, transport=fake_transport)
    await client.connect()
    yield client
    await client.close()


class SocketCompositor:
    """Minimal compositor listening on a real Unix socket.

    Methods:
        test.echo: returns its params
        test.event: pushes params as an event, then replies
        test.garbage: writes an undecodable line, then replies
        test.hangup: closes the connection without replying
    """

    def __init__(self, socket_path: Path):
        self.socket_path = socket_path
        self.server: Optional[asyncio.AbstractServer] = None
        self.writers: List[asyncio.StreamWriter] = []
        self.received: List[Dict[str, Any]] = []

    async def start(self) -> None:
        self.server = await asyncio.start_unix_server(self._handle, path=str(self.socket_path))

    async def stop(self) -> None:
        for writer in self.writers:
            writer.close()
        if self.server:
            self.server.close()
            await self.server.wait_closed()

    async def _write(self, writer: asyncio.StreamWriter, message: Dict[str, Any]) -> None:
        writer.write((json.dumps(message) + "\n").encode())
        await writer.drain()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writers.append(writer)
        while True:
            line = await reader.readline()
            if not line:
                break
            request = json.loads(line)
            self.received.append(request)
            method = request["method"]
            params = request.get("params", {})

            if method == "test.hangup":
                writer.close()
                return
            if method == "test.event":
                await self._write(writer, {"jsonrpc": "2.0", "method": "event", "params": params})
            if method == "test.garbage":
                writer.write(b"{not json\n")
                writer.write(b"[1, 2, 3]\n")
            result = params if method == "test.echo" else None
            await self._write(writer, {"jsonrpc": "2.0", "id": request["id"], "result": result})


@pytest_asyncio.fixture
async def socket_compositor(tmp_path):
    """Real Unix-socket compositor in a temporary directory."""
    server = SocketCompositor(tmp_path / "pinnacle.sock")
    await server.start()
    yield server
    await server.stop()
