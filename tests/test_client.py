"""
Tests for PinnacleClient: routing, defaults, teardown.
"""

import asyncio

import pytest

from conftest import NO_REPLY, FakeTransport, RemoteError, eventually
from pinnacle_config.client import PinnacleClient
from pinnacle_config.errors import (
    CallTimeoutError,
    ClientMisuseError,
    CompositorRejection,
    ErrorCode,
    TransportError,
)
from pinnacle_config.settings import ClientSettings


class TestCalls:
    """Tests for call routing through the client."""

    @pytest.mark.asyncio
    async def test_call_returns_result(self, client, fake_transport):
        """Responses are routed to the matching call."""
        assert await client.call("pinnacle.version") == "0.1.0"
        assert fake_transport.methods() == ["pinnacle.version"]
        assert client.stats.telemetry["calls_succeeded"] == 1

    @pytest.mark.asyncio
    async def test_call_rejected(self, client, compositor):
        """Compositor errors surface as CompositorRejection."""
        def reject(params):
            raise RemoteError(-32601, "method not found")

        compositor.overrides["pinnacle.frobnicate"] = reject

        with pytest.raises(CompositorRejection) as exc_info:
            await client.call("pinnacle.frobnicate")
        assert exc_info.value.remote_code == -32601

    @pytest.mark.asyncio
    async def test_default_timeout_from_settings(self, tmp_path, compositor):
        """Calls without a timeout use settings.default_call_timeout."""
        compositor.overrides["slow.call"] = lambda params: NO_REPLY
        settings = ClientSettings(socket_path=tmp_path / "s.sock", default_call_timeout=0.05)

        async with PinnacleClient(settings, transport=FakeTransport(compositor)) as client:
            with pytest.raises(CallTimeoutError):
                await client.call("slow.call")
            # An explicit None overrides the default
            task = asyncio.create_task(client.call("slow.call", timeout=None))
            await asyncio.sleep(0.1)
            assert not task.done()
            task.cancel()

    @pytest.mark.asyncio
    async def test_call_before_connect(self, settings):
        """Calling an unconnected client is misuse."""
        client = PinnacleClient(settings, transport=FakeTransport())
        with pytest.raises(ClientMisuseError) as exc_info:
            await client.call("pinnacle.version")
        assert exc_info.value.code == ErrorCode.CLIENT_CLOSED
        await client.close()


class TestEvents:
    """Tests for event routing through the client."""

    @pytest.mark.asyncio
    async def test_event_reaches_subscription(self, client, fake_transport):
        """Pushed events are dispatched to local subscriptions."""
        received = []

        async def handler(event):
            received.append(event)

        client.subscribe("tag.active", handler)
        fake_transport.push_event("tag.active", None, {"tag_id": 4, "active": True})

        await eventually(lambda: received)
        assert received[0].payload == {"tag_id": 4, "active": True}
        assert client.stats.telemetry["events_received"] == 1

    @pytest.mark.asyncio
    async def test_malformed_event_skipped(self, client, fake_transport):
        """An event without a category is logged and skipped."""
        received = []

        async def handler(event):
            received.append(event.payload["n"])

        client.subscribe("window.focused", handler)
        fake_transport.incoming.put_nowait({"jsonrpc": "2.0", "method": "event", "params": {}})
        fake_transport.incoming.put_nowait({"jsonrpc": "2.0", "method": "surprise"})
        fake_transport.push_event("window.focused", None, {"n": 1})

        await eventually(lambda: received)
        assert received == [1]
        assert client.connected

    @pytest.mark.asyncio
    async def test_mistyped_event_fields_skipped(self, client, fake_transport):
        """Events whose fields fail validation are skipped; the session keeps running."""
        received = []

        async def handler(event):
            received.append(event.payload["n"])

        client.subscribe("window.focused", handler)
        for params in (
            {"category": "window.focused", "payload": [1, 2]},
            {"category": "window.focused", "filter": 5, "payload": {"n": 0}},
            {"category": ["window.focused"], "payload": {"n": 0}},
        ):
            fake_transport.incoming.put_nowait({"jsonrpc": "2.0", "method": "event", "params": params})
        fake_transport.push_event("window.focused", None, {"n": 1})

        await eventually(lambda: received)
        assert received == [1]
        assert client.connected
        assert client.close_reason is None
        assert await client.call("pinnacle.version") == "0.1.0"

    @pytest.mark.asyncio
    async def test_blocked_handler_does_not_block_calls(self, client, fake_transport):
        """Calls resolve while a handler is stuck."""
        never = asyncio.Event()

        async def stuck(event):
            await never.wait()

        client.subscribe("window.focused", stuck)
        fake_transport.push_event("window.focused", None, {"window_id": 1})

        assert await asyncio.wait_for(client.call("pinnacle.version"), 1.0) == "0.1.0"


class TestDisconnect:
    """Tests for connection loss."""

    @pytest.mark.asyncio
    async def test_pending_calls_fail_on_disconnect(self, client, fake_transport, compositor):
        """Outstanding calls fail with TransportError when the compositor goes away."""
        compositor.overrides["slow.call"] = lambda params: NO_REPLY
        task = asyncio.create_task(client.call("slow.call"))
        await eventually(lambda: client.correlator.pending_count == 1)

        fake_transport.disconnect()

        with pytest.raises(TransportError) as exc_info:
            await asyncio.wait_for(task, 1.0)
        assert exc_info.value.code == ErrorCode.PEER_CLOSED

        reason = await asyncio.wait_for(client.wait_closed(), 1.0)
        assert exc_info.value.__cause__ is reason
        assert client.closed
        assert not client.connected

    @pytest.mark.asyncio
    async def test_subscriptions_cleared_on_disconnect(self, client, fake_transport):
        """Teardown removes every subscription."""
        client.subscribe("tag.active", lambda event: None)
        client.subscribe("output.connected", lambda event: None)

        fake_transport.disconnect()
        await asyncio.wait_for(client.wait_closed(), 1.0)

        assert client.multiplexer.subscriptions() == []
        assert client.stats.disconnect_reason == "compositor closed the connection"

    @pytest.mark.asyncio
    async def test_calls_after_disconnect(self, client, fake_transport):
        """New calls fail with the disconnect reason and nothing is sent."""
        fake_transport.disconnect()
        await asyncio.wait_for(client.wait_closed(), 1.0)
        sent = len(fake_transport.sent)

        with pytest.raises(TransportError):
            await client.call("pinnacle.version")
        assert len(fake_transport.sent) == sent

    @pytest.mark.asyncio
    async def test_write_failure_closes_client(self, client, fake_transport):
        """A failed write ends the session."""
        fake_transport.fail_sends = True

        with pytest.raises(TransportError) as exc_info:
            await client.call("pinnacle.version")
        assert exc_info.value.code == ErrorCode.WRITE_FAILED

        await asyncio.wait_for(client.wait_closed(), 1.0)
        assert client.close_reason.code == ErrorCode.WRITE_FAILED


class TestClose:
    """Tests for explicit shutdown."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client):
        await client.close()
        await client.close()
        assert client.closed

    @pytest.mark.asyncio
    async def test_handler_may_close_client(self, client, fake_transport):
        """A handler that closes the client does not deadlock teardown."""
        async def handler(event):
            await client.close()

        client.subscribe("pinnacle.reload", handler)
        fake_transport.push_event("pinnacle.reload")

        await asyncio.wait_for(client.wait_closed(), 1.0)
        assert client.closed

    @pytest.mark.asyncio
    async def test_connect_after_close(self, client):
        """A closed client refuses to reconnect instead of silently returning."""
        await client.close()
        with pytest.raises(ClientMisuseError) as exc_info:
            await client.connect()
        assert exc_info.value.code == ErrorCode.CLIENT_CLOSED
        assert not client.connected


class TestOverSocket:
    """End-to-end tests against a real Unix socket."""

    @pytest.mark.asyncio
    async def test_call_and_event(self, socket_compositor):
        """Calls and events share one connection."""
        settings = ClientSettings(socket_path=socket_compositor.socket_path, connect_attempts=1)
        received = []

        async with PinnacleClient(settings) as client:
            async def handler(event):
                received.append(event.payload)

            client.subscribe("tag.active", handler, None)
            assert await client.call("test.echo", {"tag_id": 1}) == {"tag_id": 1}

            await client.call(
                "test.event",
                {"category": "tag.active", "filter": None, "payload": {"tag_id": 1, "active": True}},
            )
            await eventually(lambda: received)

        assert received == [{"tag_id": 1, "active": True}]

    @pytest.mark.asyncio
    async def test_hangup_fails_call(self, socket_compositor):
        """A compositor hanging up mid-call fails that call."""
        settings = ClientSettings(socket_path=socket_compositor.socket_path, connect_attempts=1)

        async with PinnacleClient(settings) as client:
            with pytest.raises(TransportError):
                await asyncio.wait_for(client.call("test.hangup"), 1.0)
            await asyncio.wait_for(client.wait_closed(), 1.0)

    @pytest.mark.asyncio
    async def test_connect_failure(self, tmp_path):
        """No compositor listening is a TransportError from connect."""
        settings = ClientSettings(socket_path=tmp_path / "none.sock", connect_attempts=1)
        client = PinnacleClient(settings)

        with pytest.raises(TransportError):
            await client.connect()
        await client.close()
