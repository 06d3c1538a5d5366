"""
Tests for the event subscription multiplexer.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import pytest_asyncio

from conftest import eventually
from pinnacle_config.models import Event
from pinnacle_config.multiplexer import EventMultiplexer, is_async_handler
from pinnacle_config.state import ClientStats


@pytest_asyncio.fixture
async def multiplexer():
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test-handler")
    mux = EventMultiplexer(executor=executor, queue_size=8, stats=ClientStats())
    yield mux
    await mux.close()
    executor.shutdown(wait=True)


def keybind(combo, edge="press"):
    return Event(category="input.keybind", filter=combo, payload={"edge": edge})


class TestRouting:
    """Tests for category and filter routing."""

    @pytest.mark.asyncio
    async def test_registration_order(self, multiplexer):
        """Handlers for one event start in registration order."""
        calls = []

        def recorder(name):
            async def handler(event):
                calls.append(name)
            return handler

        for name in ("a", "b", "c"):
            multiplexer.subscribe("tag.active", recorder(name))

        assert multiplexer.dispatch(Event(category="tag.active", payload={"tag_id": 1})) == 3
        await eventually(lambda: len(calls) == 3)
        assert calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_events_in_arrival_order(self, multiplexer):
        """One subscription sees events in the order they were dispatched."""
        received = []

        async def handler(event):
            await asyncio.sleep(0)
            received.append(event.payload["n"])

        multiplexer.subscribe("window.focused", handler)
        for n in range(5):
            multiplexer.dispatch(Event(category="window.focused", payload={"n": n}))

        await eventually(lambda: len(received) == 5)
        assert received == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_filter_distinguishes_combos(self, multiplexer):
        """A ctrl+space binding is not invoked for ctrl+shift+space."""
        plain, shifted = [], []

        async def on_plain(event):
            plain.append(event.filter)

        async def on_shifted(event):
            shifted.append(event.filter)

        multiplexer.subscribe("input.keybind", on_plain, "ctrl+space")
        multiplexer.subscribe("input.keybind", on_shifted, "ctrl+shift+space")

        assert multiplexer.dispatch(keybind("ctrl+shift+space")) == 1
        await eventually(lambda: shifted)
        await asyncio.sleep(0.02)

        assert plain == []
        assert shifted == ["ctrl+shift+space"]

    @pytest.mark.asyncio
    async def test_unfiltered_subscription_sees_all(self, multiplexer):
        """A subscription without a filter receives every event of its category."""
        seen = []

        async def handler(event):
            seen.append(event.filter)

        multiplexer.subscribe("input.keybind", handler)
        multiplexer.dispatch(keybind("super+q"))
        multiplexer.dispatch(keybind("alt+tab"))

        await eventually(lambda: len(seen) == 2)
        assert seen == ["super+q", "alt+tab"]

    @pytest.mark.asyncio
    async def test_unrouted_event(self, multiplexer):
        """Events nobody subscribed to are counted and dropped."""
        assert multiplexer.dispatch(Event(category="output.connected")) == 0
        assert multiplexer.stats.telemetry["events_unrouted"] == 1

    @pytest.mark.asyncio
    async def test_enum_category(self, multiplexer):
        """Categories may be given as EventCategory members."""
        from pinnacle_config.models import EventCategory

        seen = []

        async def handler(event):
            seen.append(event.category)

        subscription = multiplexer.subscribe(EventCategory.TAG_ACTIVE, handler)
        assert subscription.category == "tag.active"

        multiplexer.dispatch(Event(category="tag.active"))
        await eventually(lambda: seen)


class TestUnsubscribe:
    """Tests for removing subscriptions."""

    @pytest.mark.asyncio
    async def test_no_delivery_after_unsubscribe(self, multiplexer):
        """Events dispatched after unsubscribe never reach the handler."""
        seen = []

        async def handler(event):
            seen.append(event)

        subscription = multiplexer.subscribe("tag.active", handler)
        assert multiplexer.unsubscribe(subscription) is True

        assert multiplexer.dispatch(Event(category="tag.active")) == 0
        await asyncio.sleep(0.02)
        assert seen == []
        assert multiplexer.subscriptions("tag.active") == []

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, multiplexer):
        """A second unsubscribe is a no-op."""
        subscription = multiplexer.subscribe("tag.active", lambda event: None)
        assert multiplexer.unsubscribe(subscription) is True
        assert multiplexer.unsubscribe(subscription) is False

    @pytest.mark.asyncio
    async def test_queued_events_discarded(self, multiplexer):
        """Events queued behind a running handler are dropped on unsubscribe."""
        release = asyncio.Event()
        seen = []

        async def handler(event):
            seen.append(event.payload["n"])
            await release.wait()

        subscription = multiplexer.subscribe("window.focused", handler)
        for n in range(3):
            multiplexer.dispatch(Event(category="window.focused", payload={"n": n}))
        await eventually(lambda: seen)

        multiplexer.unsubscribe(subscription)
        release.set()
        await asyncio.sleep(0.02)

        # The running invocation completes; the rest never start
        assert seen == [0]


class TestIsolation:
    """Tests for handler isolation."""

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self, multiplexer):
        """A raising handler is logged and counted; others still run."""
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            seen.append(event.payload["n"])

        multiplexer.subscribe("tag.active", broken)
        multiplexer.subscribe("tag.active", healthy)

        multiplexer.dispatch(Event(category="tag.active", payload={"n": 1}))
        multiplexer.dispatch(Event(category="tag.active", payload={"n": 2}))

        await eventually(lambda: len(seen) == 2)
        await eventually(lambda: multiplexer.stats.telemetry["handler_errors"] == 2)

    @pytest.mark.asyncio
    async def test_slow_handler_does_not_block_others(self, multiplexer):
        """A handler waiting forever does not delay other subscriptions."""
        never = asyncio.Event()
        seen = []

        async def stuck(event):
            await never.wait()

        async def fast(event):
            seen.append(event.payload["n"])

        multiplexer.subscribe("window.focused", stuck)
        multiplexer.subscribe("window.focused", fast)

        for n in range(3):
            multiplexer.dispatch(Event(category="window.focused", payload={"n": n}))

        await eventually(lambda: seen == [0, 1, 2])

    @pytest.mark.asyncio
    async def test_sync_handler_runs_off_loop_thread(self, multiplexer):
        """Plain callables run on the handler pool."""
        threads = []

        def handler(event):
            threads.append(threading.current_thread().name)

        multiplexer.subscribe("tag.active", handler)
        multiplexer.dispatch(Event(category="tag.active"))

        await eventually(lambda: threads)
        assert threads[0].startswith("test-handler")

    @pytest.mark.asyncio
    async def test_queue_overflow_drops_events(self):
        """A full handler queue drops the event for that subscription only."""
        mux = EventMultiplexer(queue_size=1, stats=ClientStats())
        started = asyncio.Event()
        release = asyncio.Event()
        seen = []

        async def handler(event):
            seen.append(event.payload["n"])
            started.set()
            await release.wait()

        mux.subscribe("window.focused", handler)
        mux.dispatch(Event(category="window.focused", payload={"n": 1}))
        await asyncio.wait_for(started.wait(), 1.0)

        assert mux.dispatch(Event(category="window.focused", payload={"n": 2})) == 1
        assert mux.dispatch(Event(category="window.focused", payload={"n": 3})) == 0
        assert mux.stats.telemetry["events_dropped"] == 1

        release.set()
        await eventually(lambda: seen == [1, 2])
        await mux.close()


class TestClose:
    """Tests for multiplexer shutdown."""

    @pytest.mark.asyncio
    async def test_close_removes_subscriptions(self, multiplexer):
        """After close no subscription remains and dispatch is a no-op."""
        seen = []

        async def handler(event):
            seen.append(event)

        multiplexer.subscribe("tag.active", handler)
        multiplexer.subscribe("output.connected", handler)
        await multiplexer.close()

        assert multiplexer.subscriptions() == []
        assert multiplexer.dispatch(Event(category="tag.active")) == 0
        assert seen == []

    @pytest.mark.asyncio
    async def test_subscribe_after_close_raises(self, multiplexer):
        """A closed multiplexer refuses new subscriptions."""
        await multiplexer.close()
        with pytest.raises(RuntimeError):
            multiplexer.subscribe("tag.active", lambda event: None)


class TestHandlerKinds:
    """Tests for async handler detection."""

    def test_coroutine_function(self):
        async def handler(event):
            pass

        assert is_async_handler(handler)

    def test_plain_function(self):
        assert not is_async_handler(lambda event: None)

    def test_async_callable_object(self):
        class Handler:
            async def __call__(self, event):
                pass

        assert is_async_handler(Handler())
