"""Windows, window rules and interactive move/resize."""

import logging
from typing import Any, Callable, List, Optional, Tuple

from ..models import Event, EventCategory, MouseButton, WindowInfo
from .base import ApiSection, SignalHandle, invoke, require_callable, validate_value
from .handles import WindowHandle
from .rules import WindowRule, WindowRuleEngine

logger = logging.getLogger(__name__)


class WindowApi(ApiSection):
    """Window queries, rules and signals."""

    signals = (
        EventCategory.WINDOW_POINTER_ENTER.value,
        EventCategory.WINDOW_POINTER_LEAVE.value,
        EventCategory.WINDOW_FOCUSED.value,
    )

    def __init__(self, client, resolve_tag: Optional[Callable] = None):
        super().__init__(client)
        self.rule_engine = WindowRuleEngine(resolve_tag)
        self._rule_handle: Optional[SignalHandle] = None

    async def get_infos(self) -> List[WindowInfo]:
        return [WindowInfo.model_validate(item) for item in await self.call("window.get_windows") or []]

    async def get_all(self) -> List[WindowHandle]:
        return [WindowHandle(self.client, info.id) for info in await self.get_infos()]

    async def get_focused(self) -> Optional[WindowHandle]:
        for info in await self.get_infos():
            if info.focused:
                return WindowHandle(self.client, info.id)
        return None

    async def begin_move(self, button: MouseButton) -> None:
        """Start an interactive move of the window under the pointer."""
        button = validate_value("window.begin_move", "button", MouseButton, button)
        await self.call("window.begin_move", {"button": button.value})

    async def begin_resize(self, button: MouseButton) -> None:
        """Start an interactive resize of the window under the pointer."""
        button = validate_value("window.begin_resize", "button", MouseButton, button)
        await self.call("window.begin_resize", {"button": button.value})

    async def add_window_rule(self, fn: Callable[[WindowHandle], Any]) -> SignalHandle:
        """Run fn for every new window before it is first shown.

        The compositor holds the window until fn returns (or raises).
        """
        require_callable("window.add_window_rule", "fn", fn)
        client = self.client

        async def handler(event: Event) -> None:
            window = WindowHandle(client, event.payload["window_id"])
            try:
                await invoke(client, fn, window)
            finally:
                if not client.closed:
                    await client.call(
                        "window.rule_done",
                        {"window_id": window.id, "request_id": event.payload.get("request_id")},
                    )

        category = EventCategory.WINDOW_RULE_REQUEST.value
        subscription = await self.subscribe_acked(
            category, handler, None, "signal.connect", {"category": category}
        )
        return SignalHandle(self, category, subscription)

    async def add_rule(self, rule: WindowRule) -> WindowRule:
        """Add a declarative rule, applied to every new window."""
        if not isinstance(rule, WindowRule):
            rule = WindowRule.model_validate(rule)
        self.rule_engine.add_rule(rule)
        if self._rule_handle is None or not self._rule_handle.connected:
            self._rule_handle = await self.add_window_rule(self._apply_declarative_rules)
        return rule

    async def remove_rule(self, rule_id: str) -> bool:
        return self.rule_engine.remove_rule(rule_id)

    async def _apply_declarative_rules(self, window: WindowHandle) -> None:
        info = await window.info()
        if info is None:
            return
        await self.rule_engine.apply_rules_to_window(window, info.app_id, info.title)

    def convert_signal(self, category: str, event: Event) -> Tuple[Any, ...]:
        return (WindowHandle(self.client, event.payload["window_id"]),)

