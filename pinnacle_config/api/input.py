"""Keybindings, mousebindings, keyboard settings and input devices."""

import logging
from typing import Any, Callable, List, Optional, Tuple

from ..models import (
    BindAction,
    DeviceInfo,
    Edge,
    Event,
    EventCategory,
    KeybindRequest,
    ModSpec,
    MouseButton,
    MousebindRequest,
    RepeatRate,
    XkbConfig,
)
from ..multiplexer import Subscription
from .base import (
    ApiSection,
    SignalHandle,
    adapt_handler,
    invoke,
    require_callable,
    validate_model,
)
from .handles import DeviceHandle

logger = logging.getLogger(__name__)


class Binding:
    """A registered key or mouse binding."""

    def __init__(
        self,
        section: "InputApi",
        kind: str,
        combo: str,
        subscriptions: List[Subscription],
        group: Optional[str] = None,
        description: Optional[str] = None,
    ):
        self._section = section
        self.kind = kind
        self.combo = combo
        self.group = group
        self.description = description
        self._subscriptions = subscriptions
        self._removed = False

    @property
    def active(self) -> bool:
        return not self._removed

    async def remove(self) -> None:
        """Unregister the binding. Idempotent."""
        if self._removed:
            return
        self._removed = True
        for subscription in self._subscriptions:
            self._section.client.unsubscribe(subscription)
        if not self._section.client.closed:
            await self._section.call("input.unbind", {"kind": self.kind, "combo": self.combo})
        logger.debug(f"Removed {self.kind} binding {self.combo}")

    def __repr__(self) -> str:
        return f"Binding({self.kind}, {self.combo!r}, active={self.active})"


def _edge_is(edge: Edge) -> Callable[[Event], bool]:
    def accept(event: Event) -> bool:
        return event.payload.get("edge", Edge.PRESS.value) == edge.value
    return accept


def _no_args(event: Event) -> Tuple[Any, ...]:
    return ()


class InputApi(ApiSection):
    """Input configuration.

    Example:
        await pinnacle.input.keybind(Mod.SUPER, "t", on_press=toggle_floating,
                                     group="Window", description="Toggle floating")
    """

    signals = (EventCategory.DEVICE_ADDED.value,)

    async def keybind(
        self,
        mods: ModSpec,
        key: str,
        on_press: Optional[Callable[[], Any]] = None,
        on_release: Optional[Callable[[], Any]] = None,
        *,
        group: Optional[str] = None,
        description: Optional[str] = None,
        action: Optional[BindAction] = None,
        allow_when_locked: bool = False,
    ) -> Binding:
        """Bind a key combination.

        Args:
            mods: Modifiers (Mod, Mod.ALT | Mod.SHIFT, "ctrl+shift" or a list)
            key: Key name ("space", "Return") or single character ("q")
            on_press: Callback run when the combination is pressed
            on_release: Callback run when it is released
            group: Group shown in the bindings overlay
            description: Description shown in the bindings overlay
            action: Compositor-side action (BindAction.QUIT, BindAction.RELOAD_CONFIG)
            allow_when_locked: Also trigger while the session is locked

        Raises:
            ClientMisuseError: If the combination or a callback is invalid
        """
        request = validate_model(
            "input.keybind", KeybindRequest,
            combo={"mods": mods, "key": key},
            group=group, description=description, action=action,
            allow_when_locked=allow_when_locked,
        )
        return await self._bind(
            "key", EventCategory.KEYBIND.value, request.combo.canonical(),
            request.to_params(), on_press, on_release, group, description,
        )

    async def mousebind(
        self,
        mods: ModSpec,
        button: MouseButton,
        on_press: Optional[Callable[[], Any]] = None,
        on_release: Optional[Callable[[], Any]] = None,
        *,
        group: Optional[str] = None,
        description: Optional[str] = None,
        action: Optional[BindAction] = None,
        allow_when_locked: bool = False,
    ) -> Binding:
        """Bind a modifier + pointer button combination."""
        request = validate_model(
            "input.mousebind", MousebindRequest,
            combo={"mods": mods, "button": button},
            group=group, description=description, action=action,
            allow_when_locked=allow_when_locked,
        )
        return await self._bind(
            "mouse", EventCategory.MOUSEBIND.value, request.combo.canonical(),
            request.to_params(), on_press, on_release, group, description,
        )

    async def _bind(
        self,
        kind: str,
        category: str,
        combo: str,
        params: dict,
        on_press: Optional[Callable],
        on_release: Optional[Callable],
        group: Optional[str],
        description: Optional[str],
    ) -> Binding:
        operation = f"input.{kind}bind"
        require_callable(operation, "on_press", on_press)
        require_callable(operation, "on_release", on_release)

        subscriptions: List[Subscription] = []
        for edge, callback in ((Edge.PRESS, on_press), (Edge.RELEASE, on_release)):
            if callback is None:
                continue
            handler = adapt_handler(self.client, callback, _no_args, accept=_edge_is(edge))
            subscriptions.append(self.client.subscribe(category, handler, combo))

        params = {
            **params,
            "on_press": on_press is not None,
            "on_release": on_release is not None,
            "subscription_ids": [s.id for s in subscriptions],
        }
        try:
            await self.call(operation, params)
        except BaseException:
            for subscription in subscriptions:
                self.client.unsubscribe(subscription)
            raise

        logger.debug(f"Bound {kind} {combo} ({description or 'no description'})")
        return Binding(self, kind, combo, subscriptions, group, description)

    async def set_xkb_config(self, **fields: Optional[str]) -> None:
        """Set keyboard layout fields (rules, model, layout, variant, options)."""
        config = validate_model("input.set_xkb_config", XkbConfig, **fields)
        await self.call("input.set_xkb_config", config.model_dump(exclude_none=True))

    async def set_repeat_rate(self, rate: int, delay: int) -> None:
        """Set key repeat rate (repeats per second) and delay (ms)."""
        repeat = validate_model("input.set_repeat_rate", RepeatRate, rate=rate, delay=delay)
        await self.call("input.set_repeat_rate", repeat.model_dump())

    async def get_device_infos(self) -> List[DeviceInfo]:
        return [DeviceInfo.model_validate(item) for item in await self.call("input.get_devices") or []]

    async def get_devices(self) -> List[DeviceHandle]:
        return [DeviceHandle(self.client, info.sysname, info) for info in await self.get_device_infos()]

    async def for_each_device(self, fn: Callable[[DeviceHandle], Any]) -> SignalHandle:
        """Run fn for every current device and every device added later."""
        require_callable("input.for_each_device", "fn", fn)
        handle = await self.connect_signal(EventCategory.DEVICE_ADDED, fn)
        for device in await self.get_devices():
            await invoke(self.client, fn, device)
        return handle

    def convert_signal(self, category: str, event: Event) -> Tuple[Any, ...]:
        info = DeviceInfo.model_validate(event.payload.get("device", event.payload))
        return (DeviceHandle(self.client, info.sysname, info),)
