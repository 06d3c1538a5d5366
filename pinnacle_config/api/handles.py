"""Handles to compositor objects.

A handle is a cheap reference (output name, window id, tag id, device
sysname) plus the client used to act on it. Handles never cache state;
info() queries the compositor each time.
"""

from typing import Any, Dict, List, Optional

from pydantic import StrictBool, StrictInt

from ..client import PinnacleClient
from ..models import (
    AccelProfile,
    ClickMethod,
    DecorationMode,
    DeviceInfo,
    DeviceType,
    Direction,
    LibinputSettings,
    Number,
    OutputInfo,
    OutputMode,
    ScrollMethod,
    TagInfo,
    Transform,
    Vrr,
    VrrDemand,
    WindowInfo,
)
from .base import invalid_argument, validate_model, validate_value


class Handle:
    """Common identity semantics for handles."""

    key_name = "id"

    def __init__(self, client: PinnacleClient, key: Any):
        self.client = client
        self._key = key

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other._key == self._key

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._key))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key_name}={self._key!r})"

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.client.call(method, {self.key_name: self._key, **(params or {})})


# Outputs

class OutputHandle(Handle):
    """A connected output, identified by connector name (e.g. "DP-1")."""

    key_name = "output"

    @property
    def name(self) -> str:
        return self._key

    async def info(self) -> Optional[OutputInfo]:
        """Current output state, or None if the output is gone."""
        for item in await self.client.call("output.get_outputs"):
            output = OutputInfo.model_validate(item)
            if output.name == self.name:
                return output
        return None

    async def set_mode(self, width: int, height: int, refresh_rate_mhz: Optional[int] = None) -> None:
        """Set resolution and refresh rate (millihertz, e.g. 120000)."""
        mode = validate_model(
            "output.set_mode", OutputMode,
            width=width, height=height, refresh_rate_mhz=refresh_rate_mhz,
        )
        await self._call("output.set_mode", mode.model_dump(exclude_none=True))

    async def set_scale(self, scale: float) -> None:
        scale = validate_value("output.set_scale", "scale", Number, scale)
        if scale <= 0:
            raise invalid_argument("output.set_scale", "scale", scale, "must be positive")
        await self._call("output.set_scale", {"scale": scale})

    async def set_vrr(self, vrr: Vrr) -> None:
        vrr = validate_value("output.set_vrr", "vrr", Vrr, vrr)
        await self._call("output.set_vrr", {"vrr": vrr.value})

    async def set_transform(self, transform: Transform) -> None:
        transform = validate_value("output.set_transform", "transform", Transform, transform)
        await self._call("output.set_transform", {"transform": transform.value})

    async def set_location(self, x: int, y: int) -> None:
        x = validate_value("output.set_location", "x", StrictInt, x)
        y = validate_value("output.set_location", "y", StrictInt, y)
        await self._call("output.set_location", {"x": x, "y": y})

    async def set_powered(self, powered: bool) -> None:
        powered = validate_value("output.set_powered", "powered", StrictBool, powered)
        await self._call("output.set_powered", {"powered": powered})

    async def focus(self) -> None:
        await self._call("output.focus")

    async def tags(self) -> List["TagHandle"]:
        """Tags on this output, in creation order."""
        return [
            TagHandle(self.client, tag.id)
            for tag in await _tag_infos(self.client)
            if tag.output == self.name
        ]

    async def active_tags(self) -> List["TagHandle"]:
        return [
            TagHandle(self.client, tag.id)
            for tag in await _tag_infos(self.client)
            if tag.output == self.name and tag.active
        ]


# Tags

class TagHandle(Handle):
    """A tag, identified by its compositor-assigned id."""

    key_name = "tag_id"

    @property
    def id(self) -> int:
        return self._key

    async def info(self) -> Optional[TagInfo]:
        for tag in await _tag_infos(self.client):
            if tag.id == self.id:
                return tag
        return None

    async def name(self) -> Optional[str]:
        info = await self.info()
        return info.name if info else None

    async def output(self) -> Optional[OutputHandle]:
        info = await self.info()
        return OutputHandle(self.client, info.output) if info else None

    async def active(self) -> bool:
        info = await self.info()
        return bool(info and info.active)

    async def switch_to(self) -> None:
        """Activate this tag and deactivate every other tag on its output."""
        await self._call("tag.switch_to")

    async def set_active(self, active: bool) -> None:
        active = validate_value("tag.set_active", "active", StrictBool, active)
        await self._call("tag.set_active", {"active": active})

    async def toggle_active(self) -> None:
        await self._call("tag.set_active", {"toggle": True})

    async def windows(self) -> List["WindowHandle"]:
        """Windows carrying this tag."""
        return [
            WindowHandle(self.client, window.id)
            for window in await _window_infos(self.client)
            if self.id in window.tags
        ]

    async def remove(self) -> None:
        await self.client.call("tag.remove", {"tag_ids": [self.id]})


# Windows

class WindowHandle(Handle):
    """A toplevel window, identified by its compositor-assigned id."""

    key_name = "window_id"

    @property
    def id(self) -> int:
        return self._key

    async def info(self) -> Optional[WindowInfo]:
        """Current window state, or None if the window is gone."""
        for window in await _window_infos(self.client):
            if window.id == self.id:
                return window
        return None

    async def app_id(self) -> str:
        info = await self.info()
        return info.app_id if info else ""

    async def title(self) -> str:
        info = await self.info()
        return info.title if info else ""

    async def floating(self) -> bool:
        info = await self.info()
        return bool(info and info.floating)

    async def fullscreen(self) -> bool:
        info = await self.info()
        return bool(info and info.fullscreen)

    async def maximized(self) -> bool:
        info = await self.info()
        return bool(info and info.maximized)

    async def focused(self) -> bool:
        info = await self.info()
        return bool(info and info.focused)

    async def tags(self) -> List[TagHandle]:
        info = await self.info()
        return [TagHandle(self.client, tag_id) for tag_id in info.tags] if info else []

    async def close(self) -> None:
        await self._call("window.close")

    async def set_floating(self, floating: bool) -> None:
        await self._set_flag("window.set_floating", "floating", floating)

    async def toggle_floating(self) -> None:
        await self._call("window.toggle_floating")

    async def set_fullscreen(self, fullscreen: bool) -> None:
        await self._set_flag("window.set_fullscreen", "fullscreen", fullscreen)

    async def toggle_fullscreen(self) -> None:
        await self._call("window.toggle_fullscreen")

    async def set_maximized(self, maximized: bool) -> None:
        await self._set_flag("window.set_maximized", "maximized", maximized)

    async def toggle_maximized(self) -> None:
        await self._call("window.toggle_maximized")

    async def raise_(self) -> None:
        """Raise the window to the top of the stack."""
        await self._call("window.raise")

    async def lower(self) -> None:
        await self._call("window.lower")

    async def set_focused(self, focused: bool = True) -> None:
        await self._set_flag("window.set_focused", "focused", focused)

    async def move_to_tag(self, tag: TagHandle) -> None:
        """Replace the window's tags with this single tag."""
        await self._call("window.move_to_tag", {"tag_id": _tag_id("window.move_to_tag", tag)})

    async def set_tags(self, tags: Any) -> None:
        """Replace the window's tags; accepts a TagHandle, a list of them, or None for no change."""
        if tags is None:
            return
        if isinstance(tags, TagHandle):
            tags = [tags]
        tag_ids = [_tag_id("window.set_tags", tag) for tag in tags]
        if not tag_ids:
            return
        await self._call("window.set_tags", {"tag_ids": tag_ids})

    async def toggle_tag(self, tag: TagHandle) -> None:
        await self._call("window.toggle_tag", {"tag_id": _tag_id("window.toggle_tag", tag)})

    async def set_decoration_mode(self, mode: DecorationMode) -> None:
        mode = validate_value("window.set_decoration_mode", "mode", DecorationMode, mode)
        await self._call("window.set_decoration_mode", {"mode": mode.value})

    async def set_vrr_demand(self, demand: Optional[VrrDemand]) -> None:
        """Request VRR for this window; None withdraws the request."""
        demand = validate_value("window.set_vrr_demand", "demand", Optional[VrrDemand], demand)
        await self._call("window.set_vrr_demand", {"demand": demand.value if demand else None})

    async def swap(self, other: "WindowHandle") -> None:
        """Swap this window's position in the layout with another window."""
        if not isinstance(other, WindowHandle):
            raise invalid_argument("window.swap", "other", other, "expected a WindowHandle")
        await self._call("window.swap", {"target_id": other.id})

    async def resize_tile(self, left: int = 0, right: int = 0, top: int = 0, bottom: int = 0) -> None:
        """Grow (positive) or shrink (negative) each edge of a tiled window, in pixels."""
        edges = {
            name: validate_value("window.resize_tile", name, StrictInt, value)
            for name, value in (("left", left), ("right", right), ("top", top), ("bottom", bottom))
        }
        await self._call("window.resize_tile", edges)

    async def in_direction(self, direction: Direction) -> List["WindowHandle"]:
        """Windows in a direction from this one, nearest first."""
        direction = validate_value("window.in_direction", "direction", Direction, direction)
        window_ids = await self._call("window.in_direction", {"direction": direction.value})
        return [WindowHandle(self.client, window_id) for window_id in window_ids or []]

    async def _set_flag(self, method: str, field: str, value: Any) -> None:
        value = validate_value(method, field, StrictBool, value)
        await self._call(method, {field: value})


# Input devices

class DeviceHandle(Handle):
    """A libinput device, identified by sysname (e.g. "event5")."""

    key_name = "device"

    def __init__(self, client: PinnacleClient, sysname: str, info: Optional[DeviceInfo] = None):
        super().__init__(client, sysname)
        self._info = info

    @property
    def sysname(self) -> str:
        return self._key

    @property
    def name(self) -> str:
        return self._info.name if self._info else ""

    @property
    def device_type(self) -> DeviceType:
        return self._info.device_type if self._info else DeviceType.UNKNOWN

    def is_touchpad(self) -> bool:
        return self.device_type == DeviceType.TOUCHPAD

    async def apply(self, settings: Optional[LibinputSettings] = None, **fields: Any) -> None:
        """Apply libinput settings; unset fields keep their current value.

        Example:
            await device.apply(natural_scroll=True, click_method=ClickMethod.CLICKFINGER)
        """
        if settings is None:
            settings = validate_model("input.set_libinput_setting", LibinputSettings, **fields)
        elif fields:
            settings = validate_model(
                "input.set_libinput_setting", LibinputSettings,
                **{**settings.model_dump(exclude_none=True), **fields},
            )
        params = settings.to_params()
        if not params:
            return
        await self._call("input.set_libinput_setting", {"settings": params})

    async def set_accel_profile(self, profile: AccelProfile) -> None:
        await self.apply(accel_profile=profile)

    async def set_accel_speed(self, speed: float) -> None:
        await self.apply(accel_speed=speed)

    async def set_natural_scroll(self, enabled: bool) -> None:
        await self.apply(natural_scroll=enabled)

    async def set_click_method(self, method: ClickMethod) -> None:
        await self.apply(click_method=method)

    async def set_scroll_method(self, method: ScrollMethod) -> None:
        await self.apply(scroll_method=method)

    async def set_tap(self, enabled: bool) -> None:
        await self.apply(tap=enabled)

    async def set_left_handed(self, enabled: bool) -> None:
        await self.apply(left_handed=enabled)

    async def set_disable_while_typing(self, enabled: bool) -> None:
        await self.apply(disable_while_typing=enabled)


def _tag_id(operation: str, tag: Any) -> int:
    if not isinstance(tag, TagHandle):
        raise invalid_argument(operation, "tag", tag, "expected a TagHandle")
    return tag.id


async def _tag_infos(client: PinnacleClient) -> List[TagInfo]:
    return [TagInfo.model_validate(item) for item in await client.call("tag.get_tags") or []]


async def _window_infos(client: PinnacleClient) -> List[WindowInfo]:
    return [WindowInfo.model_validate(item) for item in await client.call("window.get_windows") or []]
