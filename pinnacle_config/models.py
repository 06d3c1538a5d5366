"""
Pydantic data models for the Pinnacle configuration client.

Defines the request payloads sent to the compositor, the state snapshots it
returns, and the events it pushes, with validation rules.
"""

import re
from collections.abc import Iterable
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    field_validator,
)


def _reject_non_numeric(value: Any) -> Any:
    """Refuse bools and strings where a number is expected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    return value


Number = Annotated[float, BeforeValidator(_reject_non_numeric)]


# Enumerations

class Mod(str, Enum):
    """Keyboard modifier. Combine with ``|``: ``Mod.ALT | Mod.SHIFT``."""
    SHIFT = "shift"
    CTRL = "ctrl"
    ALT = "alt"
    SUPER = "super"

    def __or__(self, other):
        return frozenset({self}) | _as_mod_set(other)

    def __ror__(self, other):
        return _as_mod_set(other) | frozenset({self})


MOD_ORDER = (Mod.CTRL, Mod.ALT, Mod.SHIFT, Mod.SUPER)

MOD_ALIASES = {
    "shift": Mod.SHIFT,
    "ctrl": Mod.CTRL,
    "control": Mod.CTRL,
    "alt": Mod.ALT,
    "mod1": Mod.ALT,
    "super": Mod.SUPER,
    "mod4": Mod.SUPER,
    "logo": Mod.SUPER,
}


def _as_mod_set(value: Any) -> FrozenSet[Mod]:
    """Normalize a modifier spec (Mod, alias string, ``"ctrl+alt"`` or iterable)."""
    if value is None:
        return frozenset()
    if isinstance(value, Mod):
        return frozenset({value})
    if isinstance(value, str):
        parts = [p for p in value.lower().split("+") if p]
        mods = set()
        for part in parts:
            if part not in MOD_ALIASES:
                raise ValueError(f"Unknown modifier: {part}")
            mods.add(MOD_ALIASES[part])
        return frozenset(mods)
    if isinstance(value, Iterable):
        mods = set()
        for item in value:
            mods |= _as_mod_set(item)
        return frozenset(mods)
    raise ValueError(f"Invalid modifier: {value!r}")


def format_mods(mods: Iterable[Mod]) -> List[str]:
    """Return modifier names in canonical order."""
    present = set(mods)
    return [m.value for m in MOD_ORDER if m in present]


class MouseButton(str, Enum):
    """Pointer buttons that can be bound."""
    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"
    SIDE = "side"
    EXTRA = "extra"
    FORWARD = "forward"
    BACK = "back"


class Edge(str, Enum):
    """Which edge of a key/button press an event reports."""
    PRESS = "press"
    RELEASE = "release"


class BindAction(str, Enum):
    """Compositor-side actions a binding can trigger without a callback."""
    QUIT = "quit"
    RELOAD_CONFIG = "reload_config"


class Vrr(str, Enum):
    """Output variable refresh rate setting."""
    OFF = "off"
    ON = "on"
    ON_DEMAND = "on_demand"


class VrrDemand(str, Enum):
    """When a window asks for VRR on its output."""
    ALWAYS = "always"
    WHEN_FULLSCREEN = "when_fullscreen"


class Transform(str, Enum):
    """Output transform."""
    NORMAL = "normal"
    ROTATE_90 = "90"
    ROTATE_180 = "180"
    ROTATE_270 = "270"
    FLIPPED = "flipped"
    FLIPPED_90 = "flipped_90"
    FLIPPED_180 = "flipped_180"
    FLIPPED_270 = "flipped_270"


class DecorationMode(str, Enum):
    """Window decoration ownership."""
    CLIENT_SIDE = "client_side"
    SERVER_SIDE = "server_side"


class Direction(str, Enum):
    """Cardinal direction used for directional window lookup."""
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


class DeviceType(str, Enum):
    """libinput device capability class."""
    KEYBOARD = "keyboard"
    POINTER = "pointer"
    TOUCHPAD = "touchpad"
    TOUCH = "touch"
    TABLET = "tablet"
    SWITCH = "switch"
    UNKNOWN = "unknown"


class AccelProfile(str, Enum):
    """Pointer acceleration profile."""
    FLAT = "flat"
    ADAPTIVE = "adaptive"


class ClickMethod(str, Enum):
    """Touchpad click method."""
    BUTTON_AREAS = "button_areas"
    CLICKFINGER = "clickfinger"


class ScrollMethod(str, Enum):
    """Scroll method."""
    NO_SCROLL = "no_scroll"
    TWO_FINGER = "two_finger"
    EDGE = "edge"
    ON_BUTTON_DOWN = "on_button_down"


class EventCategory(str, Enum):
    """Categories of events pushed by the compositor."""
    KEYBIND = "input.keybind"
    MOUSEBIND = "input.mousebind"
    DEVICE_ADDED = "input.device_added"
    OUTPUT_CONNECTED = "output.connected"
    OUTPUT_DISCONNECTED = "output.disconnected"
    OUTPUT_RESIZED = "output.resized"
    OUTPUT_POINTER_ENTER = "output.pointer_enter"
    OUTPUT_POINTER_LEAVE = "output.pointer_leave"
    WINDOW_POINTER_ENTER = "window.pointer_enter"
    WINDOW_POINTER_LEAVE = "window.pointer_leave"
    WINDOW_FOCUSED = "window.focused"
    WINDOW_RULE_REQUEST = "window.rule_request"
    TAG_ACTIVE = "tag.active"
    LAYOUT_REQUEST = "layout.request"
    RELOAD = "pinnacle.reload"


SIGNAL_CATEGORIES = frozenset({
    EventCategory.DEVICE_ADDED,
    EventCategory.OUTPUT_CONNECTED,
    EventCategory.OUTPUT_DISCONNECTED,
    EventCategory.OUTPUT_RESIZED,
    EventCategory.OUTPUT_POINTER_ENTER,
    EventCategory.OUTPUT_POINTER_LEAVE,
    EventCategory.WINDOW_POINTER_ENTER,
    EventCategory.WINDOW_POINTER_LEAVE,
    EventCategory.WINDOW_FOCUSED,
    EventCategory.TAG_ACTIVE,
})


# Bindings

KEY_NAME_PATTERN = re.compile(r'^[a-z0-9_]+$')


class KeyCombo(BaseModel):
    """Modifier set plus a key; canonical text form is ``ctrl+shift+space``."""

    model_config = ConfigDict(frozen=True)

    mods: FrozenSet[Mod] = Field(default_factory=frozenset, description="Held modifiers")
    key: str = Field(..., description="Key name or single character")

    @field_validator('mods', mode='before')
    @classmethod
    def validate_mods(cls, v: Any) -> FrozenSet[Mod]:
        return _as_mod_set(v)

    @field_validator('key', mode='before')
    @classmethod
    def validate_key(cls, v: Any) -> str:
        """Validate key syntax.

        Accepts a single printable character ('q', '1') or a keysym name
        ('space', 'Return', 'XF86AudioRaiseVolume'); names are lowercased.
        """
        if not isinstance(v, str):
            raise ValueError(f"Key must be a string, got {type(v).__name__}")
        if len(v) == 1:
            if v.isspace() or v == "+":
                raise ValueError(f"Invalid key: {v!r}")
            return v.lower()
        name = v.lower()
        if not KEY_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid key name: {v}")
        return name

    @classmethod
    def parse(cls, text: str) -> "KeyCombo":
        """Parse ``"Ctrl+Shift+Space"`` style text."""
        if not text or text.endswith("+"):
            raise ValueError(f"Invalid key combination: {text!r}")
        head, _, key = text.rpartition("+")
        return cls(mods=head, key=key)

    def canonical(self) -> str:
        return "+".join(format_mods(self.mods) + [self.key])

    def __str__(self) -> str:
        return self.canonical()


class MouseCombo(BaseModel):
    """Modifier set plus a pointer button; canonical text form is ``alt+left``."""

    model_config = ConfigDict(frozen=True)

    mods: FrozenSet[Mod] = Field(default_factory=frozenset)
    button: MouseButton

    @field_validator('mods', mode='before')
    @classmethod
    def validate_mods(cls, v: Any) -> FrozenSet[Mod]:
        return _as_mod_set(v)

    def canonical(self) -> str:
        return "+".join(format_mods(self.mods) + [self.button.value])

    def __str__(self) -> str:
        return self.canonical()


class BindRequest(BaseModel):
    """Common metadata for key and mouse bindings."""

    model_config = ConfigDict(extra="forbid")

    group: Optional[str] = Field(None, description="Group shown in the bindings overlay")
    description: Optional[str] = Field(None, description="Human-readable description")
    action: Optional[BindAction] = Field(None, description="Compositor-side action")
    allow_when_locked: StrictBool = False


class KeybindRequest(BindRequest):
    """Payload of ``input.keybind``."""

    combo: KeyCombo

    def to_params(self) -> Dict[str, Any]:
        params = self.model_dump(mode="json", exclude={"combo"}, exclude_none=True)
        params.update({
            "mods": format_mods(self.combo.mods),
            "key": self.combo.key,
            "combo": self.combo.canonical(),
        })
        return params


class MousebindRequest(BindRequest):
    """Payload of ``input.mousebind``."""

    combo: MouseCombo

    def to_params(self) -> Dict[str, Any]:
        params = self.model_dump(mode="json", exclude={"combo"}, exclude_none=True)
        params.update({
            "mods": format_mods(self.combo.mods),
            "button": self.combo.button.value,
            "combo": self.combo.canonical(),
        })
        return params


# Outputs

class OutputMode(BaseModel):
    """Output resolution and refresh rate (millihertz)."""

    model_config = ConfigDict(extra="ignore")

    width: StrictInt = Field(..., gt=0)
    height: StrictInt = Field(..., gt=0)
    refresh_rate_mhz: Optional[StrictInt] = Field(None, gt=0, description="Refresh rate in mHz")


class OutputInfo(BaseModel):
    """Snapshot of an output as reported by the compositor."""

    model_config = ConfigDict(extra="ignore")

    name: str
    make: str = ""
    model: str = ""
    serial: str = ""
    enabled: bool = True
    powered: bool = True
    focused: bool = False
    x: int = 0
    y: int = 0
    logical_width: Optional[int] = None
    logical_height: Optional[int] = None
    current_mode: Optional[OutputMode] = None
    modes: List[OutputMode] = Field(default_factory=list)
    scale: float = 1.0
    transform: Transform = Transform.NORMAL
    vrr: Vrr = Vrr.OFF
    tags: List[int] = Field(default_factory=list, description="Tag ids on this output")


# Windows and tags

class WindowInfo(BaseModel):
    """Snapshot of a window."""

    model_config = ConfigDict(extra="ignore")

    id: int
    app_id: str = ""
    title: str = ""
    tags: List[int] = Field(default_factory=list)
    output: Optional[str] = None
    floating: bool = False
    fullscreen: bool = False
    maximized: bool = False
    focused: bool = False
    x: Optional[int] = None
    y: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class TagInfo(BaseModel):
    """Snapshot of a tag."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    output: str
    active: bool = False


# Input devices

class DeviceInfo(BaseModel):
    """Snapshot of an input device."""

    model_config = ConfigDict(extra="ignore")

    sysname: str
    name: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None

    def is_touchpad(self) -> bool:
        return self.device_type == DeviceType.TOUCHPAD


class LibinputSettings(BaseModel):
    """Per-device libinput settings; unset fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    accel_profile: Optional[AccelProfile] = None
    accel_speed: Optional[Number] = Field(None, ge=-1.0, le=1.0)
    natural_scroll: Optional[StrictBool] = None
    click_method: Optional[ClickMethod] = None
    scroll_method: Optional[ScrollMethod] = None
    tap: Optional[StrictBool] = None
    left_handed: Optional[StrictBool] = None
    disable_while_typing: Optional[StrictBool] = None

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class XkbConfig(BaseModel):
    """Keyboard layout settings."""

    model_config = ConfigDict(extra="forbid")

    rules: Optional[str] = None
    model: Optional[str] = None
    layout: Optional[str] = None
    variant: Optional[str] = None
    options: Optional[str] = None


class RepeatRate(BaseModel):
    """Key repeat rate (per second) and delay (ms)."""

    model_config = ConfigDict(extra="forbid")

    rate: StrictInt = Field(..., gt=0)
    delay: StrictInt = Field(..., gt=0)


# Processes

class SpawnRequest(BaseModel):
    """Payload of ``process.spawn``."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(..., min_length=1)
    args: List[str] = Field(default_factory=list)
    envs: Dict[str, str] = Field(default_factory=dict)
    once: StrictBool = Field(False, description="Do not spawn if already running")
    unique: StrictBool = Field(False, description="Do not spawn if spawned by this config")

    @field_validator('command')
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Command cannot be empty")
        return v.strip()


# Events

class Event(BaseModel):
    """A server-pushed event; not retained after dispatch."""

    category: str
    filter: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "Event":
        return cls(
            category=params["category"],
            filter=params.get("filter"),
            payload=params.get("payload") or {},
        )


ModSpec = Union[Mod, str, Iterable[Mod], None]
