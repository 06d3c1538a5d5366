"""
Typed API over the compositor protocol.

Usage:
    async with PinnacleClient() as client:
        pinnacle = Pinnacle(client)
        await pinnacle.input.keybind(Mod.SUPER, "q", action=BindAction.RELOAD_CONFIG)
"""

from ..client import PinnacleClient
from .base import SignalHandle
from .compositor import CompositorApi
from .handles import DeviceHandle, OutputHandle, TagHandle, WindowHandle
from .input import Binding, InputApi
from .layout import (
    Cycle,
    Dwindle,
    FlexDir,
    Gaps,
    LayoutApi,
    LayoutArgs,
    LayoutNode,
    LayoutRequester,
    LayoutResponse,
    MasterStack,
    NodeStyle,
)
from .output import OutputApi
from .process import ProcessApi
from .rules import WindowCriteria, WindowRule, WindowRuleActions, WindowRuleEngine
from .tag import TagApi
from .window import WindowApi


class Pinnacle:
    """All API sections over one client."""

    def __init__(self, client: PinnacleClient):
        self.client = client
        self.input = InputApi(client)
        self.output = OutputApi(client)
        self.tag = TagApi(client)
        self.window = WindowApi(client, resolve_tag=self.tag.get)
        self.layout = LayoutApi(client)
        self.process = ProcessApi(client)
        self.compositor = CompositorApi(client)


__all__ = [
    "Binding",
    "CompositorApi",
    "Cycle",
    "DeviceHandle",
    "Dwindle",
    "FlexDir",
    "Gaps",
    "InputApi",
    "LayoutApi",
    "LayoutArgs",
    "LayoutNode",
    "LayoutRequester",
    "LayoutResponse",
    "MasterStack",
    "NodeStyle",
    "OutputApi",
    "OutputHandle",
    "Pinnacle",
    "ProcessApi",
    "SignalHandle",
    "TagApi",
    "TagHandle",
    "WindowApi",
    "WindowCriteria",
    "WindowHandle",
    "WindowRule",
    "WindowRuleActions",
    "WindowRuleEngine",
]
