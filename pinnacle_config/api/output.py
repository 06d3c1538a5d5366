"""Outputs (monitors)."""

from typing import Any, Callable, List, Optional, Tuple

from ..models import Event, EventCategory, OutputInfo
from .base import ApiSection, SignalHandle, invoke, require_callable
from .handles import OutputHandle


class OutputApi(ApiSection):
    """Output queries and signals.

    Example:
        async def setup(output):
            await output.set_mode(3840, 2160, 120000)
            await output.set_scale(2.0)

        await pinnacle.output.for_each_output(setup)
    """

    signals = (
        EventCategory.OUTPUT_CONNECTED.value,
        EventCategory.OUTPUT_DISCONNECTED.value,
        EventCategory.OUTPUT_RESIZED.value,
        EventCategory.OUTPUT_POINTER_ENTER.value,
        EventCategory.OUTPUT_POINTER_LEAVE.value,
    )

    async def get_infos(self) -> List[OutputInfo]:
        return [OutputInfo.model_validate(item) for item in await self.call("output.get_outputs") or []]

    async def get_all(self) -> List[OutputHandle]:
        return [OutputHandle(self.client, info.name) for info in await self.get_infos()]

    async def get_focused(self) -> Optional[OutputHandle]:
        for info in await self.get_infos():
            if info.focused:
                return OutputHandle(self.client, info.name)
        return None

    async def get_by_name(self, name: str) -> Optional[OutputHandle]:
        for info in await self.get_infos():
            if info.name == name:
                return OutputHandle(self.client, info.name)
        return None

    async def for_each_output(self, fn: Callable[[OutputHandle], Any]) -> SignalHandle:
        """Run fn for every connected output and every output connected later."""
        require_callable("output.for_each_output", "fn", fn)
        handle = await self.connect_signal(EventCategory.OUTPUT_CONNECTED, fn)
        for output in await self.get_all():
            await invoke(self.client, fn, output)
        return handle

    def convert_signal(self, category: str, event: Event) -> Tuple[Any, ...]:
        output = OutputHandle(self.client, event.payload["output"])
        if category == EventCategory.OUTPUT_RESIZED.value:
            return (output, event.payload.get("logical_width"), event.payload.get("logical_height"))
        return (output,)
