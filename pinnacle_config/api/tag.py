"""Tags (dynamic workspaces attached to outputs)."""

from typing import Any, Iterable, List, Optional, Tuple, Union

from ..models import Event, EventCategory, TagInfo
from .base import ApiSection, invalid_argument
from .handles import OutputHandle, TagHandle


class TagApi(ApiSection):
    """Tag creation and lookup.

    Example:
        tags = await pinnacle.tag.add(output, ["1", "2", "3"])
        await tags[0].set_active(True)
    """

    signals = (EventCategory.TAG_ACTIVE.value,)

    async def add(self, output: Union[OutputHandle, str], names: Iterable[str]) -> List[TagHandle]:
        """Create tags on an output, returning them in the given order."""
        output_name = output.name if isinstance(output, OutputHandle) else output
        if not isinstance(output_name, str) or not output_name:
            raise invalid_argument("tag.add", "output", output, "expected an OutputHandle or output name")
        if isinstance(names, str):
            names = [names]
        names = list(names)
        if not names or not all(isinstance(name, str) and name for name in names):
            raise invalid_argument("tag.add", "names", names, "expected non-empty tag names")

        tag_ids = await self.call("tag.add", {"output": output_name, "names": names})
        return [TagHandle(self.client, tag_id) for tag_id in tag_ids or []]

    async def get_infos(self) -> List[TagInfo]:
        return [TagInfo.model_validate(item) for item in await self.call("tag.get_tags") or []]

    async def get_all(self) -> List[TagHandle]:
        return [TagHandle(self.client, info.id) for info in await self.get_infos()]

    async def get(self, name: str, output: Optional[Union[OutputHandle, str]] = None) -> Optional[TagHandle]:
        """Find a tag by name.

        Without an output, tags on the focused output are preferred.
        """
        tags = [info for info in await self.get_infos() if info.name == name]
        if not tags:
            return None

        if output is None:
            focused = [
                item["name"] for item in await self.call("output.get_outputs") or []
                if item.get("focused")
            ]
            on_focused = [info for info in tags if info.output in focused]
            return TagHandle(self.client, (on_focused or tags)[0].id)

        output_name = output.name if isinstance(output, OutputHandle) else output
        for info in tags:
            if info.output == output_name:
                return TagHandle(self.client, info.id)
        return None

    async def remove(self, tags: Iterable[TagHandle]) -> None:
        tag_ids = [tag.id for tag in tags]
        if tag_ids:
            await self.call("tag.remove", {"tag_ids": tag_ids})

    def convert_signal(self, category: str, event: Event) -> Tuple[Any, ...]:
        return (TagHandle(self.client, event.payload["tag_id"]), bool(event.payload.get("active")))
