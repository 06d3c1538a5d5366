"""Compositor-wide controls."""

from typing import Optional

from pydantic import StrictBool

from .base import ApiSection, validate_value


class CompositorApi(ApiSection):
    """Quit, reload and global settings."""

    async def quit(self) -> None:
        await self.call("pinnacle.quit")

    async def reload_config(self) -> None:
        """Ask the compositor to restart the configuration."""
        await self.call("pinnacle.reload_config")

    async def set_xwayland_self_scaling(self, enabled: bool) -> None:
        enabled = validate_value("pinnacle.set_xwayland_self_scaling", "enabled", StrictBool, enabled)
        await self.call("pinnacle.set_xwayland_self_scaling", {"enabled": enabled})

    async def take_last_error(self) -> Optional[str]:
        """Error message of the previous config crash, if any (cleared by this call)."""
        return await self.call("pinnacle.take_last_error")

    async def version(self) -> str:
        return await self.call("pinnacle.version")
