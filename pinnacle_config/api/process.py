"""Process spawning."""

from typing import Dict, Iterable, Optional

from ..models import SpawnRequest
from .base import ApiSection, validate_model


class ProcessApi(ApiSection):
    """Spawn programs through the compositor (inheriting its environment)."""

    async def spawn(
        self,
        command: str,
        args: Optional[Iterable[str]] = None,
        *,
        once: bool = False,
        unique: bool = False,
        envs: Optional[Dict[str, str]] = None,
    ) -> Optional[int]:
        """Spawn a program.

        Args:
            command: Program to run
            args: Program arguments
            once: Skip if an instance is already running
            unique: Skip if this config already spawned it
            envs: Extra environment variables

        Returns:
            Process id, or None if the spawn was skipped
        """
        request = validate_model(
            "process.spawn", SpawnRequest,
            command=command,
            args=[] if args is None else args,
            envs=envs or {}, once=once, unique=unique,
        )
        result = await self.call("process.spawn", request.model_dump())
        if isinstance(result, dict):
            return result.get("pid")
        return result
