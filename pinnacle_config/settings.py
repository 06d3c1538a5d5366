"""Client settings for the Pinnacle configuration client.

Settings come from keyword arguments, the environment, or defaults, in that
order of precedence.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

SOCKET_ENV = "PINNACLE_SOCKET"
CALL_TIMEOUT_ENV = "PINNACLE_CALL_TIMEOUT"
LOG_LEVEL_ENV = "PINNACLE_LOG_LEVEL"


def get_default_socket_path() -> Path:
    """Get default compositor config socket path.

    The compositor listens at $XDG_RUNTIME_DIR/pinnacle/config.sock; when
    XDG_RUNTIME_DIR is unset the per-user /run/user/<uid> directory is used.
    """
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR") or f"/run/user/{os.getuid()}"
    return Path(runtime_dir) / "pinnacle" / "config.sock"


def get_default_script_path() -> Path:
    """Get default configuration script path ($XDG_CONFIG_HOME/pinnacle/config.py)."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "pinnacle" / "config.py"


class ClientSettings(BaseModel):
    """Connection, call and dispatch settings for one client session."""

    socket_path: Path = Field(default_factory=get_default_socket_path, description="Compositor socket")
    connect_timeout: float = Field(5.0, gt=0, description="Seconds to wait for one connect attempt")
    connect_attempts: int = Field(10, ge=1, description="Connect attempts before giving up")
    default_call_timeout: Optional[float] = Field(
        None, gt=0, description="Deadline applied to calls that do not pass one (None = wait forever)"
    )
    handler_queue_size: int = Field(1024, ge=1, description="Per-subscription event queue bound")
    handler_workers: int = Field(8, ge=1, description="Threads running synchronous handlers")
    max_message_bytes: int = Field(16 * 1024 * 1024, ge=1024, description="Largest accepted frame")
    log_level: str = Field("INFO", description="Root log level")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls, **overrides) -> "ClientSettings":
        """
        Build settings from the environment.

        Args:
            **overrides: Explicit values; None values are ignored

        Returns:
            ClientSettings instance
        """
        values = {}

        socket_path = os.environ.get(SOCKET_ENV)
        if socket_path:
            values["socket_path"] = Path(socket_path)

        call_timeout = os.environ.get(CALL_TIMEOUT_ENV)
        if call_timeout:
            try:
                values["default_call_timeout"] = float(call_timeout)
            except ValueError:
                logger.warning(f"Ignoring invalid {CALL_TIMEOUT_ENV}={call_timeout!r}")

        log_level = os.environ.get(LOG_LEVEL_ENV)
        if log_level:
            values["log_level"] = log_level

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
