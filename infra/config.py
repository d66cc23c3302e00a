# infra/config.py
from typing import Any, Mapping

from pydantic import BaseModel, Field


class WSSettings(BaseModel):
    """Connection timings. Seconds unless the name says otherwise."""
    ping_interval_s: float = Field(default=20.0, gt=0)
    reconnect_retries: int = Field(default=3, ge=0)
    reconnect_delay_s: float = Field(default=10.0, ge=0)
    auth_window_ms: int = Field(default=1000, gt=0)
    auth_timeout_s: float = Field(default=5.0, gt=0)
    send_timeout_s: float = Field(default=5.0, gt=0)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    close_timeout_s: float = Field(default=5.0, gt=0)


class BybitSettings(BaseModel):
    testnet: bool = True
    category: str = "linear"
    api_key: str = ""
    api_secret: str = ""
    max_active_time: str = ""   # private only, e.g. "1m"; advisory to the server
    ws: WSSettings = WSSettings()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


def settings_from_cfg(cfg: Mapping[str, Any]) -> BybitSettings:
    """Build settings from the ``bybit`` section of a loaded config.yaml."""
    try:
        section = dict(cfg["bybit"])
    except KeyError as e:
        raise ValueError(f"Invalid cfg missing key: {e}") from e
    if cfg.get("ws"):
        section.setdefault("ws", cfg["ws"])
    return BybitSettings.model_validate(section)
