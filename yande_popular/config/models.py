"""Pydantic models describing yande-popular settings."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

POLL_INTERVAL = timedelta(hours=1)
RETENTION_WINDOW = timedelta(days=7)
SCORE_THRESHOLD = 50
MAX_DIMENSION = 1920
WEBP_QUALITY = 85

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/117.0.0.0 Safari/537.36 Edg/117.0.2045.47"
)


class ForwarderKind(str, Enum):
    """Supported chat backends."""

    VOCE = "voce"
    MATRIX = "matrix"


class Settings(BaseModel):
    """Runtime settings assembled from the config file, env and CLI options."""

    forwarder: ForwarderKind = ForwarderKind.VOCE

    # VoceChat
    channel_id: str | None = None
    api_key: str | None = None
    server_domain: str | None = None

    # Matrix
    homeserver_url: str | None = None
    user: str | None = None
    password: str | None = None
    room_id: str | None = None

    data_dir: Path = Field(default=Path("data"))
    concurrency: int = 4
    site_url: str = "https://yande.re"
    primary_listing: str = "/post/popular_recent"
    auxiliary_listings: list[str] = Field(default_factory=list)
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0

    @field_validator("data_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("site_url", "server_domain", "homeserver_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @model_validator(mode="after")
    def _validate_backend(self) -> "Settings":
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.forwarder is ForwarderKind.VOCE:
            required = {
                "channel_id": self.channel_id,
                "api_key": self.api_key,
                "server_domain": self.server_domain,
            }
        else:
            required = {
                "homeserver_url": self.homeserver_url,
                "user": self.user,
                "password": self.password,
                "room_id": self.room_id,
            }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(
                f"{self.forwarder.value} forwarder requires: {', '.join(missing)}"
            )
        return self


__all__ = [
    "DEFAULT_USER_AGENT",
    "ForwarderKind",
    "MAX_DIMENSION",
    "POLL_INTERVAL",
    "RETENTION_WINDOW",
    "SCORE_THRESHOLD",
    "Settings",
    "WEBP_QUALITY",
]
