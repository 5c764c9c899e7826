"""Forwarder Service Provider Interface."""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path

mimetypes.add_type("image/webp", ".webp")


class BaseForwarder(ABC):
    """Uniform delivery contract toward a chat destination.

    Implementations must report every failure, including failures inside a
    multi-step upload, as a single :class:`~yande_popular.errors.DeliveryError`.
    """

    async def start(self) -> None:
        """Perform one-time initialisation such as logging in."""

    @abstractmethod
    async def send_text(self, message: str) -> None:
        """Post a markdown/plain text message."""

    @abstractmethod
    async def send_attachment(self, path: Path) -> None:
        """Post the file at ``path`` as an attachment."""

    @abstractmethod
    async def close(self) -> None:
        """Release underlying resources."""


def guess_mime(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


__all__ = ["BaseForwarder", "guess_mime"]
