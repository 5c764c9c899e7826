"""Forwarders delivering notices and attachments to chat backends."""

from __future__ import annotations

from ..config import ConfigLocator, ForwarderKind, Settings
from .base import BaseForwarder
from .matrix import MatrixForwarder
from .voce import VoceForwarder


def build_forwarder(settings: Settings, locator: ConfigLocator) -> BaseForwarder:
    if settings.forwarder is ForwarderKind.MATRIX:
        return MatrixForwarder(
            homeserver_url=settings.homeserver_url,
            user=settings.user,
            password=settings.password,
            room_id=settings.room_id,
            session_path=locator.session_path(),
        )
    return VoceForwarder(
        server_domain=settings.server_domain,
        api_key=settings.api_key,
        channel_id=settings.channel_id,
    )


__all__ = ["BaseForwarder", "MatrixForwarder", "VoceForwarder", "build_forwarder"]
