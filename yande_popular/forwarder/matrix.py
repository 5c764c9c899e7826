"""Matrix client-server API forwarder (unencrypted rooms)."""

from __future__ import annotations

import html
import json
import re
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from PIL import Image, UnidentifiedImageError

from ..errors import DeliveryError
from ..logging_conf import get_logger
from .base import BaseForwarder, guess_mime

DEVICE_NAME = "yande_popular_bot"
HTML_FORMAT = "org.matrix.custom.html"

_URL = re.compile(r"https?://[^\s<>()]+")


class MatrixForwarder(BaseForwarder):
    """Post notices and images to a Matrix room.

    The access token is persisted in ``session_path`` and reused across
    restarts; a stale token triggers a fresh password login.
    """

    def __init__(
        self,
        homeserver_url: str,
        user: str,
        password: str,
        room_id: str,
        session_path: Path,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.homeserver_url = homeserver_url.rstrip("/")
        self.user = user
        self.password = password
        self.room_id = room_id
        self.session_path = session_path
        self.logger = logger or get_logger("forwarder.matrix")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._access_token: str | None = None
        self._joined_room: str | None = None

    async def start(self) -> None:
        try:
            if not await self._restore_session():
                await self._login()
            self._joined_room = await self._join(self.room_id)
        except (httpx.HTTPError, OSError, ValueError, KeyError) as exc:
            raise DeliveryError(f"matrix login failed: {exc}") from exc
        self.logger.info("matrix_ready", room=self._joined_room)

    async def send_text(self, message: str) -> None:
        try:
            await self._send_event(
                {
                    "msgtype": "m.text",
                    "body": message,
                    "format": HTML_FORMAT,
                    "formatted_body": _render_html(message),
                }
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise DeliveryError(f"send_text failed: {exc}") from exc

    async def send_attachment(self, path: Path) -> None:
        mime = guess_mime(path)
        try:
            data = path.read_bytes()
            content_uri = await self._upload(path.name, mime, data)
            content: dict[str, Any] = {
                "body": path.name,
                "url": content_uri,
                "info": {"mimetype": mime, "size": len(data)},
            }
            if mime.startswith("image/"):
                content["msgtype"] = "m.image"
                content["info"].update(_image_info(path))
            else:
                content["msgtype"] = "m.file"
            await self._send_event(content)
        except (httpx.HTTPError, OSError, ValueError, KeyError) as exc:
            raise DeliveryError(f"send_attachment {path.name} failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------
    async def _restore_session(self) -> bool:
        if not self.session_path.exists():
            return False
        try:
            session = json.loads(self.session_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            self.logger.warning("matrix_session_unreadable", path=str(self.session_path))
            return False
        if session.get("homeserver") != self.homeserver_url or not session.get("access_token"):
            return False
        self._access_token = session["access_token"]
        response = await self._client.get(
            f"{self.homeserver_url}/_matrix/client/v3/account/whoami",
            headers=self._auth_headers(),
        )
        if response.status_code != 200:
            self.logger.info("matrix_session_expired", status=response.status_code)
            self._access_token = None
            return False
        self.logger.info("matrix_session_restored", user_id=response.json().get("user_id"))
        return True

    async def _login(self) -> None:
        response = await self._client.post(
            f"{self.homeserver_url}/_matrix/client/v3/login",
            json={
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": self.user},
                "password": self.password,
                "initial_device_display_name": DEVICE_NAME,
            },
        )
        response.raise_for_status()
        payload = response.json()
        self._access_token = payload["access_token"]
        self.session_path.parent.mkdir(parents=True, exist_ok=True)
        self.session_path.write_text(
            json.dumps(
                {
                    "homeserver": self.homeserver_url,
                    "user_id": payload.get("user_id"),
                    "device_id": payload.get("device_id"),
                    "access_token": self._access_token,
                }
            ),
            encoding="utf-8",
        )
        self.logger.info("matrix_logged_in", user=self.user)

    async def _join(self, room: str) -> str:
        response = await self._client.post(
            f"{self.homeserver_url}/_matrix/client/v3/join/{quote(room, safe='')}",
            json={},
            headers=self._auth_headers(),
        )
        response.raise_for_status()
        return response.json()["room_id"]

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    async def _upload(self, filename: str, mime: str, data: bytes) -> str:
        response = await self._client.post(
            f"{self.homeserver_url}/_matrix/media/v3/upload",
            params={"filename": filename},
            content=data,
            headers={**self._auth_headers(), "Content-Type": mime},
        )
        response.raise_for_status()
        return response.json()["content_uri"]

    async def _send_event(self, content: dict[str, Any]) -> None:
        if self._joined_room is None:
            raise ValueError("forwarder not started")
        room = quote(self._joined_room, safe="")
        txn_id = uuid.uuid4().hex
        response = await self._client.put(
            f"{self.homeserver_url}/_matrix/client/v3/rooms/{room}/send/m.room.message/{txn_id}",
            json=content,
            headers=self._auth_headers(),
        )
        response.raise_for_status()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}


def _render_html(message: str) -> str:
    """Escape ``message`` and turn bare URLs into links."""

    parts: list[str] = []
    position = 0
    for match in _URL.finditer(message):
        parts.append(html.escape(message[position:match.start()]))
        url = html.escape(match.group(0))
        parts.append(f'<a href="{url}">{url}</a>')
        position = match.end()
    parts.append(html.escape(message[position:]))
    return "".join(parts).replace("\n", "<br>")


def _image_info(path: Path) -> dict[str, int]:
    try:
        with Image.open(path) as image:
            width, height = image.size
    except (OSError, UnidentifiedImageError):
        return {}
    return {"w": width, "h": height}


__all__ = ["MatrixForwarder"]
