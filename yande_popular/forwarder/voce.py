"""VoceChat bot API forwarder."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import structlog

from ..config.models import DEFAULT_USER_AGENT
from ..errors import DeliveryError
from ..logging_conf import get_logger
from .base import BaseForwarder, guess_mime

CHUNK_SIZE = 200 * 1024


class VoceForwarder(BaseForwarder):
    """Send messages to a VoceChat group through the bot HTTP API.

    Attachments go through the three-step prepare → chunked upload → send
    protocol; any step failing aborts the whole attachment.
    """

    def __init__(
        self,
        server_domain: str,
        api_key: str,
        channel_id: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.server_domain = server_domain.rstrip("/")
        self.channel_id = channel_id
        self.logger = logger or get_logger("forwarder.voce")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": DEFAULT_USER_AGENT, "x-api-key": api_key},
            transport=transport,
        )

    async def send_text(self, message: str) -> None:
        try:
            await self._send(message.encode("utf-8"), "text/markdown")
        except httpx.HTTPError as exc:
            raise DeliveryError(f"send_text failed: {exc}") from exc

    async def send_attachment(self, path: Path) -> None:
        try:
            file_id = await self._prepare_upload(path)
            upload_path = await self._upload(path, file_id)
            payload = json.dumps({"path": upload_path}).encode("utf-8")
            await self._send(payload, "vocechat/file")
        except (httpx.HTTPError, OSError, ValueError, KeyError) as exc:
            raise DeliveryError(f"send_attachment {path.name} failed: {exc}") from exc
        self.logger.debug("attachment_sent", path=str(path), upload_path=upload_path)

    async def close(self) -> None:
        await self._client.aclose()

    async def _prepare_upload(self, path: Path) -> str:
        response = await self._client.post(
            f"{self.server_domain}/api/bot/file/prepare",
            json={"content_type": guess_mime(path), "filename": path.name},
        )
        response.raise_for_status()
        file_id = response.json()
        if not isinstance(file_id, str):
            raise ValueError(f"unexpected prepare response: {file_id!r}")
        return file_id

    async def _upload(self, path: Path, file_id: str) -> str:
        url = f"{self.server_domain}/api/bot/file/upload"
        file_size = path.stat().st_size
        if file_size == 0:
            raise ValueError(f"{path.name} is empty")
        offset = 0
        with path.open("rb") as stream:
            while offset < file_size:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                is_last = offset + len(chunk) >= file_size
                response = await self._client.post(
                    url,
                    headers={"Accept": "application/json; charset=utf-8"},
                    data={"file_id": file_id, "chunk_is_last": str(is_last).lower()},
                    files={"chunk_data": (path.name, chunk, "application/octet-stream")},
                )
                response.raise_for_status()
                offset += len(chunk)
                if is_last:
                    return response.json()["path"]
        raise ValueError(f"upload of {path.name} ended early at {offset}/{file_size} bytes")

    async def _send(self, body: bytes, content_type: str) -> None:
        response = await self._client.post(
            f"{self.server_domain}/api/bot/send_to_group/{self.channel_id}",
            content=body,
            headers={"Content-Type": content_type},
        )
        response.raise_for_status()


__all__ = ["VoceForwarder"]
