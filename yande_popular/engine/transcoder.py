"""Image download and WebP transcoding."""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

import httpx
import structlog
from PIL import Image, UnidentifiedImageError

from ..config.models import MAX_DIMENSION, WEBP_QUALITY
from ..errors import FetchError, TransformError
from ..logging_conf import get_logger

CHUNK_SIZE = 64 * 1024


def scaled_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    """Return ``(width, height)`` shrunk so the longest edge fits ``max_dimension``."""

    if max(width, height) <= max_dimension:
        return width, height
    if width >= height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


class Transcoder:
    """Download originals into the scratch directory and shrink them to WebP."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_dimension: int = MAX_DIMENSION,
        quality: int = WEBP_QUALITY,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self.max_dimension = max_dimension
        self.quality = quality
        self.logger = logger or get_logger("transcoder")

    async def download(self, url: str, destination: Path, member_id: int) -> tuple[Path, str]:
        """Stream ``url`` to ``destination/<member_id><ext>`` and return path and mime."""

        path: Path | None = None
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                mime = response.headers.get("Content-Type", "").split(";")[0].strip()
                path = destination / f"{member_id}{_extension(url, mime)}"
                with path.open("wb") as stream:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        stream.write(chunk)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            _discard(path)
            raise FetchError(f"download of {url} failed: {exc}", url=url) from exc
        except OSError as exc:
            _discard(path)
            raise FetchError(f"cannot write {path}: {exc}", url=url) from exc
        if not mime:
            mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        self.logger.debug("image_downloaded", url=url, path=str(path), mime=mime)
        return path, mime

    async def transform(self, path: Path) -> Path:
        return await asyncio.to_thread(self.transform_file, path)

    def transform_file(self, path: Path) -> Path:
        """Resize ``path`` if needed and re-encode it as WebP.

        The source is removed only after the WebP file is written; on failure
        it is left in place so the caller can forward it untouched.
        """

        target = path.with_suffix(".webp")
        if target == path:
            target = path.with_name(f"{path.stem}.resized.webp")
        try:
            with Image.open(path) as image:
                width, height = image.size
                new_size = scaled_size(width, height, self.max_dimension)
                if image.mode not in ("RGB", "RGBA"):
                    has_alpha = image.mode in ("LA", "PA") or "transparency" in image.info
                    image = image.convert("RGBA" if has_alpha else "RGB")
                if new_size != (width, height):
                    self.logger.info(
                        "image_resized",
                        path=str(path),
                        original=f"{width}x{height}",
                        resized=f"{new_size[0]}x{new_size[1]}",
                    )
                    image = image.resize(new_size, Image.Resampling.LANCZOS)
                image.save(target, format="WEBP", quality=self.quality)
        except (OSError, ValueError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
            _discard(target)
            raise TransformError(f"cannot transcode {path}: {exc}") from exc
        path.unlink(missing_ok=True)
        return target


def _extension(url: str, mime: str) -> str:
    suffix = PurePosixPath(unquote(urlparse(url).path)).suffix.lower()
    if suffix and len(suffix) <= 6:
        return suffix
    guessed = mimetypes.guess_extension(mime) if mime else None
    return guessed or ".bin"


def _discard(path: Path | None) -> None:
    if path is not None:
        path.unlink(missing_ok=True)


__all__ = ["Transcoder", "scaled_size"]
