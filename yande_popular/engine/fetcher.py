"""HTTP fetching of listing and detail pages."""

from __future__ import annotations

from urllib.parse import urljoin

import httpx
import structlog

from ..config.models import DEFAULT_USER_AGENT
from ..errors import NetworkError
from ..logging_conf import get_logger


def build_client(
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Return the process-wide HTTP client shared by fetcher and transcoder."""

    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": user_agent},
        transport=transport,
    )


class ListingFetcher:
    """Retrieve raw markup for ranking views and post detail pages."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://yande.re",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.logger = logger or get_logger("fetcher")

    def resolve(self, endpoint: str) -> str:
        return urljoin(self.base_url + "/", endpoint)

    def detail_url(self, post_id: int) -> str:
        return f"{self.base_url}/post/show/{post_id}"

    async def fetch(self, endpoint: str) -> str:
        url = self.resolve(endpoint)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"Unexpected status {exc.response.status_code} for {url}", url=url
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            raise NetworkError(f"Request to {url} failed: {exc}", url=url) from exc
        self.logger.debug("page_fetched", url=url, size=len(response.text))
        return response.text

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["ListingFetcher", "build_client"]
