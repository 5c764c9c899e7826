"""Error taxonomy shared by the ingestion pipeline."""

from __future__ import annotations


class YandePopularError(Exception):
    """Base class for every error raised by yande-popular."""


class NetworkError(YandePopularError):
    """A listing or detail page could not be fetched."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class FetchError(NetworkError):
    """An image download failed."""


class ParseError(YandePopularError):
    """A page did not have the expected shape."""


class TransformError(YandePopularError):
    """Decoding, resizing or encoding an image failed."""


class DeliveryError(YandePopularError):
    """The forwarder could not deliver a message or attachment."""


class StoreError(YandePopularError):
    """The deduplication store failed to read or write."""


__all__ = [
    "DeliveryError",
    "FetchError",
    "NetworkError",
    "ParseError",
    "StoreError",
    "TransformError",
    "YandePopularError",
]
