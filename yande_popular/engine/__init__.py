"""Engine components orchestrating fetch → parse → dedup → transcode."""

from .dedup import DedupStore
from .fetcher import ListingFetcher, build_client
from .parser import ImageGroup, ListingParser, PostPage
from .transcoder import Transcoder, scaled_size

__all__ = [
    "DedupStore",
    "ImageGroup",
    "ListingFetcher",
    "ListingParser",
    "PostPage",
    "Transcoder",
    "build_client",
    "scaled_size",
]
