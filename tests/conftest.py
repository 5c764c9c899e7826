"""Pytest fixtures: a fake yande.re site, a recording forwarder and helpers."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator

import httpx
import pytest
from PIL import Image

from yande_popular.engine import (
    DedupStore,
    ListingFetcher,
    ListingParser,
    Transcoder,
    build_client,
)
from yande_popular.errors import DeliveryError
from yande_popular.forwarder import BaseForwarder
from yande_popular.infra import SQLiteManager
from yande_popular.orchestrator import Orchestrator

SITE = "https://yande.re"
FILES = "https://files.yande.re/image"


def listing_html(ids: Iterable[int]) -> str:
    items = "".join(
        f'<li id="p{post_id}" class="creator-id-1"><a class="thumb" href="/post/show/{post_id}">#</a></li>'
        for post_id in ids
    )
    return f'<html><body><div id="post-list"><ul id="post-list-posts">{items}</ul></div></body></html>'


def post_html(
    post_id: int,
    score: int,
    *,
    parent: int | None = None,
    children: Iterable[int] = (),
    highres: bool = True,
) -> str:
    notices = []
    if parent is not None:
        notices.append(
            f'<div class="status-notice">This post belongs to a '
            f'<a href="/post/show/{parent}">parent post</a>.</div>'
        )
    children = list(children)
    if children:
        links = ", ".join(f'<a href="/post/show/{child}">{child}</a>' for child in children)
        notices.append(
            f'<div class="status-notice">This post has '
            f'<a href="/post?tags=parent%3A{post_id}">child posts</a>. (post #{links})</div>'
        )
    highres_link = (
        f'<a class="original-file-unchanged" id="highres" href="{FILES}/{post_id}.png">Download</a>'
        if highres
        else ""
    )
    return (
        "<html><body>"
        + "".join(notices)
        + f'<div id="stats"><ul><li>Score: <span id="post-score-{post_id}">{score}</span></li></ul></div>'
        + highres_link
        + "</body></html>"
    )


def png_bytes(width: int = 64, height: int = 48, mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color=128 if mode in ("L", "P") else (200, 30, 30)).save(
        buffer, format="PNG"
    )
    return buffer.getvalue()


@dataclass
class FakeSite:
    """Route table served through ``httpx.MockTransport``; records request URLs."""

    routes: dict[str, httpx.Response] = field(default_factory=dict)
    requests: list[str] = field(default_factory=list)

    def page(self, path: str, html: str, status: int = 200) -> None:
        self.routes[f"{SITE}{path}"] = httpx.Response(status, text=html)

    def listing(self, ids: Iterable[int], path: str = "/post/popular_recent") -> None:
        self.page(path, listing_html(ids))

    def post(self, post_id: int, score: int, **kwargs) -> None:
        self.page(f"/post/show/{post_id}", post_html(post_id, score, **kwargs))
        self.routes.setdefault(
            f"{FILES}/{post_id}.png",
            httpx.Response(200, content=png_bytes(), headers={"Content-Type": "image/png"}),
        )

    def image(self, url: str, content: bytes, content_type: str = "image/png", status: int = 200) -> None:
        self.routes[url] = httpx.Response(status, content=content, headers={"Content-Type": content_type})

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        response = self.routes.get(url)
        if response is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(
            response.status_code, content=response.content, headers=response.headers
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def detail_requests(self, post_id: int) -> int:
        return self.requests.count(f"{SITE}/post/show/{post_id}")


class RecordingForwarder(BaseForwarder):
    """Collect delivered messages; optionally fail selected attachments."""

    def __init__(self, fail_attachments: Iterable[str] = (), fail_text: bool = False) -> None:
        self.events: list[tuple[str, str]] = []
        self.fail_attachments = set(fail_attachments)
        self.fail_text = fail_text
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True

    async def send_text(self, message: str) -> None:
        if self.fail_text:
            raise DeliveryError("text rejected")
        self.events.append(("text", message))

    async def send_attachment(self, path: Path) -> None:
        assert path.exists(), f"attachment {path} missing at send time"
        if path.stem in self.fail_attachments:
            raise DeliveryError(f"upload of {path.name} rejected")
        self.events.append(("attachment", path.name))

    async def close(self) -> None:
        self.closed = True

    @property
    def texts(self) -> list[str]:
        return [value for kind, value in self.events if kind == "text"]

    @property
    def attachments(self) -> list[str]:
        return [value for kind, value in self.events if kind == "attachment"]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def listing_page() -> Callable[..., str]:
    return listing_html


@pytest.fixture
def post_page() -> Callable[..., str]:
    return post_html


@pytest.fixture
def png() -> Callable[..., bytes]:
    return png_bytes


@pytest.fixture
def recording_forwarder() -> type[RecordingForwarder]:
    return RecordingForwarder


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> Iterator[DedupStore]:
    manager = SQLiteManager()
    yield DedupStore(manager, tmp_path / "db" / "history.db", clock=clock)
    manager.close_all()


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def make_orchestrator(
    site: FakeSite, store: DedupStore, scratch_dir: Path
) -> Callable[..., Orchestrator]:
    def _builder(forwarder: BaseForwarder | None = None, **overrides) -> Orchestrator:
        client = build_client(transport=site.transport())
        fetcher = ListingFetcher(client, SITE)
        options = {"concurrency": 1}
        options.update(overrides)
        return Orchestrator(
            fetcher,
            ListingParser(fetcher),
            store,
            Transcoder(client),
            forwarder or RecordingForwarder(),
            scratch_dir,
            **options,
        )

    return _builder
