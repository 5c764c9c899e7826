"""Listing and post-detail parsing plus parent/child group resolution."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin

import structlog
from selectolax.parser import HTMLParser, Node

from ..errors import ParseError
from ..logging_conf import get_logger
from .fetcher import ListingFetcher

_POST_ITEM_ID = re.compile(r"^p(\d+)$")
_POST_HREF = re.compile(r"^/post/show/(\d+)")


@dataclass
class ImageGroup:
    """A canonical post plus its child variants, delivered as one unit."""

    id: int
    score: int
    members: list[tuple[int, str]] = field(default_factory=list)

    @property
    def member_ids(self) -> list[int]:
        return [member_id for member_id, _ in self.members]


@dataclass
class PostPage:
    """Fields extracted from a single ``/post/show/<id>`` page."""

    id: int
    score: int
    highres_url: str
    parent_id: int | None = None
    child_ids: list[int] = field(default_factory=list)


class ListingParser:
    """Extract candidate ids from rankings and resolve them into image groups."""

    def __init__(
        self,
        fetcher: ListingFetcher,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.logger = logger or get_logger("parser")

    def parse(self, markup: str) -> list[int]:
        """Return post ids listed in ``ul#post-list-posts`` in document order."""

        tree = HTMLParser(markup)
        container = tree.css_first("ul#post-list-posts")
        if container is None:
            raise ParseError("listing container ul#post-list-posts not found")
        ids: list[int] = []
        seen: set[int] = set()
        for node in container.iter():
            if node.tag != "li":
                continue
            match = _POST_ITEM_ID.match((node.attributes.get("id") or "").strip())
            if match is None:
                self.logger.debug("listing_item_skipped", item_id=node.attributes.get("id"))
                continue
            post_id = int(match.group(1))
            if post_id not in seen:
                seen.add(post_id)
                ids.append(post_id)
        return ids

    def parse_post(self, post_id: int, markup: str) -> PostPage:
        tree = HTMLParser(markup)
        return PostPage(
            id=post_id,
            score=self._find_score(post_id, tree),
            highres_url=self._find_highres(post_id, tree),
            parent_id=self._find_parent(tree),
            child_ids=self._find_children(tree),
        )

    async def resolve_group(self, post_id: int) -> ImageGroup:
        """Fetch ``post_id`` and its relatives and build the canonical group.

        A declared parent becomes the canonical page; only the canonical page's
        children are followed, so the walk is at most two levels deep.
        """

        page = await self._fetch_post(post_id)
        if page.parent_id is not None and page.parent_id != post_id:
            self.logger.debug("parent_followed", post=post_id, parent=page.parent_id)
            page = await self._fetch_post(page.parent_id)

        members = [(page.id, page.highres_url)]
        score = page.score
        seen = {page.id}
        for child_id in page.child_ids:
            if child_id in seen:
                continue
            seen.add(child_id)
            child = await self._fetch_post(child_id)
            score = max(score, child.score)
            members.append((child.id, child.highres_url))
        return ImageGroup(id=page.id, score=score, members=members)

    async def _fetch_post(self, post_id: int) -> PostPage:
        markup = await self.fetcher.fetch(self.fetcher.detail_url(post_id))
        return self.parse_post(post_id, markup)

    @staticmethod
    def _find_score(post_id: int, tree: HTMLParser) -> int:
        node = tree.css_first(f"span#post-score-{post_id}")
        if node is None:
            raise ParseError(f"span#post-score-{post_id} not found")
        text = node.text(strip=True)
        try:
            return int(text)
        except ValueError as exc:
            raise ParseError(f"invalid score {text!r} for post {post_id}") from exc

    def _find_highres(self, post_id: int, tree: HTMLParser) -> str:
        node = tree.css_first("a#highres")
        href = node.attributes.get("href") if node is not None else None
        if not href:
            raise ParseError(f"a#highres not found for post {post_id}")
        return urljoin(self.fetcher.base_url + "/", href.strip())

    @staticmethod
    def _find_parent(tree: HTMLParser) -> int | None:
        notice = _status_notice(tree, "parent post")
        if notice is None:
            return None
        for link in notice.css("a"):
            match = _POST_HREF.match((link.attributes.get("href") or "").strip())
            if match:
                return int(match.group(1))
        raise ParseError("parent notice without /post/show/ link")

    @staticmethod
    def _find_children(tree: HTMLParser) -> list[int]:
        notice = _status_notice(tree, "child post")
        if notice is None:
            return []
        children: list[int] = []
        for link in notice.css("a"):
            match = _POST_HREF.match((link.attributes.get("href") or "").strip())
            if match:
                children.append(int(match.group(1)))
        return children


def _status_notice(tree: HTMLParser, marker: str) -> Node | None:
    for notice in tree.css(".status-notice"):
        if any(marker in link.text() for link in notice.css("a")):
            return notice
    return None


__all__ = ["ImageGroup", "ListingParser", "PostPage"]
