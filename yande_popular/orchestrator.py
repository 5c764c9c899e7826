"""High-level orchestration of one polling cycle."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import timedelta
from pathlib import Path
from typing import Sequence

import structlog

from .config.models import RETENTION_WINDOW, SCORE_THRESHOLD
from .engine import DedupStore, ImageGroup, ListingFetcher, ListingParser, Transcoder
from .errors import DeliveryError, NetworkError, ParseError, StoreError, TransformError
from .forwarder import BaseForwarder
from .logging_conf import get_logger


@dataclass
class CycleReport:
    """Counters describing what a cycle did."""

    candidates: int = 0
    resolved: int = 0
    resolve_failed: int = 0
    skipped_known: int = 0
    skipped_score: int = 0
    dispatched: int = 0
    groups_failed: int = 0
    not_started: int = 0
    members_sent: int = 0
    members_failed: int = 0
    evicted: int = 0
    aborted: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


class Orchestrator:
    """Run fetch → filter → dispatch → evict cycles.

    Every member id of a group is reserved in the dedup store before any
    download starts, so a crash mid-delivery never causes a re-send; the price
    is that failed deliveries are not retried either.
    """

    def __init__(
        self,
        fetcher: ListingFetcher,
        parser: ListingParser,
        store: DedupStore,
        transcoder: Transcoder,
        forwarder: BaseForwarder,
        tmp_dir: Path,
        *,
        primary_listing: str = "/post/popular_recent",
        auxiliary_listings: Sequence[str] = (),
        concurrency: int = 4,
        score_threshold: int = SCORE_THRESHOLD,
        retention: timedelta = RETENTION_WINDOW,
        stop_event: asyncio.Event | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.parser = parser
        self.store = store
        self.transcoder = transcoder
        self.forwarder = forwarder
        self.tmp_dir = tmp_dir
        self.primary_listing = primary_listing
        self.auxiliary_listings = list(auxiliary_listings)
        self.concurrency = concurrency
        self.score_threshold = score_threshold
        self.retention = retention
        self.stop_event = stop_event or asyncio.Event()
        self.logger = logger or get_logger("orchestrator")

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        self.logger.info("cycle_started")
        try:
            candidates = await self._collect_candidates()
        except (NetworkError, ParseError) as exc:
            self.logger.error("primary_listing_failed", listing=self.primary_listing, error=str(exc))
            report.aborted = True
        else:
            report.candidates = len(candidates)
            pending = await self._select_groups(candidates, report)
            await self._dispatch(pending, report)
        self._evict(report)
        self.logger.info("cycle_finished", **report.as_dict())
        return report

    # ------------------------------------------------------------------
    # Fetching & filtering
    # ------------------------------------------------------------------
    async def _collect_candidates(self) -> list[int]:
        candidates = self.parser.parse(await self.fetcher.fetch(self.primary_listing))
        seen = set(candidates)
        for listing in self.auxiliary_listings:
            try:
                extra = self.parser.parse(await self.fetcher.fetch(listing))
            except (NetworkError, ParseError) as exc:
                self.logger.warning("auxiliary_listing_skipped", listing=listing, error=str(exc))
                continue
            for post_id in extra:
                if post_id not in seen:
                    seen.add(post_id)
                    candidates.append(post_id)
        return candidates

    async def _select_groups(self, candidates: list[int], report: CycleReport) -> list[ImageGroup]:
        resolved: set[int] = set()
        pending: list[ImageGroup] = []
        for candidate in candidates:
            if candidate in resolved:
                continue
            resolved.add(candidate)
            try:
                if self.store.contains(str(candidate)):
                    report.skipped_known += 1
                    continue
            except StoreError as exc:
                self.logger.error("store_lookup_failed", post=candidate, error=str(exc))
                continue

            try:
                group = await self.parser.resolve_group(candidate)
            except (NetworkError, ParseError) as exc:
                report.resolve_failed += 1
                self.logger.warning("group_resolve_failed", post=candidate, error=str(exc))
                continue
            report.resolved += 1
            resolved.update(group.member_ids)

            if group.score < self.score_threshold:
                report.skipped_score += 1
                self.logger.debug("group_below_threshold", group=group.id, score=group.score)
                continue
            try:
                fresh = [
                    (member_id, url)
                    for member_id, url in group.members
                    if not self.store.contains(str(member_id))
                ]
                if not fresh:
                    report.skipped_known += 1
                    continue
                for member_id, _ in fresh:
                    self.store.insert(str(member_id))
            except StoreError as exc:
                self.logger.error("store_reservation_failed", group=group.id, error=str(exc))
                continue
            pending.append(ImageGroup(id=group.id, score=group.score, members=fresh))
        return pending

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def _dispatch(self, pending: list[ImageGroup], report: CycleReport) -> None:
        permits = asyncio.Semaphore(self.concurrency)
        tasks: list[asyncio.Task[None]] = []
        for index, group in enumerate(pending):
            await permits.acquire()
            if self.stop_event.is_set():
                permits.release()
                report.not_started = len(pending) - index
                self.logger.info("dispatch_stopped", remaining=report.not_started)
                break
            tasks.append(asyncio.create_task(self._run_group(group, permits, report)))
        if tasks:
            await asyncio.gather(*tasks)

    async def _run_group(
        self, group: ImageGroup, permits: asyncio.Semaphore, report: CycleReport
    ) -> None:
        try:
            await self._process_group(group, report)
        except Exception as exc:  # noqa: BLE001
            report.groups_failed += 1
            self.logger.error("group_crashed", group=group.id, error=str(exc))
        finally:
            permits.release()

    async def _process_group(self, group: ImageGroup, report: CycleReport) -> None:
        log = self.logger.bind(group=group.id)
        try:
            await self.forwarder.send_text(self.provenance(group))
        except DeliveryError as exc:
            report.groups_failed += 1
            log.error("provenance_failed", error=str(exc))
            return
        report.dispatched += 1
        log.info("group_dispatched", score=group.score, members=group.member_ids)
        for member_id, url in group.members:
            if await self._process_member(member_id, url, log):
                report.members_sent += 1
            else:
                report.members_failed += 1

    async def _process_member(
        self, member_id: int, url: str, log: structlog.BoundLogger
    ) -> bool:
        working: Path | None = None
        try:
            working, mime = await self.transcoder.download(url, self.tmp_dir, member_id)
            try:
                working = await self.transcoder.transform(working)
            except TransformError as exc:
                log.warning("transform_failed", member=member_id, mime=mime, error=str(exc))
            await self.forwarder.send_attachment(working)
        except (NetworkError, DeliveryError) as exc:
            log.error("member_failed", member=member_id, url=url, error=str(exc))
            return False
        finally:
            if working is not None:
                working.unlink(missing_ok=True)
        log.info("member_forwarded", member=member_id)
        return True

    def provenance(self, group: ImageGroup) -> str:
        return f"{self.fetcher.detail_url(group.id)} (score {group.score})"

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------
    def _evict(self, report: CycleReport) -> None:
        try:
            report.evicted = self.store.evict_older_than(self.retention)
        except StoreError as exc:
            self.logger.error("eviction_failed", error=str(exc))
            return
        if report.evicted:
            self.logger.info("records_evicted", count=report.evicted)


def purge_scratch(tmp_dir: Path) -> int:
    """Remove files left in the scratch directory by an interrupted run."""

    removed = 0
    for path in tmp_dir.iterdir():
        if path.is_file():
            path.unlink(missing_ok=True)
            removed += 1
    return removed


__all__ = ["CycleReport", "Orchestrator", "purge_scratch"]
