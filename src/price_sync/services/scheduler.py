"""Scheduled price sync.

Each tick looks back over a window slightly longer than the tick interval and
re-syncs the products of every campaign that started or ended inside it. The
overlap between consecutive windows absorbs late ticks; a failed tick is
covered by the next one. No cursor is persisted between ticks.

Usage:
    trigger = ScheduleTrigger(interval_seconds=300, lookback_seconds=1200)
    trigger.start()
    ...
    await trigger.stop()
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_sync.config import get_settings
from price_sync.db.base import session_scope
from price_sync.db.models import Campaign, CampaignMembership
from price_sync.pricing.models import as_utc, utcnow
from price_sync.services.price_sync import SyncResult, sync_products

logger = logging.getLogger(__name__)


@dataclass
class ScheduledSyncResult:
    """Result of one scheduler tick."""

    window_start: datetime
    window_end: datetime
    campaign_ids: list[UUID] = field(default_factory=list)
    results: list[SyncResult] = field(default_factory=list)

    @property
    def product_ids(self) -> list[UUID]:
        return [r.product_id for r in self.results]


async def find_boundary_campaigns(
    session: AsyncSession,
    window_start: datetime,
    window_end: datetime,
) -> list[UUID]:
    """Ids of enabled campaigns whose start or end falls inside the window (inclusive)."""
    result = await session.execute(
        select(Campaign.id)
        .where(
            Campaign.is_active == True,  # noqa: E712
            or_(
                Campaign.start_date.between(window_start, window_end),
                Campaign.end_date.between(window_start, window_end),
            ),
        )
        .order_by(Campaign.start_date, Campaign.id)
    )
    return list(result.scalars().all())


async def run_scheduled_sync(
    now: datetime | None = None,
    *,
    lookback: timedelta | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ScheduledSyncResult:
    """Re-sync the products of campaigns that crossed a boundary recently.

    All syncs of one tick share a single transaction.

    Args:
        now: End of the scan window, defaults to now (UTC).
        lookback: Window length, defaults to settings.scheduler_lookback_seconds.
        session_factory: Session factory, defaults to the application's.

    Returns:
        ScheduledSyncResult for the tick.
    """
    now = as_utc(now) if now else utcnow()
    if lookback is None:
        lookback = timedelta(seconds=get_settings().scheduler_lookback_seconds)

    outcome = ScheduledSyncResult(window_start=now - lookback, window_end=now)

    async with session_scope(session_factory) as session:
        outcome.campaign_ids = await find_boundary_campaigns(
            session, outcome.window_start, outcome.window_end
        )
        if not outcome.campaign_ids:
            logger.info("No campaigns changed status recently")
            return outcome

        result = await session.execute(
            select(CampaignMembership.product_id)
            .where(CampaignMembership.campaign_id.in_(outcome.campaign_ids))
            .distinct()
        )
        product_ids = list(result.scalars().all())

        logger.info(
            f"{len(outcome.campaign_ids)} campaigns crossed a boundary, "
            f"syncing {len(product_ids)} products"
        )
        outcome.results = await sync_products(session, product_ids, at=now)

    return outcome


class ScheduleTrigger:
    """Periodic driver for run_scheduled_sync on an APScheduler AsyncIOScheduler.

    Tick errors are logged and swallowed so the job keeps firing. Overlapping
    ticks are never started: a late run is coalesced into the next one.
    """

    JOB_ID = "scheduled_price_sync"

    def __init__(
        self,
        interval_seconds: int | None = None,
        lookback_seconds: int | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        if interval_seconds is None:
            interval_seconds = settings.scheduler_interval_seconds
        if lookback_seconds is None:
            lookback_seconds = settings.scheduler_lookback_seconds

        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if lookback_seconds <= interval_seconds:
            raise ValueError("lookback_seconds must be larger than interval_seconds")

        self.interval_seconds = interval_seconds
        self.lookback_seconds = lookback_seconds
        self.session_factory = session_factory
        self.clock = clock
        self.scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def tick(self) -> ScheduledSyncResult | None:
        """Run one scheduled sync. Returns None when the tick failed."""
        try:
            return await run_scheduled_sync(
                self.clock(),
                lookback=timedelta(seconds=self.lookback_seconds),
                session_factory=self.session_factory,
            )
        except Exception:
            logger.exception("Scheduled price sync failed, the next tick will cover its window")
            return None

    def start(self) -> None:
        """Schedule tick() on the running event loop, firing once right away."""
        if self.running:
            return

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            coalesce=True,
            max_instances=1,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        scheduler.start()
        self.scheduler = scheduler

        logger.info(
            f"Price sync scheduler running every {self.interval_seconds}s "
            f"(lookback {self.lookback_seconds}s)"
        )

    async def stop(self) -> None:
        """Shut the scheduler down; a tick in progress is cancelled."""
        if self.scheduler is None:
            return
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Price sync scheduler stopped")

    async def run_forever(self) -> None:
        """Start the scheduler and block until cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
