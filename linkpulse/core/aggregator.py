"""
Click aggregator: the only writer of click_count and click_rollups.

Redirects hand over a ClickMessage via submit(), which never blocks: the
message goes onto one of N bounded in-memory queues and the redirect
returns. A full queue drops the click (tracking is best-effort, redirects
are not).

Ordering:
  - shard = crc32(short_code) % N, one worker per shard
  - all events for one code are applied by one worker, in arrival order
  - different codes proceed in parallel, no global order

Per event, in ONE transaction:
  1. insert click_events row keyed by the event id
     → IntegrityError = already applied (at-least-once redelivery) → no-op
  2. url_mappings.click_count = click_count + 1
  3. upsert click_rollups for (code, day) × {total, country, device, browser}

Transient store failures are retried with backoff; nobody waits on this.
Dashboard numbers lag real clicks by at most the queue drain time.
"""

import asyncio
import zlib
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linkpulse.core.enrichment import UNKNOWN, ClickEnricher, DerivedFields
from linkpulse.core.retention import earliest_replayable_day
from linkpulse.core.retry import retry_transient
from linkpulse.errors import TransientStoreError
from linkpulse.models.tables import ClickEvent, ClickRollup, UrlMapping

import structlog

logger = structlog.get_logger()

DIMENSIONS = ("country", "device", "browser")
TOTAL = "total"


@dataclass(frozen=True)
class ClickMessage:
    """Raw click as captured at redirect time."""
    short_code: str
    event_id: UUID = field(default_factory=uuid4)
    clicked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ip_address: str | None = None
    user_agent: str | None = None
    referer: str | None = None


def _utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def rollup_keys(derived: DerivedFields) -> list[tuple[str, str]]:
    """(dimension, bucket) pairs one event contributes to."""
    return [
        (TOTAL, ""),
        ("country", derived.country or UNKNOWN),
        ("device", derived.device or UNKNOWN),
        ("browser", derived.browser or UNKNOWN),
    ]


def _rollup_upsert(dialect: str, short_code: str, day: date, dimension: str, bucket: str, n: int = 1):
    values = {"short_code": short_code, "day": day, "dimension": dimension, "bucket": bucket, "clicks": n}
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert(ClickRollup).values(**values).on_conflict_do_update(
        index_elements=["short_code", "day", "dimension", "bucket"],
        set_={"clicks": ClickRollup.clicks + n},
    )


async def _bump_rollup(db: AsyncSession, short_code: str, day: date, dimension: str, bucket: str):
    stmt = _rollup_upsert(db.get_bind().dialect.name, short_code, day, dimension, bucket)
    if stmt is not None:
        await db.execute(stmt)
        return
    # Portable fallback, one worker owns each code
    result = await db.execute(
        update(ClickRollup)
        .where(ClickRollup.short_code == short_code, ClickRollup.day == day,
               ClickRollup.dimension == dimension, ClickRollup.bucket == bucket)
        .values(clicks=ClickRollup.clicks + 1)
    )
    if result.rowcount == 0:
        db.add(ClickRollup(short_code=short_code, day=day, dimension=dimension, bucket=bucket, clicks=1))


def _fit(column: str, value: str | None) -> str | None:
    # Derived values come from third-party parsers; never let one overflow its column
    length = ClickEvent.__table__.c[column].type.length
    if value is None or length is None:
        return value
    return value[:length]


def fit_to_columns(derived: DerivedFields) -> DerivedFields:
    return DerivedFields(
        country=_fit("country", derived.country),
        city=_fit("city", derived.city),
        device=_fit("device", derived.device),
        browser=_fit("browser", derived.browser),
    )


async def apply_click(db: AsyncSession, msg: ClickMessage, derived: DerivedFields) -> bool:
    """Fold one event into the store. Returns False if it was already applied."""
    clicked_at = _utc(msg.clicked_at)
    derived = fit_to_columns(derived)
    db.add(ClickEvent(
        id=msg.event_id,
        short_code=msg.short_code,
        clicked_at=clicked_at,
        ip_address=_fit("ip_address", msg.ip_address),
        user_agent=msg.user_agent,
        referer=msg.referer,
        country=derived.country,
        city=derived.city,
        device=derived.device,
        browser=derived.browser,
    ))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        return False

    await db.execute(
        update(UrlMapping)
        .where(UrlMapping.short_code == msg.short_code)
        .values(click_count=UrlMapping.click_count + 1)
    )
    day = clicked_at.date()
    for dimension, bucket in rollup_keys(derived):
        await _bump_rollup(db, msg.short_code, day, dimension, bucket)

    await db.commit()
    return True


async def rebuild_rollups(
    db: AsyncSession,
    since: date,
    *,
    retention_days: int,
    now: datetime | None = None,
) -> tuple[date, int]:
    """Recompute click_rollups from `since` onward by replaying click_events.

    Only days whose raw events are all still retained can be replayed; an
    earlier `since` is raised to the first such day, so rollups for purged
    or partly purged days are left alone. click_count is not touched; it
    must never go down.

    Run it with the aggregator paused (ClickAggregator.paused), otherwise a
    click applied mid-rebuild may be counted twice or not at all.

    Returns (effective since, events replayed).
    """
    floor = earliest_replayable_day(retention_days, now)
    if since < floor:
        logger.warning("rebuild_since_clamped", requested=since.isoformat(), since=floor.isoformat())
        since = floor
    since_dt = datetime.combine(since, time.min, tzinfo=timezone.utc)
    await db.execute(delete(ClickRollup).where(ClickRollup.day >= since))

    counts: Counter = Counter()
    replayed = 0
    result = await db.stream(select(ClickEvent).where(ClickEvent.clicked_at >= since_dt))
    async for event in result.scalars():
        derived = DerivedFields(country=event.country, city=event.city,
                                device=event.device, browser=event.browser)
        day = _utc(event.clicked_at).date()
        for dimension, bucket in rollup_keys(derived):
            counts[(event.short_code, day, dimension, bucket)] += 1
        replayed += 1

    for (short_code, day, dimension, bucket), clicks in counts.items():
        db.add(ClickRollup(short_code=short_code, day=day, dimension=dimension, bucket=bucket, clicks=clicks))
    await db.commit()

    logger.info("rollups_rebuilt", since=since.isoformat(), events=replayed, rows=len(counts))
    return since, replayed


class ClickAggregator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        enricher: ClickEnricher,
        *,
        workers: int = 4,
        queue_size: int = 10_000,
        retry_attempts: int = 5,
        retry_base_delay: float = 0.2,
    ):
        self._session_maker = session_maker
        self._enricher = enricher
        self._workers = max(1, workers)
        self._queue_size = queue_size
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._queues: list[asyncio.Queue] = []
        self._tasks: list[asyncio.Task] = []
        self._accepting = False
        self._resume = asyncio.Event()
        self._resume.set()
        self._in_flight = 0
        self._pause_lock = asyncio.Lock()

        self.applied = 0
        self.duplicates = 0
        self.dropped = 0

    # --- lifecycle ---

    def start(self) -> None:
        if self._tasks:
            return
        self._queues = [asyncio.Queue(maxsize=self._queue_size) for _ in range(self._workers)]
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"click-aggregator-{i}")
            for i in range(self._workers)
        ]
        self._accepting = True
        logger.info("aggregator_started", workers=self._workers, queue_size=self._queue_size)

    async def drain(self) -> None:
        """Wait until every event submitted so far has been applied or dropped."""
        await asyncio.gather(*(q.join() for q in self._queues))

    async def stop(self, timeout: float = 10.0) -> None:
        self._accepting = False
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            logger.warning("aggregator_stop_timeout", pending=self.pending)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("aggregator_stopped", applied=self.applied,
                    duplicates=self.duplicates, dropped=self.dropped)

    @property
    def pending(self) -> int:
        return sum(q.qsize() for q in self._queues)

    @asynccontextmanager
    async def paused(self):
        """Hold every worker between events for the duration of the block.

        Redirects keep submitting; clicks queue up (or drop once a queue is
        full) and are applied after the block exits. Concurrent callers take
        turns.
        """
        async with self._pause_lock:
            self._resume.clear()
            try:
                while self._in_flight:
                    await asyncio.sleep(0.01)
                logger.info("aggregator_paused", pending=self.pending)
                yield
            finally:
                self._resume.set()
                logger.info("aggregator_resumed", pending=self.pending)

    # --- producer side (redirect path) ---

    def shard_for(self, short_code: str) -> int:
        return zlib.crc32(short_code.encode()) % self._workers

    def submit(self, msg: ClickMessage) -> bool:
        """Enqueue without waiting. False means the click was dropped."""
        if not self._accepting:
            self.dropped += 1
            logger.warning("click_dropped", short_code=msg.short_code, reason="not_running")
            return False
        try:
            self._queues[self.shard_for(msg.short_code)].put_nowait(msg)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("click_dropped", short_code=msg.short_code, reason="queue_full")
            return False
        return True

    # --- consumer side ---

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            msg = await queue.get()
            await self._resume.wait()
            self._in_flight += 1
            try:
                await self.process(msg)
            except Exception:
                self.dropped += 1
                logger.exception("click_aggregation_failed", short_code=msg.short_code,
                                 event_id=str(msg.event_id), shard=index)
            finally:
                self._in_flight -= 1
                queue.task_done()

    async def process(self, msg: ClickMessage) -> bool:
        """Enrich and apply one event, retrying transient store failures."""
        derived = await self._enricher.derive(msg.ip_address, msg.user_agent)

        async def attempt() -> bool:
            async with self._session_maker() as db:
                return await apply_click(db, msg, derived)

        try:
            applied = await retry_transient(
                attempt,
                attempts=self._retry_attempts,
                base_delay=self._retry_base_delay,
                event="click_aggregation_retry",
                short_code=msg.short_code,
            )
        except TransientStoreError:
            self.dropped += 1
            logger.error("click_dropped", short_code=msg.short_code,
                         event_id=str(msg.event_id), reason="store_unavailable")
            return False

        if applied:
            self.applied += 1
            logger.debug("click_aggregated", short_code=msg.short_code, event_id=str(msg.event_id))
        else:
            self.duplicates += 1
            logger.info("click_duplicate_ignored", short_code=msg.short_code, event_id=str(msg.event_id))
        return applied
