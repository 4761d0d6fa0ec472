"""
APScheduler job for the daily Gmail sweep.

Once a day (cron in a named time zone) every connected owner is synced
for the previous civil day's window. The sweep is a backfill: it passes
an explicit query and never moves the incremental cursor.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from jobtracker import config
from jobtracker.database import SessionLocal
from jobtracker.errors import CredentialMissing
from jobtracker.services.classifier import EmailClassifier
from jobtracker.services.locks import OwnerLocks, owner_locks
from jobtracker.services.stores import CredentialStore
from jobtracker.services.sync_engine import SyncEngine, SyncOptions

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def previous_day_window(tz_name: str, now: Optional[datetime] = None) -> tuple[int, int]:
    """
    Epoch-second bounds [after, before) of yesterday in the given zone.

    Uses real local midnights, so DST days come out 23 or 25 hours long.
    """
    zone = ZoneInfo(tz_name)
    local_now = (now or datetime.now(zone)).astimezone(zone)
    today = local_now.date()
    start_today = datetime.combine(today, time.min, tzinfo=zone)
    start_yesterday = datetime.combine(today - timedelta(days=1), time.min, tzinfo=zone)
    return int(start_yesterday.timestamp()), int(start_today.timestamp())


def default_engine_factory(db) -> SyncEngine:
    return SyncEngine(db, classifier=EmailClassifier())


def _sync_one_owner(owner: str, query: str, session_factory: Callable,
                    engine_factory: Callable, locks: OwnerLocks):
    db = session_factory()
    try:
        with locks.hold(owner):
            engine = engine_factory(db)
            return engine.sync_owner(
                owner,
                SyncOptions(query_override=query, skip_cursor_advance=True)
            )
    finally:
        db.close()


def run_daily_sweep(
    session_factory: Callable = SessionLocal,
    engine_factory: Callable = default_engine_factory,
    tz_name: Optional[str] = None,
    max_workers: Optional[int] = None,
    locks: Optional[OwnerLocks] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Sync every connected owner for the previous civil day.

    Owners run on a bounded thread pool, each with its own session and
    holding its owner lock. A missing credential or any other failure is
    logged and the sweep moves on.

    Returns:
        {owner: fetched_count or None when that owner failed}
    """
    tz_name = tz_name or config.GMAIL_CRON_TIMEZONE
    locks = locks or owner_locks

    db = session_factory()
    try:
        owners = CredentialStore(db).list_owners()
    finally:
        db.close()

    if not owners:
        logger.info("[Cron] skipped: no connected Gmail accounts.")
        return {}

    after, before = previous_day_window(tz_name, now)
    query = f"after:{after} before:{before}"
    logger.info(
        '[Cron] starting scheduled Gmail fetch for %d account(s), range "%s".',
        len(owners), query
    )

    results = {}
    with ThreadPoolExecutor(max_workers=max_workers or config.SWEEP_MAX_WORKERS) as pool:
        futures = {
            pool.submit(_sync_one_owner, owner, query, session_factory, engine_factory, locks): owner
            for owner in owners
        }
        for future in as_completed(futures):
            owner = futures[future]
            try:
                result = future.result()
            except CredentialMissing:
                logger.warning("Scheduled fetch skipped for %s: Gmail tokens missing.", owner)
                results[owner] = None
            except Exception:
                logger.exception("Scheduled Gmail fetch failed for %s", owner)
                results[owner] = None
            else:
                logger.info("[Cron] Completed scheduled fetch for %s.", owner)
                results[owner] = result.fetched_count

    return results


def start_scheduler(cron: Optional[str] = None, tz_name: Optional[str] = None) -> BackgroundScheduler:
    """
    Start the daily sweep scheduler (no-op if already running).

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    cron = cron or config.GMAIL_CRON_SCHEDULE
    tz_name = tz_name or config.GMAIL_CRON_TIMEZONE

    _scheduler = BackgroundScheduler(timezone=tz_name)
    _scheduler.add_job(
        run_daily_sweep,
        trigger=CronTrigger.from_crontab(cron, timezone=tz_name),
        id="gmail_daily_sweep",
        name="Daily Gmail sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info('Scheduled Gmail fetch with cron "%s" (%s).', cron, tz_name)

    return _scheduler


def stop_scheduler() -> None:
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")
