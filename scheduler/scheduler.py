# scheduler/scheduler.py
import argparse
import asyncio
from datetime import datetime, timezone
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from crawler import db
from crawler.config import CHECK_INTERVAL_MIN, CHECK_INTERVAL_MAX
from crawler.cycle import run_cycle
from crawler.oracle import PreferenceOracle
from crawler.session import BrowserSession
from scheduler.reporter import notify_recommendations


logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)


async def scheduled_crawl(session, oracle, force=False):
    """
    Execute one monitoring cycle and notify about appealing items.

    The session is owned by the caller and stays open afterwards. Any error
    is logged and swallowed here; the next scheduled tick is the retry.

    Args:
        session (PageSession): Long-lived browser session
        oracle (PreferenceOracle): Classifier used by the cycle
        force (bool): Crawl even when no section count increased

    Returns:
        CycleResult or None
    """
    logger.info("Starting monitoring cycle")
    try:
        result = await run_cycle(session, oracle, force=force)
        if result is None:
            return None
        logger.info(
            f"Cycle finished: {result.new_item_count} new, "
            f"{len(result.appealing)} appealing"
        )
        await notify_recommendations(result)
        return result
    except Exception:
        logger.exception("Cycle failed")
        return None


def build_scheduler(session, oracle):
    """
    Configure the interval job.

    Ticks every CHECK_INTERVAL_MIN minutes plus a random jitter of up to
    CHECK_INTERVAL_MAX - CHECK_INTERVAL_MIN minutes. ``max_instances=1``
    keeps cycles from overlapping on the shared session.
    """
    scheduler = AsyncIOScheduler()
    jitter = max(0, CHECK_INTERVAL_MAX - CHECK_INTERVAL_MIN) * 60
    scheduler.add_job(
        scheduled_crawl,
        "interval",
        minutes=CHECK_INTERVAL_MIN,
        jitter=jitter or None,
        args=[session, oracle],
        id="vine_monitor",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler


async def async_main(once=False, clear=False):
    if clear:
        await db.clear_db()
        logger.info("DB cleared (vine_items, meta, category_counts).")
        db.close_client()
        return

    await db.ensure_indexes()
    oracle = PreferenceOracle()
    session = await BrowserSession().start()
    try:
        if once:
            await scheduled_crawl(session, oracle, force=True)
            return
        scheduler = build_scheduler(session, oracle)
        scheduler.start()
        logger.info(
            f"Scheduler started (every {CHECK_INTERVAL_MIN}-{CHECK_INTERVAL_MAX} min)"
        )
        # Keep program running forever
        await asyncio.Event().wait()
    finally:
        await session.close()
        db.close_client()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Amazon Vine new-item monitor")
    parser.add_argument("--once", action="store_true", help="run a single full cycle and exit")
    parser.add_argument("--clear-db", action="store_true", help="delete all stored state and exit")
    args = parser.parse_args(argv)
    try:
        asyncio.run(async_main(once=args.once, clear=args.clear_db))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
