# crawler/detector.py
import logging

from .config import SECTIONS
from . import db

logger = logging.getLogger("crawler")


def should_crawl(previous, current):
    """
    Decide whether a full crawl is warranted.

    True on the first run (no previous counts) or when any section's count
    went up. Drops and unchanged counts do not trigger a crawl.
    """
    if previous is None:
        return True
    return any(current.get(s) > previous.get(s) for s in SECTIONS)


async def check_for_increase(current):
    """
    Compare ``current`` against the stored baseline.

    When no crawl is needed, ``current`` is stored as the new baseline so a
    later increase is measured against it.
    """
    previous = await db.get_last_section_counts()
    if should_crawl(previous, current):
        if previous is None:
            logger.info("No previous section counts; running full crawl")
        else:
            logger.info(f"Section count increased ({previous} -> {current}); running full crawl")
        return True
    logger.info("No section count increase; skipping full crawl")
    await db.set_last_section_counts(current)
    return False
