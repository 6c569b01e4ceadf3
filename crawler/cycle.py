# crawler/cycle.py
import logging

from .config import (
    AI_BATCH_SIZE,
    AI_MAX_ITEMS_PER_RUN,
    CATEGORY_SECTIONS,
    SECTIONS,
)
from .crawler import Crawler
from .detector import check_for_increase
from .dispatch import BatchDispatcher, reconcile
from .models import CycleResult, CategoryCrawlResult, SectionCounts
from .planner import CategoryPlanner, DEFAULT_SKIP_POLICIES
from .resolver import UnseenResolver
from . import db

logger = logging.getLogger("crawler")


async def crawl_sections(crawler, planner, dispatcher, seen, max_items):
    """
    Crawl every section in order, streaming unseen chunks to the dispatcher.

    Returns:
        tuple: (SectionCounts, dict of unseen items by ASIN, CategoryCrawlResult
        merged across hierarchical sections)
    """
    counts = {}
    all_items = {}
    categories = CategoryCrawlResult()
    collected = 0

    async def on_items(chunk):
        for it in chunk:
            all_items.setdefault(it.asin, it)
        dispatcher.enqueue(chunk)

    for section in SECTIONS:
        html, counts[section] = await crawler.open_section(section)
        if counts[section] <= 0:
            logger.info(f"[{section}] empty; nothing to crawl")
            continue
        budget = max(0, max_items - collected)

        if section in CATEGORY_SECTIONS:
            res = await planner.crawl(section, html, counts[section], budget, seen, on_items)
            categories.pending_updates.extend(res.pending_updates)
            categories.observed_keys |= res.observed_keys
            categories.entered_category_ids |= res.entered_category_ids
            collected += res.collected
        else:
            async for chunk in crawler.crawl_leaf(section, html, counts[section], budget, seen):
                await on_items(chunk)
            collected += len(crawler.last_leaf.collected)

    return SectionCounts(**counts), all_items, categories


async def commit_cycle(result, has_category_sections):
    """Persist items, suggestion flags, section counts and category snapshot."""
    await db.upsert_items(result.all_items.values(), result.appealing)
    await db.set_last_section_counts(result.section_counts)
    for update in result.pending_snapshot_updates:
        await db.set_category_snapshot(update.pn, update.cn, update.count, update.name)
    if has_category_sections:
        await db.prune_category_snapshot(
            result.observed_category_keys, result.entered_category_ids
        )


async def run_cycle(session, oracle, force=False, batch_size=AI_BATCH_SIZE,
                    max_items=AI_MAX_ITEMS_PER_RUN, skip_policies=DEFAULT_SKIP_POLICIES):
    """
    Run one detection -> crawl -> dispatch -> reconcile -> commit cycle.

    Args:
        session (PageSession): Browsing context owned by the caller
        oracle (PreferenceOracle): Classifier and subcategory filter
        force (bool): Crawl even when no section count went up
        batch_size (int): Items per classification call
        max_items (int): Cap on items crawled and classified this cycle
        skip_policies (iterable): Leaf skip strategies for the category planner

    Returns:
        CycleResult or None: None when the detector skipped the crawl.

    Note:
        State is committed before any notification is sent. A failed
        notification afterwards leaves the items marked as suggested.
    """
    crawler = Crawler(session)
    current = await crawler.fetch_section_counts()
    if not await check_for_increase(current) and not force:
        return None

    snapshot = await db.get_category_snapshot()
    planner = CategoryPlanner(crawler, oracle, snapshot, skip_policies)
    seen = UnseenResolver()

    async with BatchDispatcher(oracle.classify_appeal, batch_size, max_items) as dispatcher:
        counts, all_items, categories = await crawl_sections(
            crawler, planner, dispatcher, seen, max_items
        )

    appealing = reconcile(dispatcher.results, all_items)
    result = CycleResult(
        section_counts=counts,
        all_items=all_items,
        appealing=appealing,
        new_item_count=len(all_items),
        pending_snapshot_updates=categories.pending_updates,
        observed_category_keys=categories.observed_keys,
        entered_category_ids=categories.entered_category_ids,
    )
    logger.info(
        f"{len(appealing)} of {result.new_item_count} new item(s) appealing "
        f"({dispatcher.classified} classified, {seen.lookups} seen lookup(s))"
    )

    await commit_cycle(result, bool(categories.observed_keys))
    return result
