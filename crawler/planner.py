# crawler/planner.py
import logging
import re

from .config import PARTS_ACCESSORIES_THRESHOLD
from .crawler import INCOMPLETE_STOPS
from .models import CategoryCrawlResult, SnapshotUpdate, snapshot_key
from .session import NavigationError
from .parsers import (
    has_category_filter,
    parse_subcategories,
    parse_top_level_categories,
    parse_total_count,
)
from .utils import shuffled

logger = logging.getLogger("planner")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

_PARTS_RE = re.compile(r"\bparts?\b.*\baccessor", re.IGNORECASE)


class UnchangedCountSkip:
    """
    Skip a leaf whose item count equals the last committed snapshot.

    A stable count is taken to mean a stable item set. That is not always
    true (items can churn under the same total), so this policy can miss new
    items; it exists to keep crawl cost down.
    """

    def reason(self, key, name, count, snapshot):
        if count is not None and key in snapshot and snapshot[key] == count:
            return f"count unchanged ({count})"
        return None


class PartsAccessoriesSkip:
    """Skip oversized mixed "parts & accessories" buckets."""

    def __init__(self, threshold=PARTS_ACCESSORIES_THRESHOLD):
        self.threshold = threshold

    def reason(self, key, name, count, snapshot):
        if count is not None and count > self.threshold and _PARTS_RE.search(name or ""):
            return f"parts/accessories bucket with {count} items"
        return None


DEFAULT_SKIP_POLICIES = (UnchangedCountSkip(), PartsAccessoriesSkip())


class CategoryPlanner:
    """
    Decides which category subtrees of a section to crawl this cycle.

    Categories are visited in shuffled order. A category is checked against
    the skip policies with its filter count before it is opened, so an
    unchanged category costs no navigation and is not recorded as entered.
    Subcategories are narrowed by the preference oracle, then each one is
    checked the same way before it is paginated with the section crawler.

    Snapshot updates are only collected here; the caller commits them. A leaf
    stopped by the budget or by a failed page load gets no update, and a
    category only gets its own row once all of its selected subcategories
    were fully observed.
    """

    def __init__(self, crawler, oracle, snapshot, skip_policies=DEFAULT_SKIP_POLICIES):
        self.crawler = crawler
        self.oracle = oracle
        self.snapshot = snapshot or {}
        self.skip_policies = list(skip_policies)

    def skip_reason(self, key, name, count):
        for policy in self.skip_policies:
            reason = policy.reason(key, name, count, self.snapshot)
            if reason:
                return reason
        return None

    async def _crawl_flat(self, section, html, count, budget, seen, on_items, result):
        async for chunk in self.crawler.crawl_leaf(section, html, count, budget, seen):
            for it in chunk:
                result.items[it.asin] = it
            await on_items(chunk)
        result.collected = len(self.crawler.last_leaf.collected)

    async def crawl(self, section, html, total_count, budget=None, seen=None, on_items=None):
        """
        Crawl a hierarchical section.

        Args:
            section (str): Section whose first page is loaded in ``html``
            html (str): HTML of the section's first listing page
            total_count (int): Section result count, used for a flat fallback
            budget (int, optional): Max distinct items collected across leaves
            seen (callable, optional): Per-page seen predicate
            on_items (callable, optional): async callback receiving each
                unseen chunk as soon as it is crawled

        Returns:
            CategoryCrawlResult: merged unseen items, pending snapshot updates,
            every subtree key observed in the filter and the ids of the
            categories entered.
        """
        result = CategoryCrawlResult()
        on_items = on_items or _noop

        categories = parse_top_level_categories(html) if has_category_filter(html) else []
        if not categories:
            logger.info(f"[{section}] no category filter; crawling the whole section")
            await self._crawl_flat(section, html, total_count, budget, seen, on_items, result)
            return result

        categories = shuffled(categories)
        logger.info(f"[{section}] {len(categories)} top-level categories (shuffled)")
        for cat in categories:
            result.observed_keys.add(snapshot_key(cat.pn))

        collected = 0
        for cat in categories:
            if budget is not None and collected >= budget:
                logger.info(f"[{section}] budget exhausted; not entering further categories")
                break

            cat_key = snapshot_key(cat.pn)
            reason = self.skip_reason(cat_key, cat.name, cat.count)
            if reason:
                logger.info(f"[{section}] skip category {cat.name} ({cat_key}): {reason}")
                continue

            try:
                cat_html = await self.crawler.load(self.crawler.category_url(section, cat.pn))
            except NavigationError as e:
                logger.warning(f"[{section}] could not open category {cat.name}: {e}")
                continue
            result.entered_category_ids.add(cat.pn)
            subs = parse_subcategories(cat_html)
            for sub in subs:
                result.observed_keys.add(snapshot_key(cat.pn, sub.cn))

            if not subs:
                leaves = [(cat.pn, None, cat.name, cat.count, cat_html)]
            else:
                picked = await self.oracle.filter_subcategories(cat.name, [s.name for s in subs])
                chosen = [s for s in subs if s.name in set(picked)]
                if not chosen:
                    logger.info(f"[{section}] {cat.name}: no appealing subcategories; skipping")
                    continue
                logger.info(
                    f"[{section}] {cat.name}: {len(chosen)} of {len(subs)} subcategories selected"
                )
                leaves = [(cat.pn, s.cn, s.name, s.count, None) for s in shuffled(chosen)]

            complete = True
            for pn, cn, name, count, leaf_html in leaves:
                if budget is not None and collected >= budget:
                    complete = False
                    break
                key = snapshot_key(pn, cn)
                if cn:
                    reason = self.skip_reason(key, name, count)
                    if reason:
                        logger.info(f"[{section}] skip {name} ({key}): {reason}")
                        continue

                if leaf_html is None:
                    try:
                        leaf_html = await self.crawler.load(self.crawler.category_url(section, pn, cn))
                    except NavigationError as e:
                        logger.warning(f"[{section}] could not open {name}: {e}")
                        complete = False
                        continue
                leaf_count = parse_total_count(leaf_html) or count or 0
                remaining = None if budget is None else budget - collected
                async for chunk in self.crawler.crawl_leaf(
                    section, leaf_html, leaf_count, remaining, seen, label=f"{section}/{name}"
                ):
                    for it in chunk:
                        result.items[it.asin] = it
                    await on_items(chunk)

                leaf = self.crawler.last_leaf
                collected += len(leaf.collected)
                result.collected = collected
                if leaf.stop_reason in INCOMPLETE_STOPS:
                    logger.info(
                        f"[{section}] {name}: stopped early ({leaf.stop_reason}); snapshot not updated"
                    )
                    complete = False
                    continue
                result.pending_updates.append(
                    SnapshotUpdate(pn=pn, cn=cn, count=count if count is not None else leaf_count, name=name)
                )

            if subs and complete and cat.count is not None:
                result.pending_updates.append(
                    SnapshotUpdate(pn=cat.pn, count=cat.count, name=cat.name)
                )

        logger.info(
            f"[{section}] category crawl done: {len(result.items)} unseen item(s), "
            f"{len(result.pending_updates)} snapshot update(s)"
        )
        return result


async def _noop(items):
    return None
