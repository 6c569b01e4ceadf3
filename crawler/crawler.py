# crawler/crawler.py
import logging

from .config import VINE_URL, SECTION_QUEUES, SECTIONS, PAGE_SIZE, PAGE_CAP
from .models import SectionCounts
from .parsers import (
    parse_items,
    parse_max_page,
    parse_total_count,
    next_page_url,
)
from .session import NavigationError
from .utils import page_bound

logger = logging.getLogger("crawler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

STOP_BUDGET = "budget"
STOP_ESCAPE = "escape"
STOP_EMPTY = "empty"
STOP_NO_ADVANCE = "no_advance"
STOP_NAV_ERROR = "nav_error"
STOP_PAGE_BOUND = "page_bound"
# the leaf's item set was only partly observed
INCOMPLETE_STOPS = (STOP_BUDGET, STOP_NAV_ERROR)


class LeafCrawl:
    """Bookkeeping for one paginated crawl of a section or category leaf."""

    def __init__(self, label):
        self.label = label
        self.collected = {}
        self.pages = 0
        self.unseen = 0
        self.stop_reason = STOP_PAGE_BOUND


class Crawler:
    """
    Sequential listing crawler over a single PageSession.

    Navigation is strictly one page at a time; the session is owned by the
    caller and is never shared between concurrent crawls.
    """

    def __init__(self, session, listing_url=VINE_URL, page_size=PAGE_SIZE, page_cap=PAGE_CAP):
        self.session = session
        self.listing_url = listing_url.rstrip("/")
        self.page_size = page_size
        self.page_cap = page_cap
        self.last_leaf = None

    def section_url(self, section):
        """
        Listing URL of a section.

        Args:
            section (str): One of ``recommended``, ``available``, ``additional``

        Returns:
            str: ``<listing>?queue=<queue>`` for the section
        """
        return f"{self.listing_url}?queue={SECTION_QUEUES[section]}"

    def category_url(self, section, pn, cn=None):
        """
        Listing URL filtered to a category, or to a subcategory when ``cn`` is given.

        Args:
            section (str): Section the category filter belongs to
            pn (str): Top-level category id
            cn (str, optional): Subcategory id

        Returns:
            str: Section URL with ``pn`` (and ``cn``) query parameters
        """
        url = f"{self.section_url(section)}&pn={pn}"
        return f"{url}&cn={cn}" if cn else url

    async def load(self, url):
        """Navigate to ``url`` and return its HTML. Raises NavigationError."""
        await self.session.goto(url)
        return await self.session.content()

    async def open_section(self, section):
        """
        Navigate to a section's listing and read its total result count.

        Returns:
            tuple: (html, count) for the first page of the section
        """
        html = await self.load(self.section_url(section))
        return html, parse_total_count(html)

    async def fetch_section_counts(self):
        """Lightweight pass over every section reading only the result counts."""
        counts = {}
        for section in SECTIONS:
            _, counts[section] = await self.open_section(section)
        logger.info(f"Section counts: {counts}")
        return SectionCounts(**counts)

    async def crawl_leaf(self, section, html, total_count, budget=None, seen=None, label=None):
        """
        Paginate the listing currently loaded in the session.

        Yields, per page, the items that are new to this crawl and (when
        ``seen`` is given) not already known to the store. Stops after the
        first page that triggers, in order: the item budget, a page with no
        unseen items (or, without ``seen``, a page whose items were all
        collected earlier in this crawl), an empty page after the first, or
        a pagination control that cannot be advanced. A next page that fails
        to load ends the crawl with ``STOP_NAV_ERROR``, marking the leaf as
        only partly observed.

        Args:
            section (str): Section the listing belongs to
            html (str): HTML of the first page, already loaded
            total_count (int): Estimated total results, used for the page bound
            budget (int, optional): Stop once this many distinct items are collected
            seen (callable, optional): async predicate returning the seen subset
                of a list of identifiers; called once per page
            label (str, optional): Name used in log lines

        Yields:
            list[Item]: Non-empty chunk of unseen items from one page

        Note:
            Bookkeeping for the finished crawl is left on ``self.last_leaf``.
        """
        leaf = LeafCrawl(label or section)
        self.last_leaf = leaf
        if budget is not None and budget <= 0:
            leaf.stop_reason = STOP_BUDGET
            return

        max_pages = page_bound(total_count, self.page_size, self.page_cap, parse_max_page(html))
        logger.info(f"[{leaf.label}] ~{total_count} result(s); up to {max_pages} page(s)")

        for page_num in range(1, max_pages + 1):
            if page_num > 1:
                url = next_page_url(html, self.session.url, self.listing_url)
                if not url:
                    logger.info(f"[{leaf.label}] no next page control after page {page_num - 1}")
                    leaf.stop_reason = STOP_NO_ADVANCE
                    break
                try:
                    await self.session.goto(url)
                except NavigationError as e:
                    logger.warning(f"[{leaf.label}] could not advance to page {page_num}: {e}")
                    leaf.stop_reason = STOP_NAV_ERROR
                    break
                try:
                    html = await self.session.content()
                except NavigationError as e:
                    logger.warning(f"[{leaf.label}] page {page_num} unreadable: {e}")
                    leaf.stop_reason = STOP_NAV_ERROR
                    break

            leaf.pages = page_num
            items = parse_items(html, section, self.session.url)
            fresh = [it for it in items if it.asin not in leaf.collected]
            for it in fresh:
                leaf.collected[it.asin] = it

            unseen = fresh
            if seen is not None and fresh:
                known = await seen([it.asin for it in fresh])
                unseen = [it for it in fresh if it.asin not in known]
            leaf.unseen += len(unseen)
            logger.info(
                f"[{leaf.label}] page {page_num}: {len(items)} item(s), "
                f"{len(fresh)} new to crawl, {len(unseen)} unseen, "
                f"{len(leaf.collected)} collected"
            )
            if unseen:
                yield unseen

            if budget is not None and len(leaf.collected) >= budget:
                logger.info(f"[{leaf.label}] hit budget ({budget}); stopping")
                leaf.stop_reason = STOP_BUDGET
                break
            if seen is not None and not unseen:
                logger.info(f"[{leaf.label}] nothing unseen on page {page_num}; escaping")
                leaf.stop_reason = STOP_ESCAPE if items else STOP_EMPTY
                break
            if not items and page_num > 1:
                logger.info(f"[{leaf.label}] empty page {page_num}; exhausted")
                leaf.stop_reason = STOP_EMPTY
                break
            if seen is None and items and not fresh:
                logger.info(f"[{leaf.label}] page {page_num} repeats collected items; escaping")
                leaf.stop_reason = STOP_ESCAPE
                break

        logger.info(
            f"[{leaf.label}] done after {leaf.pages} page(s): "
            f"{len(leaf.collected)} collected, {leaf.unseen} unseen ({leaf.stop_reason})"
        )
