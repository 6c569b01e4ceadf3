# crawler/parsers.py
"""
HTML extraction for the Vine listing surface.

Every function here takes raw page HTML and returns plain data; none of them
raise on missing structure. An absent element yields an empty list, 0 or
None so the crawler can treat it as "nothing on this page".
"""
import re
from urllib.parse import urljoin, urlparse, parse_qs, urlencode, urlunparse
from bs4 import BeautifulSoup

from .config import PRODUCT_URL
from .models import Item, CategoryNode, SubcategoryNode
from .utils import extract_asin

BROWSE_NODES = "#vvp-browse-nodes-container"

_COUNT_PATTERNS = [
    re.compile(r"\d+\s*-\s*\d+\s+of\s+(\d[\d,]*)", re.IGNORECASE),
    re.compile(r"(?:of|results?)\s*(\d[\d,]*)", re.IGNORECASE),
    re.compile(r"(\d[\d,]*)\s*results?", re.IGNORECASE),
]
_NODE_COUNT_RE = re.compile(r"\(\s*(\d[\d,]*)\s*\)")
_NEXT_SELECTORS = [
    "li.a-last a",
    "a.s-pagination-next:not(.s-pagination-disabled)",
    'a[aria-label="Next"]',
]


def _soup(html):
    return BeautifulSoup(html or "", "lxml")


def _to_int(s):
    return int(s.replace(",", ""))


def parse_total_count(html):
    """
    Read the total-result count from the listing text.

    Recognises "Displaying 1-24 of 156 results", "of 156" and "156 results".
    Returns 0 when nothing matches; callers must treat the value as an
    estimate only.
    """
    text = _soup(html).get_text(" ", strip=True)
    for pat in _COUNT_PATTERNS:
        m = pat.search(text)
        if m:
            return _to_int(m.group(1))
    return 0


def parse_max_page(html):
    """Highest ``page=N`` linked from the pagination control, 0 if none."""
    pag = _soup(html).select_one("ul.a-pagination")
    if not pag:
        return 0
    best = 0
    for a in pag.select('a[href*="page="]'):
        m = re.search(r"[?&]page=(\d+)", a.get("href", ""))
        if m:
            best = max(best, int(m.group(1)))
    return best


def _item_name(row):
    for sel in ("h2 a", ".a-truncate-full", "a[href*='/dp/']"):
        el = row.select_one(sel)
        if el:
            name = el.get_text(strip=True)
            if name:
                return name
    return ""


def parse_items(html, section, page_url):
    """
    Extract all item records present on one listing page.

    Rows carrying a ``data-asin`` attribute are preferred. When the page has
    none, every product link (``/dp/<ASIN>``) is used instead. Identifiers
    repeated on the same page are collapsed to their first occurrence.

    Args:
        html (str): Page HTML
        section (str): Section the page belongs to
        page_url (str): URL of the page, used to absolutize links

    Returns:
        list[Item]: Items in page order
    """
    soup = _soup(html)
    items = []
    seen = set()

    for row in soup.select('[data-asin]:not([data-asin=""])'):
        asin = (row.get("data-asin") or "").strip().upper()
        if len(asin) != 10 or asin in seen:
            continue
        seen.add(asin)
        link_el = row.select_one("a[href*='/dp/']")
        link = (
            urljoin(page_url, link_el["href"])
            if link_el
            else PRODUCT_URL.format(asin=asin)
        )
        img = row.select_one("img[src]")
        items.append(
            Item(
                asin=asin,
                section=section,
                name=_item_name(row) or f"Product {asin}",
                url=link,
                image_url=urljoin(page_url, img["src"]) if img else None,
            )
        )

    if items:
        return items

    for a in soup.select("a[href*='/dp/']"):
        href = urljoin(page_url, a.get("href", ""))
        asin = extract_asin(href)
        if not asin or asin in seen:
            continue
        seen.add(asin)
        img = a.select_one("img[src]")
        items.append(
            Item(
                asin=asin,
                section=section,
                name=a.get_text(strip=True) or f"Product {asin}",
                url=href,
                image_url=urljoin(page_url, img["src"]) if img else None,
            )
        )
    return items


def next_page_url(html, current_url, listing_url):
    """
    Work out where the "next page" control leads.

    Follows the pagination link when the page has one. On the listing path
    without such a link, rewrites the ``page`` query parameter of the current
    URL to the following page number. Returns None when neither applies.
    """
    soup = _soup(html)
    for sel in _NEXT_SELECTORS:
        a = soup.select_one(sel)
        if a and a.get("href"):
            return urljoin(current_url, a["href"])

    parsed = urlparse(current_url)
    if parsed.path.rstrip("/") != urlparse(listing_url).path.rstrip("/"):
        return None
    query = parse_qs(parsed.query)
    try:
        current = int(query.get("page", ["1"])[0])
    except ValueError:
        current = 1
    query["page"] = [str(current + 1)]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


def has_category_filter(html):
    return _soup(html).select_one(BROWSE_NODES) is not None


def _node_count(el):
    m = _NODE_COUNT_RE.search(el.get_text(" ", strip=True))
    return _to_int(m.group(1)) if m else None


def parse_top_level_categories(html):
    """Top-level categories (``div.parent-node`` with a ``pn`` link) of the filter."""
    container = _soup(html).select_one(BROWSE_NODES)
    if not container:
        return []
    result = []
    for div in container.select("div.parent-node"):
        a = div.select_one("a[href*='pn=']")
        if not a:
            continue
        m = re.search(r"[?&]pn=(\d+)", a.get("href", ""))
        name = a.get_text(strip=True)
        if m and name:
            result.append(CategoryNode(name=name, pn=m.group(1), count=_node_count(div)))
    return result


def parse_subcategories(html):
    """
    Subcategories of the currently selected category.

    They are the ``div.child-node`` siblings following the selected parent
    node, up to the next ``div.parent-node``.
    """
    container = _soup(html).select_one(BROWSE_NODES)
    if not container:
        return []
    selected = container.select_one("a.selectedNode")
    if not selected:
        return []
    parent = selected.find_parent("div", class_="parent-node")
    if not parent:
        return []
    result = []
    for sib in parent.find_next_siblings("div"):
        classes = sib.get("class") or []
        if "parent-node" in classes:
            break
        if "child-node" not in classes:
            continue
        a = sib.select_one("a[href*='cn=']")
        if not a:
            continue
        m = re.search(r"[?&]cn=(\d+)", a.get("href", ""))
        name = a.get_text(strip=True)
        if m and name:
            result.append(SubcategoryNode(name=name, cn=m.group(1), count=_node_count(sib)))
    return result
