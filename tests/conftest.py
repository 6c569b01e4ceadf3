# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

os.environ.setdefault("API_KEY", "testapikey")

from bson import ObjectId
import pytest
from typing import List, Dict, Any
from httpx import ASGITransport, AsyncClient

from crawler.session import NavigationError, PageSession

LISTING = "https://www.amazon.com/vine/vine-items"

_MISSING = object()


def _matches(doc, q):
    """
    Evaluate a subset of MongoDB filter syntax against one document.

    Supports equality (None also matches a missing field) and the
    ``$in``, ``$nin``, ``$ne``, ``$gte`` and ``$lte`` operators.
    """
    for k, cond in (q or {}).items():
        value = doc.get(k, _MISSING)
        present = None if value is _MISSING else value
        if isinstance(cond, dict) and any(op.startswith("$") for op in cond):
            for op, arg in cond.items():
                if op == "$in" and present not in arg:
                    return False
                if op == "$nin" and present in arg:
                    return False
                if op == "$ne" and present == arg:
                    return False
                if op == "$gte" and (present is None or present < arg):
                    return False
                if op == "$lte" and (present is None or present > arg):
                    return False
        elif present != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """Sort by the first (field, direction) pair; missing values sort first."""
        field, direction = order[0]
        self._docs.sort(
            key=lambda d: (d.get(field) is not None, d.get(field)),
            reverse=(direction < 0),
        )
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        start = self._skip
        end = None if self._limit is None else start + self._limit
        return [dict(d) for d in self._docs[start:end]]


class FakeCollection:
    """In-memory stand-in for a Motor collection, enough for the store layer."""

    def __init__(self, docs=None):
        self.docs = list(docs or [])
        self.find_calls = 0
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = str(ObjectId())

    async def create_index(self, *args, **kwargs):
        return "index"

    async def find_one(self, q=None):
        for d in self.docs:
            if _matches(d, q):
                return dict(d)
        return None

    def find(self, q=None, projection=None):
        self.find_calls += 1
        return FakeCursor([d for d in self.docs if _matches(d, q)])

    async def insert_one(self, doc):
        doc = dict(doc)
        if "_id" not in doc:
            doc["_id"] = str(ObjectId())
        self.docs.append(doc)

        class R:
            inserted_id = doc["_id"]

        return R()

    async def update_one(self, q, u, upsert=False):
        """
        Apply ``$set`` to the first match, or insert when ``upsert`` is set.

        On insert the equality fields of the filter, ``$setOnInsert`` and
        ``$set`` are combined into the new document.
        """
        for d in self.docs:
            if _matches(d, q):
                d.update(u.get("$set", {}))
                return {"matched_count": 1}
        if upsert:
            doc = {k: v for k, v in q.items() if not isinstance(v, dict)}
            doc.update(u.get("$setOnInsert", {}))
            doc.update(u.get("$set", {}))
            await self.insert_one(doc)
        return {"matched_count": 0}

    async def update_many(self, q, u):
        n = 0
        for d in self.docs:
            if _matches(d, q):
                d.update(u.get("$set", {}))
                n += 1
        return {"matched_count": n}

    async def delete_many(self, q):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, q)]
        return {"deleted_count": before - len(self.docs)}

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if _matches(d, q))


class FakeDB:
    def __init__(self, vine_items=None, meta=None, category_counts=None):
        self.vine_items = FakeCollection(vine_items or [])
        self.meta = FakeCollection(meta or [])
        self.category_counts = FakeCollection(category_counts or [])


def item_row(asin, name=None):
    return (
        f'<div data-asin="{asin}" class="vvp-item-tile">'
        f'<img src="https://m.media-amazon.com/images/{asin}.jpg"/>'
        f'<a class="a-link-normal" href="/dp/{asin}">'
        f'<span class="a-truncate-full">{name or "Item " + asin}</span></a></div>'
    )


def listing_page(asins, total=None, next_href=None, filter_html=""):
    """Build a listing page with optional result count, next link and category filter."""
    count = f"<p>Displaying 1-{len(asins)} of {total} results</p>" if total is not None else ""
    nxt = (
        f'<ul class="a-pagination"><li class="a-last"><a href="{next_href}">Next</a></li></ul>'
        if next_href
        else ""
    )
    rows = "".join(item_row(a) for a in asins)
    return f"<html><body>{filter_html}{count}<div id='vvp-items'>{rows}</div>{nxt}</body></html>"


def category_filter(categories, selected=None, subcategories=()):
    """
    Render ``#vvp-browse-nodes-container``.

    ``categories`` is a list of (pn, name, count); ``subcategories`` a list of
    (cn, name, count) shown under the ``selected`` pn.
    """
    parts = ['<div id="vvp-browse-nodes-container">']
    for pn, name, count in categories:
        cls = ' class="selectedNode"' if pn == selected else ""
        parts.append(
            f'<div class="parent-node"><a{cls} href="/vine/vine-items?queue=encore&pn={pn}">'
            f"{name}</a><span> ({count})</span></div>"
        )
        if pn == selected:
            for cn, sname, scount in subcategories:
                parts.append(
                    f'<div class="child-node"><a href="/vine/vine-items?queue=encore&pn={pn}&cn={cn}">'
                    f"{sname}</a><span> ({scount})</span></div>"
                )
    parts.append("</div>")
    return "".join(parts)


def asins(prefix, n, start=0):
    """Generate ``n`` valid 10-character identifiers with a 4-character prefix."""
    return [f"{prefix}{i:06d}".upper() for i in range(start, start + n)]


class FakeSession(PageSession):
    """
    Serves canned HTML by URL and records every navigation.

    Unknown URLs raise NavigationError, like a page that never loads.
    """

    def __init__(self, pages):
        self.pages = dict(pages)
        self.visited = []
        self.content_calls = 0
        self._url = None

    @property
    def url(self):
        return self._url

    async def goto(self, url):
        self.visited.append(url)
        if url not in self.pages:
            raise NavigationError(f"timeout loading {url}")
        self._url = url

    async def content(self):
        self.content_calls += 1
        return self.pages[self._url]


class FakeOracle:
    """Records calls; answers from fixed data."""

    def __init__(self, appealing=(), subcategories=None, extra=()):
        self.appealing = {a.upper() for a in appealing}
        self.subcategories = subcategories
        self.extra = list(extra)
        self.classified = []
        self.subcategory_calls = []

    async def classify_appeal(self, items):
        self.classified.append([it.asin for it in items])
        return [it.asin for it in items if it.asin in self.appealing] + self.extra

    async def filter_subcategories(self, category, names):
        self.subcategory_calls.append((category, list(names)))
        if self.subcategories is None:
            return list(names)
        return [n for n in names if n in self.subcategories]


@pytest.fixture
def fake_db(monkeypatch):
    """Empty FakeDB patched in as the store for crawler.db."""
    db = FakeDB()
    monkeypatch.setattr("crawler.db.get_db", lambda: db)
    return db


@pytest.fixture
def sample_items():
    return [
        {
            "_id": "B0AAAAAAA1",
            "asin": "B0AAAAAAA1",
            "section": "recommended",
            "name": "Alpha Lamp",
            "url": "https://www.amazon.com/dp/B0AAAAAAA1",
            "image_url": None,
            "seen_at": "2025-01-01T00:00:00+00:00",
            "suggested_at": "2025-01-01T00:05:00+00:00",
        },
        {
            "_id": "B0AAAAAAA2",
            "asin": "B0AAAAAAA2",
            "section": "additional",
            "name": "Beta Kettle",
            "url": "https://www.amazon.com/dp/B0AAAAAAA2",
            "image_url": None,
            "seen_at": "2025-01-02T00:00:00+00:00",
            "suggested_at": None,
        },
        {
            "_id": "B0AAAAAAA3",
            "asin": "B0AAAAAAA3",
            "section": "additional",
            "name": "Gamma Cable",
            "url": "https://www.amazon.com/dp/B0AAAAAAA3",
            "image_url": None,
            "seen_at": "2025-01-03T00:00:00+00:00",
            "suggested_at": None,
        },
    ]


@pytest.fixture
async def client(monkeypatch, sample_items):
    """
    Async API client over a FakeDB holding ``sample_items``.

    Requests must send ``X-API-Key: testapikey``.
    """
    from api import main as api_main
    from api import auth

    db = FakeDB(
        vine_items=sample_items,
        meta=[
            {
                "_id": "last_section_counts",
                "counts": {"recommended": 1, "available": 0, "additional": 2},
            }
        ],
        category_counts=[
            {"_id": "100", "pn": "100", "cn": None, "name": "Home", "count": 12},
            {"_id": "100:7", "pn": "100", "cn": "7", "name": "Lamps", "count": 3},
        ],
    )
    monkeypatch.setattr("api.main.get_db", lambda: db)
    monkeypatch.setattr(auth, "API_KEY", "testapikey")
    api_main.limiter.enabled = False

    transport = ASGITransport(app=api_main.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    api_main.limiter.enabled = True
