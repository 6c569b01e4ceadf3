# crawler/db.py
from datetime import datetime, timezone
import os
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from .models import SectionCounts, snapshot_key
from .utils import normalize_asins

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "vine_monitor")

COUNTS_DOC_ID = "last_section_counts"

_client = None
_db = None


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


def close_client():
    """
    Close the MongoDB client and drop the cached singletons.

    The next get_client()/get_db() call opens a fresh connection.
    """
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes():
    """Unique index on asin so every product has one suggestion record."""
    db = get_db()
    await db.vine_items.create_index("asin", unique=True)


async def already_seen(asins):
    """
    Return the subset of ``asins`` that already have a suggestion record.

    Identifiers are compared upper-cased. Empty input returns an empty set
    without touching the database; otherwise this is a single ``$in`` query.
    """
    asins = normalize_asins(asins)
    if not asins:
        return set()
    db = get_db()
    cursor = db.vine_items.find({"asin": {"$in": asins}}, {"asin": 1})
    docs = await cursor.to_list(length=None)
    return {d["asin"] for d in docs}


async def upsert_items(items, suggested_asins):
    """
    Persist items from a cycle and flag the ones included in a notification.

    Section and first-seen time are only written on insert, so the section an
    item was first observed in is kept. ``suggested_at`` is only set where it
    is still null and is never cleared.
    """
    db = get_db()
    now = datetime.now(timezone.utc)
    for item in items:
        await db.vine_items.update_one(
            {"_id": item.asin},
            {
                "$set": {
                    "name": item.name,
                    "url": item.url,
                    "image_url": item.image_url,
                },
                "$setOnInsert": {
                    "asin": item.asin,
                    "section": item.section,
                    "seen_at": item.seen_at,
                    "suggested_at": None,
                },
            },
            upsert=True,
        )
    suggested = normalize_asins(suggested_asins)
    if suggested:
        await db.vine_items.update_many(
            {"asin": {"$in": suggested}, "suggested_at": None},
            {"$set": {"suggested_at": now}},
        )


async def get_last_section_counts():
    """Last persisted section counts, or None before the first run."""
    db = get_db()
    doc = await db.meta.find_one({"_id": COUNTS_DOC_ID})
    if not doc or not doc.get("counts"):
        return None
    return SectionCounts(**doc["counts"])


async def set_last_section_counts(counts):
    """
    Store the section counts used as the baseline for the next detection.

    Args:
        counts (SectionCounts): Counts observed this cycle
    """
    db = get_db()
    await db.meta.update_one(
        {"_id": COUNTS_DOC_ID},
        {
            "$set": {
                "counts": counts.model_dump(),
                "updated_at": datetime.now(timezone.utc),
            }
        },
        upsert=True,
    )


async def get_category_snapshot():
    """Map of snapshot key -> last committed item count."""
    db = get_db()
    docs = await db.category_counts.find({}).to_list(length=None)
    return {d["_id"]: d["count"] for d in docs}


async def set_category_snapshot(pn, cn, count, name):
    """
    Upsert one category snapshot row keyed by ``pn`` or ``pn:cn``.

    Args:
        pn (str): Top-level category id
        cn (str, optional): Subcategory id, None for the category row
        count (int): Item count committed for the subtree
        name (str): Human-readable subtree name
    """
    db = get_db()
    await db.category_counts.update_one(
        {"_id": snapshot_key(pn, cn)},
        {
            "$set": {
                "pn": str(pn),
                "cn": str(cn) if cn else None,
                "count": count,
                "name": name,
                "updated_at": datetime.now(timezone.utc),
            }
        },
        upsert=True,
    )


async def prune_category_snapshot(valid_keys, visited_category_ids):
    """
    Drop snapshot rows the current cycle could not confirm.

    Removes every row whose key was not seen in this cycle's filter, and every
    subcategory row under a category that was not entered this cycle (its
    child set is unknown without visiting it).
    """
    db = get_db()
    await db.category_counts.delete_many({"_id": {"$nin": sorted(valid_keys)}})
    await db.category_counts.delete_many(
        {"pn": {"$nin": sorted(visited_category_ids)}, "cn": {"$ne": None}}
    )


async def clear_db():
    """Remove all items, meta and category snapshot rows."""
    db = get_db()
    await db.vine_items.delete_many({})
    await db.meta.delete_many({})
    await db.category_counts.delete_many({})
