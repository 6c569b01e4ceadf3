# api/main.py
from fastapi import FastAPI, Depends, Query, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import os
from dotenv import load_dotenv
from .auth import get_api_key
from .rate_limit import register_rate_limit, limiter, API_RATE_LIMIT
from crawler.config import SECTIONS
from crawler.db import get_db, COUNTS_DOC_ID
from crawler.models import SuggestionRecord
import logging

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))

app = FastAPI(title="Vine Monitor API", version="1.0")

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)

ITEM_FIELDS = ["asin", "section", "name", "url", "image_url", "seen_at", "suggested_at"]


def _iso(v):
    return v.isoformat() if hasattr(v, "isoformat") else v


def item_doc_to_resp(doc):
    """
    Transform a stored item document into an API response dictionary.

    The document is validated as a SuggestionRecord, which drops internal
    fields such as ``_id`` and renders timestamps as ISO 8601 strings.

    Args:
        doc (dict): Raw ``vine_items`` document

    Returns:
        dict: Public item fields
    """
    fields = {k: doc[k] for k in ITEM_FIELDS if doc.get(k) is not None}
    return SuggestionRecord(**fields).model_dump(mode="json")


@app.get("/items", dependencies=[Depends(get_api_key)])
@limiter.limit(API_RATE_LIMIT)
async def list_items(
    request: Request,
    section: Optional[str] = Query(None),
    suggested: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
):
    """
    List stored items, newest first.

    Args:
        section (str, optional): Only items first seen in this section
        suggested (bool, optional): True for items already recommended,
            False for items never recommended
        page (int): Page number, >= 1
        page_size (int): Items per page, 1-200

    Returns:
        dict: page, page_size, total and results
    """
    if section is not None and section not in SECTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown section {section}")
    db = get_db()

    q = {}
    if section:
        q["section"] = section
    if suggested is True:
        q["suggested_at"] = {"$ne": None}
    elif suggested is False:
        q["suggested_at"] = None

    total = await db.vine_items.count_documents(q)
    skip = (page - 1) * page_size
    docs = (
        await db.vine_items.find(q)
        .sort([("seen_at", -1)])
        .skip(skip)
        .limit(page_size)
        .to_list(length=page_size)
    )
    return {
        "page": page,
        "page_size": page_size,
        "total": total,
        "results": [item_doc_to_resp(d) for d in docs],
    }


@app.get("/items/{asin}", dependencies=[Depends(get_api_key)])
@limiter.limit(API_RATE_LIMIT)
async def get_item(request: Request, asin: str):
    """Retrieve one item by ASIN (case-insensitive). 404 when unknown."""
    db = get_db()
    doc = await db.vine_items.find_one({"asin": asin.strip().upper()})
    if not doc:
        raise HTTPException(status_code=404, detail="Item not found")
    return item_doc_to_resp(doc)


@app.get("/status", dependencies=[Depends(get_api_key)])
@limiter.limit(API_RATE_LIMIT)
async def get_status(request: Request):
    """Last observed section counts and the size of the stored state."""
    db = get_db()
    meta = await db.meta.find_one({"_id": COUNTS_DOC_ID}) or {}
    return {
        "section_counts": meta.get("counts"),
        "counts_updated_at": _iso(meta.get("updated_at")),
        "items": await db.vine_items.count_documents({}),
        "suggested": await db.vine_items.count_documents({"suggested_at": {"$ne": None}}),
        "category_snapshot_rows": await db.category_counts.count_documents({}),
    }


@app.get("/categories", dependencies=[Depends(get_api_key)])
@limiter.limit(API_RATE_LIMIT)
async def get_categories(request: Request):
    """Category count snapshot rows used to skip unchanged subtrees."""
    db = get_db()
    docs = await db.category_counts.find({}).sort([("_id", 1)]).to_list(length=None)
    return {
        "results": [
            {
                "key": d["_id"],
                "pn": d.get("pn"),
                "cn": d.get("cn"),
                "name": d.get("name"),
                "count": d.get("count"),
                "updated_at": _iso(d.get("updated_at")),
            }
            for d in docs
        ]
    }


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
