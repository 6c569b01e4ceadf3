# tests/test_api.py
import pytest
from httpx import AsyncClient

HEADERS = {"X-API-Key": "testapikey"}


@pytest.mark.asyncio
async def test_list_items_no_filters(client: AsyncClient):
    """
    Test listing every stored item without filters.

    Verifies that GET /items returns all suggestion records, newest first.

    Args:
        client (AsyncClient): Async HTTP client fixture for making API requests

    Asserts:
        - Response status code is 200 (OK)
        - Total count matches the stored items (3)
        - Results are ordered by seen_at descending
    """
    r = await client.get("/items", headers=HEADERS)
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 3
    assert [i["asin"] for i in data["results"]] == ["B0AAAAAAA3", "B0AAAAAAA2", "B0AAAAAAA1"]
    assert "_id" not in data["results"][0]


@pytest.mark.asyncio
async def test_list_items_section_filter(client: AsyncClient):
    r = await client.get("/items?section=additional", headers=HEADERS)
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 2
    assert {i["name"] for i in data["results"]} == {"Beta Kettle", "Gamma Cable"}


@pytest.mark.asyncio
async def test_list_items_unknown_section(client: AsyncClient):
    r = await client.get("/items?section=bargains", headers=HEADERS)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_list_items_suggested_filter(client: AsyncClient):
    """
    Test filtering on whether an item was already recommended.

    Asserts:
        - suggested=true returns only the recommended item
        - suggested=false returns the two items never recommended
    """
    r = await client.get("/items?suggested=true", headers=HEADERS)
    assert [i["asin"] for i in r.json()["results"]] == ["B0AAAAAAA1"]

    r = await client.get("/items?suggested=false", headers=HEADERS)
    data = r.json()
    assert data["total"] == 2
    assert all(i["suggested_at"] is None for i in data["results"])


@pytest.mark.asyncio
async def test_list_items_pagination(client: AsyncClient):
    r = await client.get("/items?page=2&page_size=2", headers=HEADERS)
    assert r.status_code == 200
    data = r.json()
    assert data["page"] == 2
    assert data["total"] == 3
    assert [i["asin"] for i in data["results"]] == ["B0AAAAAAA1"]


@pytest.mark.asyncio
async def test_get_item_case_insensitive(client: AsyncClient):
    r = await client.get("/items/b0aaaaaaa1", headers=HEADERS)
    assert r.status_code == 200
    data = r.json()
    assert data["name"] == "Alpha Lamp"
    assert data["suggested_at"].startswith("2025-01-01T00:05:00")


@pytest.mark.asyncio
async def test_item_response_shape(client: AsyncClient):
    """
    Test that item responses expose exactly the suggestion record fields.

    Asserts:
        - Internal Mongo fields are not returned
        - Timestamps are ISO 8601 strings
    """
    r = await client.get("/items/B0AAAAAAA2", headers=HEADERS)
    data = r.json()
    assert set(data) == {"asin", "section", "name", "url", "image_url", "seen_at", "suggested_at"}
    assert data["seen_at"].startswith("2025-01-02T00:00:00")
    assert data["suggested_at"] is None
    assert data["image_url"] is None


@pytest.mark.asyncio
async def test_get_item_not_found(client: AsyncClient):
    r = await client.get("/items/B0ZZZZZZZ9", headers=HEADERS)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_status(client: AsyncClient):
    """
    Test the status summary.

    Asserts:
        - Last section counts are reported as stored
        - Item, suggested and snapshot row totals reflect the store
    """
    r = await client.get("/status", headers=HEADERS)
    assert r.status_code == 200
    data = r.json()
    assert data["section_counts"] == {"recommended": 1, "available": 0, "additional": 2}
    assert data["items"] == 3
    assert data["suggested"] == 1
    assert data["category_snapshot_rows"] == 2


@pytest.mark.asyncio
async def test_categories(client: AsyncClient):
    r = await client.get("/categories", headers=HEADERS)
    assert r.status_code == 200
    rows = r.json()["results"]
    assert [row["key"] for row in rows] == ["100", "100:7"]
    assert rows[1] == {
        "key": "100:7",
        "pn": "100",
        "cn": "7",
        "name": "Lamps",
        "count": 3,
        "updated_at": None,
    }


@pytest.mark.asyncio
async def test_unauthorized_access(client: AsyncClient):
    """
    Test that requests without, or with a wrong, API key are rejected.

    Asserts:
        - Missing X-API-Key header gives 401 (Unauthorized)
        - Wrong key gives 403 (Forbidden)
    """
    r = await client.get("/items")
    assert r.status_code == 401
    r = await client.get("/items", headers={"X-API-Key": "wrong"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_validation_error_for_bad_query_param(client: AsyncClient):
    r = await client.get("/items?page=notint", headers=HEADERS)
    assert r.status_code == 422
