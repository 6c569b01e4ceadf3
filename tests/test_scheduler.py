# tests/test_scheduler.py
from datetime import timedelta

import pytest
from crawler.models import CycleResult, SectionCounts
from scheduler import scheduler as sched


def empty_result():
    return CycleResult(section_counts=SectionCounts(), all_items={}, appealing=[], new_item_count=0)


@pytest.mark.asyncio
async def test_scheduled_crawl_notifies_after_cycle(monkeypatch):
    calls = []
    result = empty_result()

    async def fake_cycle(session, oracle, force=False):
        calls.append(("cycle", force))
        return result

    async def fake_notify(res):
        calls.append(("notify", res))
        return False

    monkeypatch.setattr(sched, "run_cycle", fake_cycle)
    monkeypatch.setattr(sched, "notify_recommendations", fake_notify)

    assert await sched.scheduled_crawl(object(), object(), force=True) is result
    assert calls == [("cycle", True), ("notify", result)]


@pytest.mark.asyncio
async def test_skipped_cycle_sends_nothing(monkeypatch):
    notified = []

    async def skipped(session, oracle, force=False):
        return None

    async def fake_notify(res):
        notified.append(res)

    monkeypatch.setattr(sched, "run_cycle", skipped)
    monkeypatch.setattr(sched, "notify_recommendations", fake_notify)

    assert await sched.scheduled_crawl(object(), object()) is None
    assert notified == []


@pytest.mark.asyncio
async def test_cycle_error_is_logged_not_raised(monkeypatch, caplog):
    async def broken(session, oracle, force=False):
        raise RuntimeError("browser crashed")

    monkeypatch.setattr(sched, "run_cycle", broken)

    assert await sched.scheduled_crawl(object(), object()) is None
    assert "Cycle failed" in caplog.text


@pytest.mark.asyncio
async def test_build_scheduler_job(monkeypatch):
    monkeypatch.setattr(sched, "CHECK_INTERVAL_MIN", 5)
    monkeypatch.setattr(sched, "CHECK_INTERVAL_MAX", 45)

    scheduler = sched.build_scheduler(object(), object())
    job = scheduler.get_job("vine_monitor")

    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.trigger.interval == timedelta(minutes=5)
    assert job.trigger.jitter == 40 * 60


@pytest.mark.asyncio
async def test_clear_db_flag(monkeypatch, fake_db):
    from crawler import db

    await db.set_category_snapshot("1", None, 3, "One")
    closed = []
    monkeypatch.setattr(db, "close_client", lambda: closed.append(True))

    await sched.async_main(clear=True)

    assert fake_db.category_counts.docs == []
    assert closed == [True]
