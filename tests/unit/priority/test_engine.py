"""Tests for the document priority engine."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from contextkit.config import PriorityCfg
from contextkit.models import CacheStrategy
from contextkit.priority.engine import DocumentPriorityEngine
from contextkit.priority.scoring import access_frequency_factor

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine(bridge, writes, **strategy) -> DocumentPriorityEngine:
    return DocumentPriorityEngine(
        bridge,
        writes,
        CacheStrategy(**strategy),
        PriorityCfg(),
        clock=lambda: NOW,
    )


def _row(doc_id: str, priority: float) -> dict:
    return {
        "document_id": doc_id,
        "priority": priority,
        "reason": "seeded",
        "last_updated": NOW.isoformat(),
        "factors": {},
    }


_SEEDED = [
    _row("a", 0.9),
    _row("b", 0.75),
    _row("c", 0.7),
    _row("d", 0.5),
    _row("e", 0.95),
]


async def _seeded_engine(backend, bridge, writes, **strategy) -> DocumentPriorityEngine:
    backend.responses["get_document_priorities"] = _SEEDED
    engine = _engine(bridge, writes, **strategy)
    await engine.load_document_priorities()
    return engine


# ---------------------------------------------------------------------------
# calculate_priority
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_calculate_priority_stores_and_persists(backend, bridge, writes):
    engine = _engine(bridge, writes)
    priority = await engine.calculate_priority(
        "d1",
        access_count=9,
        last_accessed=NOW - timedelta(days=60),
        context_relevance=0.9,
    )

    assert engine.priorities["d1"] is priority
    assert priority.last_updated == NOW
    assert priority.reason == "High context relevance"
    assert 0.0 <= priority.priority <= 1.0

    await writes.flush()
    saved = backend.calls_to("save_document_priority")
    assert len(saved) == 1
    assert saved[0]["priority"]["document_id"] == "d1"
    assert saved[0]["priority"]["last_updated"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_calculate_priority_clamps_high(bridge, writes):
    engine = _engine(bridge, writes)
    priority = await engine.calculate_priority(
        "d1",
        access_count=1000,
        context_relevance=2.0,
        embedding_ready=True,
        user_preference=1.0,
    )
    assert priority.priority == 1.0


@pytest.mark.asyncio
async def test_calculate_priority_clamps_low(bridge, writes):
    engine = _engine(bridge, writes)
    priority = await engine.calculate_priority("d1", last_accessed=NOW - timedelta(days=3650))
    assert priority.priority == 0.0
    assert priority.reason == "Low priority"


@pytest.mark.asyncio
async def test_persistence_failure_does_not_fail_scoring(backend, bridge, writes):
    backend.responses["save_document_priority"] = RuntimeError("db down")
    engine = _engine(bridge, writes)

    priority = await engine.calculate_priority("d1", context_relevance=0.5)
    await writes.flush()

    assert engine.priorities["d1"] is priority
    assert writes.failed == 1


@pytest.mark.asyncio
async def test_rescoring_replaces_entry(bridge, writes):
    engine = _engine(bridge, writes)
    await engine.calculate_priority("d1", context_relevance=0.1)
    second = await engine.calculate_priority("d1", context_relevance=0.9)
    assert engine.priority_count == 1
    assert engine.priorities["d1"] is second


# ---------------------------------------------------------------------------
# load_document_priorities
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_load_priorities_skips_malformed_rows(backend, bridge, writes):
    backend.responses["get_document_priorities"] = [
        _row("a", 0.9),
        {"priority": 0.3},
        {"documentId": "b", "priority": 0.4, "lastUpdated": NOW.isoformat()},
    ]
    engine = _engine(bridge, writes)
    await engine.load_document_priorities()

    assert set(engine.priorities) == {"a", "b"}
    assert engine.priorities["b"].last_updated == NOW


@pytest.mark.asyncio
async def test_load_priorities_failure_keeps_empty_table(backend, bridge, writes):
    backend.responses["get_document_priorities"] = RuntimeError("offline")
    engine = _engine(bridge, writes)
    await engine.load_document_priorities()
    assert engine.priority_count == 0


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_top_priority_documents_sorted_and_thresholded(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes)

    top = engine.get_top_priority_documents()
    assert [p.document_id for p in top] == ["e", "a", "b", "c"]
    assert all(p.priority >= 0.7 for p in top)
    assert engine.high_priority_count == 4


@pytest.mark.asyncio
async def test_top_priority_documents_respects_limit(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes)
    assert [p.document_id for p in engine.get_top_priority_documents(2)] == ["e", "a"]
    assert engine.get_top_priority_documents(0) == []


@pytest.mark.asyncio
async def test_cached_documents_and_should_cache(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes, max_cached_documents=2)

    assert engine.get_cached_documents() == ["e", "a"]
    assert engine.should_cache_document("c") is True
    assert engine.should_cache_document("d") is False
    assert engine.should_cache_document("unknown") is False


# ---------------------------------------------------------------------------
# update_document_access
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_document_access_increments_and_records(backend, bridge, writes):
    backend.responses["get_document_info"] = {
        "access_count": 4,
        "file_size": 0,
        "embedding_status": "completed",
    }
    engine = _engine(bridge, writes)

    priority = await engine.update_document_access("d1", 0.8)

    assert priority is not None
    assert priority.factors.access_frequency == pytest.approx(access_frequency_factor(5))
    assert priority.factors.embedding_status == 1.0
    assert priority.factors.context_relevance == 0.8
    assert backend.calls_to("update_document_access") == [
        {"documentId": "d1", "accessCount": 5, "lastAccessed": NOW.isoformat()}
    ]


@pytest.mark.asyncio
async def test_update_document_access_failure_returns_none(backend, bridge, writes):
    backend.responses["get_document_info"] = RuntimeError("missing")
    engine = _engine(bridge, writes)

    assert await engine.update_document_access("d1") is None
    assert engine.priority_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("info", [{"last_accessed": "not-a-date"}, ["unexpected"], {"access_count": "many"}])
async def test_update_document_access_unexpected_info_returns_none(backend, bridge, writes, info):
    backend.responses["get_document_info"] = info
    engine = _engine(bridge, writes)

    assert await engine.update_document_access("d1") is None
    assert engine.priority_count == 0
    assert backend.calls_to("update_document_access") == []


# ---------------------------------------------------------------------------
# Cache management
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_evict_lowest_beyond_capacity(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes, max_cached_documents=2)

    evicted = await engine.evict_low_priority_documents()

    assert evicted == ["d", "c", "b"]
    assert [a["documentId"] for a in backend.calls_to("evict_document_from_cache")] == ["d", "c", "b"]
    assert engine.priority_count == 5


@pytest.mark.asyncio
async def test_evict_nothing_within_capacity(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes, max_cached_documents=10)
    assert await engine.evict_low_priority_documents() == []
    assert backend.calls_to("evict_document_from_cache") == []


@pytest.mark.asyncio
async def test_evict_continues_past_failures(backend, bridge, writes):
    def evict(documentId):
        if documentId == "c":
            raise RuntimeError("locked")
        return True

    engine = await _seeded_engine(backend, bridge, writes, max_cached_documents=2)
    backend.responses["evict_document_from_cache"] = evict

    assert await engine.evict_low_priority_documents() == ["d", "b"]


@pytest.mark.asyncio
async def test_preload_similar_documents(backend, bridge, writes):
    backend.responses["get_similar_documents"] = ["s1", "s2"]
    backend.responses["get_document_info"] = {}
    engine = _engine(bridge, writes)

    ids = await engine.preload_similar_documents("d1")

    assert ids == ["s1", "s2"]
    assert backend.calls_to("get_similar_documents") == [{"documentId": "d1", "limit": 3}]
    assert engine.priorities["s1"].factors.context_relevance == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_preload_similar_continues_past_unexpected_info(backend, bridge, writes):
    infos = {"a": {"last_accessed": "not-a-date"}, "b": {"access_count": 2}}
    backend.responses["get_similar_documents"] = ["a", "b"]
    backend.responses["get_document_info"] = lambda documentId: infos[documentId]
    engine = _engine(bridge, writes)

    assert await engine.preload_similar_documents("x") == ["a", "b"]
    assert "a" not in engine.priorities
    assert engine.priorities["b"].factors.access_frequency == pytest.approx(access_frequency_factor(3))


@pytest.mark.asyncio
async def test_preload_similar_disabled(backend, bridge, writes):
    engine = _engine(bridge, writes, preload_similar_documents=False)
    assert await engine.preload_similar_documents("d1") == []
    assert backend.calls == []


@pytest.mark.asyncio
async def test_preload_high_priority_documents(backend, bridge, writes):
    engine = await _seeded_engine(backend, bridge, writes, max_cached_documents=3)

    cached = await engine.preload_high_priority_documents()

    assert cached == ["e", "a", "b"]
    assert [a["documentId"] for a in backend.calls_to("ensure_document_cached")] == ["e", "a", "b"]


# ---------------------------------------------------------------------------
# Background cycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_recalculate_all_priorities(backend, bridge, writes):
    backend.responses["get_all_documents"] = [
        {"id": "a", "access_count": 3, "embedding_status": "completed"},
        {"id": "b", "last_accessed": (NOW - timedelta(days=1)).isoformat()},
        {"file_size": 10},
    ]
    engine = _engine(bridge, writes)
    engine.set_context_relevance("a", 1.0)

    assert await engine.recalculate_all_priorities() == 2
    assert engine.priorities["a"].factors.context_relevance == 1.0
    assert engine.priorities["b"].factors.context_relevance == 0.0


@pytest.mark.asyncio
async def test_background_cycle_runs_all_steps(backend, bridge, writes):
    backend.responses["get_all_documents"] = [
        {"id": f"doc{i}", "access_count": 99, "embedding_status": "completed"} for i in range(3)
    ]
    engine = _engine(bridge, writes, max_cached_documents=2)
    engine.set_context_relevance("doc0", 1.0)

    assert await engine.run_background_cycle() is True

    methods = backend.methods()
    assert methods.index("get_all_documents") < methods.index("evict_document_from_cache")
    assert methods.index("evict_document_from_cache") < methods.index("ensure_document_cached")
    assert not engine.is_processing


@pytest.mark.asyncio
async def test_background_cycle_skips_when_already_running(backend, bridge, writes):
    gate = asyncio.Event()

    async def slow_documents():
        await gate.wait()
        return []

    backend.responses["get_all_documents"] = lambda: slow_documents()
    engine = _engine(bridge, writes)

    first = asyncio.create_task(engine.run_background_cycle())
    await asyncio.sleep(0)
    assert engine.is_processing

    assert await engine.run_background_cycle() is False

    gate.set()
    assert await first is True
    assert not engine.is_processing
    assert len(backend.calls_to("get_all_documents")) == 1


# ---------------------------------------------------------------------------
# Strategy and lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_cache_strategy_persists(backend, bridge, writes):
    engine = _engine(bridge, writes, background_processing=False)

    strategy = await engine.update_cache_strategy(max_cached_documents=3)
    await writes.flush()

    assert strategy.max_cached_documents == 3
    assert engine.cache_strategy.max_cached_documents == 3
    assert backend.calls_to("update_cache_strategy")[0]["strategy"]["max_cached_documents"] == 3


@pytest.mark.asyncio
async def test_update_cache_strategy_rejects_unknown_fields(bridge, writes):
    engine = _engine(bridge, writes)
    with pytest.raises(TypeError, match="bogus"):
        await engine.update_cache_strategy(bogus=1)


@pytest.mark.asyncio
async def test_cache_strategy_is_a_copy(bridge, writes):
    engine = _engine(bridge, writes)
    engine.cache_strategy.max_cached_documents = 99
    assert engine.cache_strategy.max_cached_documents == 10


@pytest.mark.asyncio
async def test_background_toggle_follows_strategy(backend, bridge, writes):
    backend.responses["get_document_priorities"] = []
    engine = _engine(bridge, writes)

    await engine.start()
    assert engine.background_running

    await engine.update_cache_strategy(background_processing=False)
    assert not engine.background_running

    await engine.update_cache_strategy(background_processing=True)
    assert engine.background_running

    await engine.stop()
    assert not engine.background_running


@pytest.mark.asyncio
async def test_background_not_started_before_start(bridge, writes):
    engine = _engine(bridge, writes, background_processing=False)
    await engine.update_cache_strategy(background_processing=True)
    assert not engine.background_running
