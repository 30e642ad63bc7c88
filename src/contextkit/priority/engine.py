"""Document priority engine: priority table, cache eviction, background cycle.

The engine keeps an in-memory table of DocumentPriority keyed by document id.
Persistence and cache membership live in the backend and are reached through
the RPC bridge; every backend failure is logged and degraded, never raised.

Background cycle (every ``recalc_interval`` seconds, never overlapping):
  1. Recompute priorities for every document the backend knows about.
  2. Evict the lowest-priority documents beyond ``max_cached_documents``.
  3. Ask the backend to keep the top ``max_cached_documents`` cached.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from contextkit.bridge import BridgeClient, RpcError, WriteQueue
from contextkit.config import PriorityCfg
from contextkit.models import (
    MALFORMED_PAYLOAD,
    CacheStrategy,
    Document,
    DocumentPriority,
    utcnow,
)
from contextkit.priority.scoring import clamp_unit, compute_factors, raw_score, select_reason
from contextkit.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


class DocumentPriorityEngine:
    """Ranks documents and decides which ones the backend keeps cached.

    One instance per application context; construct it explicitly and pass it
    to whatever needs it.
    """

    def __init__(
        self,
        client: BridgeClient,
        writes: WriteQueue,
        strategy: CacheStrategy | None = None,
        config: PriorityCfg | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Args:
            client: Bridge used for reads and cache mutations.
            writes: Queue used for best-effort persistence.
            strategy: Initial cache strategy (defaults to CacheStrategy()).
            config: Timing and preload settings.
            clock: Returns the current aware datetime (injectable for tests).
        """
        self._client = client
        self._writes = writes
        self._strategy = strategy or CacheStrategy()
        self._config = config or PriorityCfg()
        self._clock = clock
        self._priorities: dict[str, DocumentPriority] = {}
        self._relevance: dict[str, float] = {}
        self._processing = False
        self._ticker: PeriodicTask | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def cache_strategy(self) -> CacheStrategy:
        return replace(self._strategy)

    @property
    def priority_count(self) -> int:
        return len(self._priorities)

    @property
    def high_priority_count(self) -> int:
        threshold = self._strategy.priority_threshold
        return sum(1 for p in self._priorities.values() if p.priority >= threshold)

    @property
    def priorities(self) -> dict[str, DocumentPriority]:
        return dict(self._priorities)

    @property
    def background_running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load persisted priorities and start the background cycle if enabled."""
        await self.load_document_priorities()
        self._started = True
        if self._strategy.background_processing:
            self._start_ticker()

    async def stop(self) -> None:
        """Stop the background cycle and flush pending persistence."""
        self._started = False
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None
        await self._writes.flush()

    def _start_ticker(self) -> None:
        if self._ticker is None:
            self._ticker = PeriodicTask(
                self._config.recalc_interval,
                self.run_background_cycle,
                name="priority-recalc",
            )
        self._ticker.start()

    async def load_document_priorities(self) -> None:
        try:
            rows = await self._client.call("get_document_priorities")
        except RpcError as exc:
            logger.error("Failed to load document priorities: %s", exc.cause)
            return
        loaded: dict[str, DocumentPriority] = {}
        for row in rows or []:
            try:
                p = DocumentPriority.from_dict(row)
            except MALFORMED_PAYLOAD as exc:
                logger.warning("Skipping malformed priority row %r: %s", row, exc)
                continue
            loaded[p.document_id] = p
        self._priorities = loaded
        logger.info("Loaded %d document priorities", len(loaded))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def calculate_priority(
        self,
        document_id: str,
        access_count: int = 0,
        last_accessed: datetime | None = None,
        context_relevance: float = 0.0,
        embedding_ready: bool = False,
        file_size_bytes: int = 0,
        user_preference: float = 0.0,
    ) -> DocumentPriority:
        """Score *document_id*, store it in the table and queue its persistence.

        ``last_accessed=None`` means "just now".
        """
        now = self._clock()
        factors = compute_factors(
            now=now,
            access_count=access_count,
            last_accessed=last_accessed,
            context_relevance=context_relevance,
            embedding_ready=embedding_ready,
            file_size_bytes=file_size_bytes,
            user_preference=user_preference,
        )
        score = raw_score(factors)
        priority = DocumentPriority(
            document_id=document_id,
            priority=clamp_unit(score),
            reason=select_reason(factors, score, self._strategy.priority_threshold),
            last_updated=now,
            factors=factors,
        )
        self._priorities[document_id] = priority
        self._writes.submit("save_document_priority", priority=priority.to_dict())
        return priority

    def set_context_relevance(self, document_id: str, relevance: float) -> None:
        """Relevance used for *document_id* by background recomputation."""
        self._relevance[document_id] = relevance

    async def update_document_access(
        self,
        document_id: str,
        context_relevance: float | None = None,
    ) -> DocumentPriority | None:
        """Record one access to *document_id* and rescore it. Returns None on failure."""
        try:
            info = await self._client.call("get_document_info", documentId=document_id)
            doc = Document.from_dict({"id": document_id, **(info or {})})
            access_count = doc.access_count + 1
            priority = await self.calculate_priority(
                document_id,
                access_count=access_count,
                last_accessed=self._clock(),
                context_relevance=context_relevance or 0.0,
                embedding_ready=doc.embedding_status.is_ready,
                file_size_bytes=doc.file_size,
                user_preference=doc.user_preference,
            )
            await self._client.call(
                "update_document_access",
                documentId=document_id,
                accessCount=access_count,
                lastAccessed=self._clock().isoformat(),
            )
            return priority
        except RpcError as exc:
            logger.error("Failed to update access for %s: %s", document_id, exc.cause)
            return None
        except MALFORMED_PAYLOAD as exc:
            logger.error("Unexpected document info for %s: %s", document_id, exc)
            return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_top_priority_documents(self, limit: int = 10) -> list[DocumentPriority]:
        """Documents at or above the threshold, highest first, at most *limit*.

        Equal priorities keep table insertion order.
        """
        threshold = self._strategy.priority_threshold
        eligible = [p for p in self._priorities.values() if p.priority >= threshold]
        eligible.sort(key=lambda p: p.priority, reverse=True)
        return eligible[: max(limit, 0)]

    def get_cached_documents(self) -> list[str]:
        top = self.get_top_priority_documents(self._strategy.max_cached_documents)
        return [p.document_id for p in top]

    def should_cache_document(self, document_id: str) -> bool:
        priority = self._priorities.get(document_id)
        if priority is None:
            return False
        return priority.priority >= self._strategy.priority_threshold

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def preload_similar_documents(self, document_id: str) -> list[str]:
        """Rescore the backend's nearest neighbours of *document_id* at medium relevance."""
        if not self._strategy.preload_similar_documents:
            return []
        try:
            similar = await self._client.call(
                "get_similar_documents",
                documentId=document_id,
                limit=self._config.similar_limit,
            )
        except RpcError as exc:
            logger.error("Failed to preload documents similar to %s: %s", document_id, exc.cause)
            return []

        ids = [str(d) for d in similar or []]
        for sim_id in ids:
            await self.update_document_access(sim_id, self._config.similar_relevance)
        return ids

    async def evict_low_priority_documents(self) -> list[str]:
        """Evict the lowest-priority documents beyond ``max_cached_documents``.

        Only backend cache membership changes; the priority table keeps every entry.
        Returns the ids whose eviction succeeded.
        """
        ranked = sorted(self._priorities.values(), key=lambda p: p.priority)
        excess = max(0, len(ranked) - self._strategy.max_cached_documents)

        evicted: list[str] = []
        for p in ranked[:excess]:
            try:
                await self._client.call("evict_document_from_cache", documentId=p.document_id)
            except RpcError as exc:
                logger.error("Failed to evict document %s: %s", p.document_id, exc.cause)
                continue
            evicted.append(p.document_id)
            logger.info("Evicted low-priority document %s (priority %.3f)", p.document_id, p.priority)
        return evicted

    async def update_cache_strategy(self, **changes: Any) -> CacheStrategy:
        """Merge *changes* into the strategy, persist it, and follow background_processing."""
        unknown = set(changes) - set(CacheStrategy.__dataclass_fields__)
        if unknown:
            raise TypeError(f"Unknown cache strategy fields: {sorted(unknown)}")

        self._strategy = replace(self._strategy, **changes)
        self._writes.submit("update_cache_strategy", strategy=self._strategy.to_dict())

        if self._strategy.background_processing:
            if self._started:
                self._start_ticker()
        elif self._ticker is not None:
            await self._ticker.stop()
        return self.cache_strategy

    # ------------------------------------------------------------------
    # Background cycle
    # ------------------------------------------------------------------

    async def run_background_cycle(self) -> bool:
        """Recompute → evict → preload. Returns False if a cycle was already running."""
        if self._processing:
            logger.debug("Priority cycle already in progress, skipping")
            return False

        self._processing = True
        try:
            await self.recalculate_all_priorities()
            await self.evict_low_priority_documents()
            await self.preload_high_priority_documents()
        finally:
            self._processing = False
        return True

    async def recalculate_all_priorities(self) -> int:
        """Rescore every backend document. Returns the number rescored."""
        try:
            rows = await self._client.call("get_all_documents")
        except RpcError as exc:
            logger.error("Failed to fetch documents for recalculation: %s", exc.cause)
            return 0

        count = 0
        for row in rows or []:
            try:
                doc = Document.from_dict(row)
            except MALFORMED_PAYLOAD as exc:
                logger.warning("Skipping malformed document row %r: %s", row, exc)
                continue
            await self.calculate_priority(
                doc.id,
                access_count=doc.access_count,
                last_accessed=doc.last_accessed,
                context_relevance=self._relevance.get(doc.id, 0.0),
                embedding_ready=doc.embedding_status.is_ready,
                file_size_bytes=doc.file_size,
                user_preference=doc.user_preference,
            )
            count += 1
        return count

    async def preload_high_priority_documents(self) -> list[str]:
        cached: list[str] = []
        for p in self.get_top_priority_documents(self._strategy.max_cached_documents):
            try:
                await self._client.call("ensure_document_cached", documentId=p.document_id)
            except RpcError as exc:
                logger.error("Failed to cache document %s: %s", p.document_id, exc.cause)
                continue
            cached.append(p.document_id)
        return cached
