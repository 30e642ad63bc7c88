"""Per-conversation context session: active and suggested documents, selection modes.

Selection modes:
  auto    suggestions from the latest conversation analysis (confidence >= 0.7,
          at most 10); without an analysis, the local cache ranked by
          relevance_score + access_count
  manual  nothing; the user picks documents explicitly
  search  backend document search for the query
  all     every cached document, or the backend's full list if the cache is empty
  none    nothing

A background ticker drains the embedding queue one document per tick while no
conversation analysis is running.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Callable, Sequence

from contextkit.bridge import BridgeClient, RpcError, WriteQueue
from contextkit.config import SessionCfg
from contextkit.models import (
    MALFORMED_PAYLOAD,
    ContextAnalysis,
    ContextDocument,
    ContextMode,
    ContextSession,
    ContextSuggestion,
    EmbeddingStatus,
    utcnow,
)
from contextkit.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


class ContextSessionCoordinator:
    """Owns one conversation's ContextSession and the document cache behind it."""

    def __init__(
        self,
        client: BridgeClient,
        writes: WriteQueue,
        config: SessionCfg | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._writes = writes
        self._config = config or SessionCfg()
        self._clock = clock
        self._cache: dict[str, ContextDocument] = {}
        self._session: ContextSession | None = None
        self._analysis: ContextAnalysis | None = None
        self._queue: deque[str] = deque()
        self._analyzing = False
        self._ticker: PeriodicTask | None = None

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> ContextSession | None:
        return self._session

    @property
    def analysis(self) -> ContextAnalysis | None:
        return self._analysis

    @property
    def cache(self) -> dict[str, ContextDocument]:
        return dict(self._cache)

    @property
    def pending_embeddings(self) -> list[str]:
        return list(self._queue)

    @property
    def is_analyzing(self) -> bool:
        return self._analyzing

    @property
    def is_context_active(self) -> bool:
        return self._session is not None and bool(self._session.active_documents)

    @property
    def context_document_count(self) -> int:
        return len(self._session.active_documents) if self._session else 0

    @property
    def has_suggestions(self) -> bool:
        return self._session is not None and bool(self._session.suggested_documents)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, chat_id: str | None = None) -> ContextSession:
        """Load the document cache, open a session and start the refresh ticker."""
        await self.load_cached_documents()
        session = await self.initialize_session(chat_id)
        if self._ticker is None:
            self._ticker = PeriodicTask(
                self._config.refresh_interval, self.process_next_queued, name="context-refresh"
            )
        self._ticker.start()
        return session

    async def stop(self) -> None:
        """Cancel the refresh ticker and drop every queued embedding request."""
        ticker, self._ticker = self._ticker, None
        self._queue.clear()
        if ticker is not None:
            await ticker.stop()

    async def end_session(self) -> None:
        """Stop background work and discard the session state."""
        await self.stop()
        self._session = None
        self._analysis = None

    async def load_cached_documents(self) -> None:
        try:
            rows = await self._client.call("get_cached_context_documents")
        except RpcError as exc:
            logger.error("Failed to load cached documents, continuing with empty cache: %s", exc.cause)
            self._cache = {}
            return

        docs: list[ContextDocument] = []
        for row in rows or []:
            try:
                docs.append(ContextDocument.from_dict(row))
            except MALFORMED_PAYLOAD as exc:
                logger.warning("Skipping malformed cached document %r: %s", row, exc)
        docs.sort(key=lambda d: d.access_count + d.relevance_score * 100, reverse=True)
        self._cache = {d.id: d for d in docs}
        logger.info("Context cache initialized with %d documents", len(self._cache))

    async def initialize_session(self, chat_id: str | None = None) -> ContextSession:
        chat_id = chat_id or f"session_{uuid.uuid4().hex[:12]}"
        try:
            data = await self._client.call("initialize_context_session", chatId=chat_id)
            self._session = ContextSession.from_dict(data)
        except (RpcError, *MALFORMED_PAYLOAD) as exc:
            logger.error("Failed to initialize context session, using local fallback: %s", exc)
            now = self._clock()
            self._session = ContextSession(
                id=f"fallback_{uuid.uuid4().hex[:12]}",
                chat_id=chat_id,
                created_at=now,
                updated_at=now,
            )
        return self._session

    # ------------------------------------------------------------------
    # Conversation analysis
    # ------------------------------------------------------------------

    async def analyze_conversation(
        self, messages: Sequence[dict[str, str]]
    ) -> ContextAnalysis | None:
        """Ask the backend for topics, intent and document suggestions.

        Returns None when an analysis is already running, the input is empty,
        or the backend call fails (a neutral analysis is stored in that case).
        """
        if self._analyzing:
            logger.debug("Conversation analysis already in progress, skipping")
            return None
        if not messages:
            logger.warning("No messages provided for context analysis")
            return None

        self._analyzing = True
        try:
            window = list(messages)[-self._config.analysis_window :]
            data = await self._client.call("analyze_conversation_context", messages=window)
            if not data:
                logger.warning("No analysis returned from backend")
                return None
            analysis = ContextAnalysis.from_dict(data)
            self._analysis = analysis
            await self.update_document_suggestions(analysis.suggested_documents)
            return analysis
        except RpcError as exc:
            logger.error("Failed to analyze conversation: %s", exc.cause)
            self._analysis = ContextAnalysis()
            return None
        except MALFORMED_PAYLOAD as exc:
            logger.error("Conversation analysis returned an unexpected payload: %s", exc)
            self._analysis = ContextAnalysis()
            return None
        finally:
            self._analyzing = False

    async def update_document_suggestions(self, suggestions: Sequence[ContextSuggestion]) -> list[str]:
        """Keep confident suggestions, queue them for embedding, and process them now."""
        if self._session is None:
            logger.warning("No context session available for suggestions")
            return []

        confident = [s for s in suggestions if s.confidence >= self._config.min_relevance]
        confident.sort(key=lambda s: s.confidence, reverse=True)
        ids = [s.document_id for s in confident[: self._config.max_documents] if s.document_id]

        self._session.suggested_documents = ids
        self._touch()
        self._queue = deque(ids)

        if ids:
            await self.process_document_embeddings(ids)
        return ids

    async def process_document_embeddings(self, document_ids: Sequence[str]) -> list[str]:
        """Request high-priority embedding for cached documents not yet ready or in progress."""
        requested: list[str] = []
        for doc_id in document_ids:
            doc = self._cache.get(doc_id)
            if doc is None or doc.embedding_status.is_ready:
                continue
            if doc.embedding_status == EmbeddingStatus.PROCESSING:
                continue
            try:
                await self._client.call("process_document_embeddings", documentId=doc_id, priority="high")
            except RpcError as exc:
                logger.error("Failed to process embeddings for %s: %s", doc_id, exc.cause)
                continue
            doc.embedding_status = EmbeddingStatus.PROCESSING
            requested.append(doc_id)
        return requested

    async def process_next_queued(self) -> str | None:
        """One refresh tick: pop a single queued id and request its embedding."""
        if not self._queue or self._analyzing:
            return None
        doc_id = self._queue.popleft()
        await self.process_document_embeddings([doc_id])
        return doc_id

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_documents(self, mode: ContextMode | str, query: str | None = None) -> list[str]:
        """Return the document ids *mode* selects for the current conversation."""
        try:
            mode = ContextMode(mode)
        except ValueError:
            logger.warning("Unknown context mode: %r", mode)
            return []

        logger.debug("Selecting documents with mode=%s query=%r", mode.value, query)
        if mode is ContextMode.AUTO:
            return self._select_auto()
        if mode is ContextMode.SEARCH:
            return await self.search_documents(query) if query else []
        if mode is ContextMode.ALL:
            return await self._select_all()
        return []  # manual, none

    def _select_auto(self) -> list[str]:
        threshold = self._config.min_relevance
        limit = self._config.max_documents

        if self._analysis is None:
            logger.info("No conversation analysis yet, ranking cached documents instead")
            ranked = sorted(
                (d for d in self._cache.values() if d.relevance_score >= threshold),
                key=lambda d: d.relevance_score + d.access_count,
                reverse=True,
            )
            return [d.id for d in ranked[:limit]]

        picked = [s for s in self._analysis.suggested_documents if s.confidence >= threshold]
        return [s.document_id for s in picked[:limit]]

    async def _select_all(self) -> list[str]:
        if self._cache:
            return list(self._cache)
        logger.warning("Context cache is empty, falling back to the full document list")
        try:
            rows = await self._client.call("get_all_documents")
        except RpcError as exc:
            logger.error("Failed to get documents as fallback: %s", exc.cause)
            return []
        return [str(r["id"]) for r in rows or [] if isinstance(r, dict) and "id" in r]

    async def search_documents(self, query: str) -> list[str]:
        if not query or not query.strip():
            return []
        try:
            results = await self._client.call(
                "search_context_documents", query=query.strip(), limit=self._config.max_documents
            )
        except RpcError as exc:
            logger.error("Failed to search documents: %s", exc.cause)
            return []
        return [doc_id for r in results or [] if (doc_id := _result_id(r))]

    # ------------------------------------------------------------------
    # Active documents
    # ------------------------------------------------------------------

    async def add_document_to_context(self, document_id: str) -> None:
        """Mark *document_id* active and record the access.

        Re-adding an active document only bumps its access metadata.
        """
        if self._session is None:
            return
        if document_id not in self._session.active_documents:
            self._session.active_documents[document_id] = None
            self._touch()

        doc = self._cache.get(document_id)
        if doc is None:
            return
        doc.access_count += 1
        doc.last_accessed = self._clock()
        self._writes.submit(
            "update_document_access",
            documentId=document_id,
            accessCount=doc.access_count,
            lastAccessed=doc.last_accessed.isoformat(),
        )

    def remove_document_from_context(self, document_id: str) -> None:
        if self._session is None or document_id not in self._session.active_documents:
            return
        del self._session.active_documents[document_id]
        self._touch()

    def get_active_documents(self) -> list[ContextDocument]:
        if self._session is None:
            return []
        return [self._cache[i] for i in self._session.active_documents if i in self._cache]

    def get_suggested_documents(self) -> list[ContextDocument]:
        if self._session is None:
            return []
        return [self._cache[i] for i in self._session.suggested_documents if i in self._cache]

    async def get_context_for_message(self, message: str, max_chunks: int = 5) -> Any:
        """Backend context for *message* from the active documents, or None."""
        active = self.get_active_documents()
        if not active:
            return None
        try:
            return await self._client.call(
                "get_context_for_message",
                message=message,
                documentIds=[d.id for d in active],
                maxChunks=max_chunks,
            )
        except RpcError as exc:
            logger.error("Failed to get context for message: %s", exc.cause)
            return None

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------

    async def set_context_mode(self, mode: ContextMode | str) -> None:
        """Switch the session's mode and persist it. Raises ValueError for unknown modes."""
        if self._session is None:
            return
        self._session.context_mode = ContextMode(mode)
        self._touch()
        self._writes.submit(
            "update_context_session",
            sessionId=self._session.id,
            mode=self._session.context_mode.value,
        )

    def get_context_mode(self) -> ContextMode:
        return self._session.context_mode if self._session else ContextMode.NONE

    def clear_context(self) -> None:
        if self._session is not None:
            self._session.active_documents.clear()
            self._session.suggested_documents = []
            self._touch()
        self._analysis = None

    def _touch(self) -> None:
        if self._session is not None:
            self._session.updated_at = self._clock()


def _result_id(result: Any) -> str | None:
    """Extract a document id from a search hit (plain id or ranked-document mapping)."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        if isinstance(result.get("document"), dict) and "id" in result["document"]:
            return str(result["document"]["id"])
        for key in ("document_id", "id"):
            if result.get(key):
                return str(result[key])
    return None
