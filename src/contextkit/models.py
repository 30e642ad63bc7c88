"""Domain models shared by the priority engine, the packer and the session coordinator.

All shapes crossing the RPC bridge use snake_case keys; ``from_dict`` accepts
the backend's payloads and ``to_dict`` produces them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Raised by ``from_dict`` when a backend reply is valid JSON with the wrong shape
MALFORMED_PAYLOAD: tuple[type[Exception], ...] = (KeyError, TypeError, ValueError, AttributeError)


class EmbeddingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    READY = "ready"  # reported by the session-level document cache
    FAILED = "failed"

    @property
    def is_ready(self) -> bool:
        return self in (EmbeddingStatus.COMPLETED, EmbeddingStatus.READY)

    @classmethod
    def parse(cls, value: Any) -> EmbeddingStatus:
        """Return the matching status, or PENDING for unknown/missing values."""
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


class ContextMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    SEARCH = "search"
    ALL = "all"
    NONE = "none"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime). Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@dataclass
class Document:
    id: str
    file_name: str = ""
    file_size: int = 0
    content: str = ""
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    access_count: int = 0
    last_accessed: datetime | None = None
    is_cached: bool = False
    user_preference: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Document:
        return cls(
            id=str(data["id"]),
            file_name=str(data.get("file_name") or ""),
            file_size=int(data.get("file_size") or 0),
            content=str(data.get("content") or ""),
            embedding_status=EmbeddingStatus.parse(data.get("embedding_status")),
            access_count=int(data.get("access_count") or 0),
            last_accessed=parse_timestamp(data.get("last_accessed")),
            is_cached=bool(data.get("is_cached", False)),
            user_preference=float(data.get("user_preference") or 0.0),
        )


@dataclass
class DocumentChunk:
    id: str
    document_id: str
    content: str
    similarity_score: float | None = None
    bm25_score: float | None = None
    chunk_index: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentChunk:
        return cls(
            id=str(data.get("id", "")),
            document_id=str(data.get("document_id", "")),
            content=str(data.get("content") or ""),
            similarity_score=_opt_float(data.get("similarity_score")),
            bm25_score=_opt_float(data.get("bm25_score")),
            chunk_index=int(data.get("chunk_index") or 0),
        )


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


# ---------------------------------------------------------------------------
# Priorities
# ---------------------------------------------------------------------------


@dataclass
class PriorityFactors:
    """Six independent signals, each normalised to [0, 1]."""

    access_frequency: float = 0.0
    recency: float = 0.0
    context_relevance: float = 0.0
    embedding_status: float = 0.0
    file_size: float = 0.0
    user_preference: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriorityFactors:
        return cls(**{k: float(data.get(k, 0.0) or 0.0) for k in cls.__dataclass_fields__})


@dataclass
class DocumentPriority:
    document_id: str
    priority: float
    reason: str
    last_updated: datetime
    factors: PriorityFactors = field(default_factory=PriorityFactors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "priority": self.priority,
            "reason": self.reason,
            "last_updated": self.last_updated.isoformat(),
            "factors": self.factors.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentPriority:
        return cls(
            document_id=str(data.get("document_id") or data["documentId"]),
            priority=float(data.get("priority", 0.0)),
            reason=str(data.get("reason", "")),
            last_updated=parse_timestamp(data.get("last_updated") or data.get("lastUpdated")) or utcnow(),
            factors=PriorityFactors.from_dict(data.get("factors") or {}),
        )


@dataclass
class CacheStrategy:
    max_cached_documents: int = 10
    priority_threshold: float = 0.7
    background_processing: bool = True
    preload_similar_documents: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Context packing results
# ---------------------------------------------------------------------------


@dataclass
class RagContextResult:
    context: str = ""
    tokens_used: int = 0
    chunks_included: int = 0
    chunks_dropped: int = 0


@dataclass
class TokenAllocation:
    rag_tokens: int
    conversation_tokens: int


@dataclass
class ContextValidation:
    is_valid: bool
    rag_tokens: int
    conversation_tokens: int
    suggestions: list[str] | None = None


# ---------------------------------------------------------------------------
# Conversation context
# ---------------------------------------------------------------------------


@dataclass
class ContextDocument:
    """A document as tracked by the per-conversation context cache."""

    id: str
    filename: str = ""
    file_path: str = ""
    relevance_score: float = 0.0
    access_count: int = 0
    last_accessed: datetime | None = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    content_preview: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextDocument:
        return cls(
            id=str(data["id"]),
            filename=str(data.get("filename") or data.get("file_name") or ""),
            file_path=str(data.get("file_path") or ""),
            relevance_score=float(data.get("relevance_score") or 0.0),
            access_count=int(data.get("access_count") or 0),
            last_accessed=parse_timestamp(data.get("last_accessed")),
            embedding_status=EmbeddingStatus.parse(data.get("embedding_status")),
            content_preview=data.get("content_preview"),
        )


@dataclass
class ContextSuggestion:
    document_id: str
    confidence: float
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextSuggestion | None:
        """Return None for entries without a document id or a numeric confidence."""
        doc_id = data.get("document_id")
        confidence = data.get("confidence")
        if not doc_id or isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return None
        return cls(document_id=str(doc_id), confidence=float(confidence), reason=str(data.get("reason", "")))


@dataclass
class ContextAnalysis:
    topics: list[str] = field(default_factory=list)
    entities: list[str] = field(default_factory=list)
    intent: str = "unknown"
    suggested_documents: list[ContextSuggestion] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextAnalysis:
        raw = data.get("suggested_documents")
        suggestions: list[ContextSuggestion] = []
        if isinstance(raw, list):
            for item in raw:
                if isinstance(item, dict) and (s := ContextSuggestion.from_dict(item)) is not None:
                    suggestions.append(s)
        return cls(
            topics=list(data.get("topics") or []),
            entities=list(data.get("entities") or []),
            intent=str(data.get("intent") or "unknown"),
            suggested_documents=suggestions,
        )


@dataclass
class ContextSession:
    """Per-conversation context state.

    ``active_documents`` is an insertion-ordered set (dict keys).
    """

    id: str
    chat_id: str
    active_documents: dict[str, None] = field(default_factory=dict)
    suggested_documents: list[str] = field(default_factory=list)
    context_mode: ContextMode = ContextMode.AUTO
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def active_ids(self) -> list[str]:
        return list(self.active_documents)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextSession:
        try:
            mode = ContextMode(data.get("context_mode", ContextMode.AUTO.value))
        except ValueError:
            mode = ContextMode.AUTO
        return cls(
            id=str(data["id"]),
            chat_id=str(data.get("chat_id", "")),
            active_documents=dict.fromkeys(str(d) for d in data.get("active_documents") or []),
            suggested_documents=[str(d) for d in data.get("suggested_documents") or []],
            context_mode=mode,
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
        )
