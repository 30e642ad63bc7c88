"""Typed wrapper over the backend's document and chunk-search calls."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from contextkit.bridge import BridgeClient
from contextkit.models import Document, DocumentChunk


@dataclass
class DocumentValidation:
    """Embedding readiness of a document selection, as reported by the backend."""

    ready_documents: list[str] = field(default_factory=list)
    pending_documents: list[str] = field(default_factory=list)
    processing_documents: list[str] = field(default_factory=list)
    failed_documents: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentValidation:
        return cls(
            ready_documents=[str(d) for d in data.get("ready_documents") or []],
            pending_documents=[str(d) for d in data.get("pending_documents") or []],
            processing_documents=[str(d) for d in data.get("processing_documents") or []],
            failed_documents=[str(d) for d in data.get("failed_documents") or []],
        )


class RagClient:
    """Document-store calls used by the retrieval pipeline.

    All methods raise RpcError on backend failure; callers decide how to degrade.
    """

    def __init__(self, client: BridgeClient) -> None:
        self._client = client

    async def get_all_documents(self) -> list[Document]:
        rows = await self._client.call("get_all_documents")
        return [Document.from_dict(r) for r in rows or []]

    async def get_document_info(self, document_id: str) -> Document:
        row = await self._client.call("get_document_info", documentId=document_id)
        return Document.from_dict({"id": document_id, **(row or {})})

    async def search_documents(
        self,
        query: str,
        document_ids: Sequence[str] | None = None,
        max_results: int | None = None,
    ) -> list[DocumentChunk]:
        """Hybrid chunk search restricted to *document_ids* when given."""
        rows = await self._client.call(
            "search_enhanced_documents",
            query=query,
            documentIds=list(document_ids) if document_ids is not None else None,
            maxResults=max_results,
        )
        return [DocumentChunk.from_dict(r) for r in rows or []]

    async def validate_documents(self, document_ids: Sequence[str]) -> DocumentValidation:
        data = await self._client.call(
            "ensure_documents_ready_for_search", documentIds=list(document_ids)
        )
        return DocumentValidation.from_dict(data or {})
