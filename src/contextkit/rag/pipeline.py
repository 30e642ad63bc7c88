"""Retrieval pipeline: readiness check → chunk search → budget split → packing.

The prompt-facing entry point for a user message. Failures anywhere in the
pipeline degrade to an empty context; the conversation continues without RAG.
"""

from __future__ import annotations

import logging
from typing import Sequence

from contextkit.bridge import RpcError
from contextkit.config import PackerCfg
from contextkit.models import MALFORMED_PAYLOAD, RagContextResult
from contextkit.rag.client import RagClient
from contextkit.rag.packer import calculate_optimal_token_allocation, format_context_for_ai

logger = logging.getLogger(__name__)


async def retrieve_context(
    client: RagClient,
    query: str,
    document_ids: Sequence[str],
    config: PackerCfg | None = None,
) -> RagContextResult:
    """Search the selected documents for *query* and pack the hits.

    Only documents whose embeddings are ready are searched; if none are ready
    but some are still pending, retrieval is skipped. If the backend reports
    nothing at all as ready or pending, the whole selection is searched.

    Args:
        client: RagClient bound to the backend bridge.
        query: The user's message.
        document_ids: Documents selected for this conversation.
        config: Token budgets (defaults to PackerCfg()).
    """
    cfg = config or PackerCfg()
    if not query.strip() or not document_ids:
        return RagContextResult()

    try:
        validation = await client.validate_documents(document_ids)
        if not validation.ready_documents and validation.pending_documents:
            logger.info(
                "All %d selected documents are still embedding; skipping retrieval",
                len(validation.pending_documents),
            )
            return RagContextResult()

        targets = validation.ready_documents or list(document_ids)
        chunks = await client.search_documents(query, targets)
    except RpcError as exc:
        logger.error("RAG retrieval failed: %s", exc.cause)
        return RagContextResult()
    except MALFORMED_PAYLOAD as exc:
        logger.error("RAG retrieval returned an unexpected payload: %s", exc)
        return RagContextResult()

    if not chunks:
        logger.info("No relevant content found in %d documents", len(targets))
        return RagContextResult()

    allocation = calculate_optimal_token_allocation(
        chunks,
        total_budget=cfg.total_budget,
        min_conversation_tokens=cfg.min_conversation_tokens,
        max_rag_tokens=cfg.allocation_max_rag_tokens,
    )
    result = format_context_for_ai(chunks, allocation.rag_tokens, cfg.include_scores)
    logger.info(
        "RAG context: %d/%d chunks, %d tokens",
        result.chunks_included,
        len(chunks),
        result.tokens_used,
    )
    if result.chunks_dropped:
        logger.info("Dropped %d chunks due to token limits", result.chunks_dropped)
    return result


def build_enhanced_prompt(message: str, result: RagContextResult) -> str:
    """Wrap *message* with packed context; returns *message* unchanged when there is none."""
    if not result.context:
        return message
    return (
        f"Context from documents:\n{result.context}\n\n"
        f"User question: {message}\n\n"
        "Please answer the question using the provided document context when relevant."
    )
