"""RAG context packer: combined scoring, greedy token budget, truncation.

Pipeline:
  1. Score each chunk: 0.7 * similarity + 0.3 * bm25 (missing scores count as 0).
  2. Stable-sort chunks by score, highest first.
  3. Fill the context window after a fixed header until ``max_rag_tokens``.
     When the very first chunk does not fit but at least 100 tokens remain,
     that chunk is truncated to fill the window and packing stops.
  4. Return RagContextResult with the trimmed context and counts.

Token costs use a fixed 4-characters-per-token estimate.
"""

from __future__ import annotations

import math
import re
from typing import Sequence

from contextkit.models import (
    ContextValidation,
    DocumentChunk,
    RagContextResult,
    TokenAllocation,
)

CHARS_PER_TOKEN = 4
CONTEXT_HEADER = "Relevant document context:\n\n"

SIMILARITY_WEIGHT = 0.7
BM25_WEIGHT = 0.3

MIN_TRUNCATION_TOKENS = 100  # first chunk is only truncated with at least this much room
_TRUNCATION_MARGIN = 20      # characters held back from the truncation budget

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """Estimate the token cost of *text* (ceil of chars / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def combined_score(chunk: DocumentChunk) -> float:
    """Weighted relevance: 70% semantic similarity, 30% BM25."""
    similarity = chunk.similarity_score or 0.0
    bm25 = chunk.bm25_score or 0.0
    return similarity * SIMILARITY_WEIGHT + bm25 * BM25_WEIGHT


def format_chunk_text(chunk: DocumentChunk, include_scores: bool = False) -> str:
    text = chunk.content.strip()
    if include_scores:
        text = f"[Score: {combined_score(chunk):.3f}] {text}"
    return text


# ------------------------------------------------------------------
# Packing
# ------------------------------------------------------------------


def format_context_for_ai(
    chunks: Sequence[DocumentChunk],
    max_rag_tokens: int = 1500,
    include_scores: bool = False,
) -> RagContextResult:
    """Pack the best-scoring chunks into a context string within *max_rag_tokens*.

    Args:
        chunks: Retrieved chunks in any order. Not modified.
        max_rag_tokens: Token budget for the whole context, header included.
        include_scores: Prefix each chunk with ``[Score: X.XXX]``.

    Returns:
        RagContextResult; an empty one for empty input.
    """
    if not chunks:
        return RagContextResult()

    ordered = sorted(chunks, key=combined_score, reverse=True)

    parts = [CONTEXT_HEADER]
    tokens_used = estimate_tokens(CONTEXT_HEADER)
    included = 0
    dropped = 0

    for chunk in ordered:
        chunk_text = format_chunk_text(chunk, include_scores)
        chunk_tokens = estimate_tokens(chunk_text)

        if tokens_used + chunk_tokens > max_rag_tokens:
            available = max_rag_tokens - tokens_used
            if included == 0 and available >= MIN_TRUNCATION_TOKENS:
                parts.append(truncate_chunk(chunk, available, include_scores) + "\n\n")
                tokens_used = max_rag_tokens
                included = 1
            dropped = len(ordered) - included
            break

        parts.append(chunk_text + "\n\n")
        tokens_used += chunk_tokens
        included += 1

    return RagContextResult(
        context="".join(parts).strip(),
        tokens_used=tokens_used,
        chunks_included=included,
        chunks_dropped=dropped,
    )


def truncate_chunk(
    chunk: DocumentChunk,
    available_tokens: int,
    include_scores: bool = False,
) -> str:
    """Cut *chunk* down to roughly *available_tokens* and append ``...``.

    Prefers sentence boundaries; falls back to word boundaries when whole
    sentences fill less than half the budget, then to a hard character cut.
    Content that already fits is returned formatted and uncut.
    """
    char_budget = available_tokens * CHARS_PER_TOKEN
    limit = char_budget - _TRUNCATION_MARGIN
    content = chunk.content.strip()

    if len(content) <= char_budget:
        return format_chunk_text(chunk, include_scores)

    truncated = ""
    for sentence in _SENTENCE_SPLIT.split(content):
        candidate = truncated + sentence + "."
        if len(candidate) > limit:
            break
        truncated = candidate

    if len(truncated) < char_budget * 0.5:
        truncated = ""
        for word in content.split(" "):
            candidate = truncated + " " + word
            if len(candidate) > limit:
                break
            truncated = candidate

    if not truncated:
        truncated = content[: max(limit, 0)]

    cut = DocumentChunk(
        id=chunk.id,
        document_id=chunk.document_id,
        content=truncated + "...",
        similarity_score=chunk.similarity_score,
        bm25_score=chunk.bm25_score,
        chunk_index=chunk.chunk_index,
    )
    return format_chunk_text(cut, include_scores)


# ------------------------------------------------------------------
# Budget allocation
# ------------------------------------------------------------------


def calculate_optimal_token_allocation(
    chunks: Sequence[DocumentChunk],
    total_budget: int = 4000,
    min_conversation_tokens: int = 1500,
    max_rag_tokens: int = 2000,
) -> TokenAllocation:
    """Split *total_budget* between retrieved context and conversation history.

    Conversation history is guaranteed ``min_conversation_tokens`` when the
    budget allows; a budget smaller than that goes entirely to conversation.
    """
    if not chunks:
        return TokenAllocation(rag_tokens=0, conversation_tokens=total_budget)

    wanted = sum(estimate_tokens(c.content) for c in chunks)
    rag_tokens = min(wanted, max_rag_tokens)
    conversation_tokens = total_budget - rag_tokens

    if conversation_tokens < min_conversation_tokens:
        conversation_tokens = min_conversation_tokens
        rag_tokens = total_budget - min_conversation_tokens
        if rag_tokens < 0:
            rag_tokens = 0
            conversation_tokens = total_budget

    return TokenAllocation(rag_tokens=rag_tokens, conversation_tokens=conversation_tokens)


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------

_RAG_SUGGESTION_FLOOR = 1500
_CONVERSATION_SUGGESTION_FLOOR = 2000


def validate_context_size(
    rag_context: str,
    conversation_context: str,
    total_limit: int = 4000,
) -> ContextValidation:
    """Check that both contexts fit in *total_limit* and suggest reductions if not."""
    rag_tokens = estimate_tokens(rag_context)
    conversation_tokens = estimate_tokens(conversation_context)
    total = rag_tokens + conversation_tokens

    is_valid = total <= total_limit
    suggestions: list[str] = []

    if not is_valid:
        excess = total - total_limit
        if rag_tokens > _RAG_SUGGESTION_FLOOR:
            suggestions.append(f"Consider reducing RAG context by ~{math.ceil(excess * 0.7)} tokens")
        if conversation_tokens > _CONVERSATION_SUGGESTION_FLOOR:
            suggestions.append(
                f"Consider reducing conversation history by ~{math.ceil(excess * 0.3)} tokens"
            )
        suggestions.append(f"Total excess: {excess} tokens")

    return ContextValidation(
        is_valid=is_valid,
        rag_tokens=rag_tokens,
        conversation_tokens=conversation_tokens,
        suggestions=suggestions or None,
    )

