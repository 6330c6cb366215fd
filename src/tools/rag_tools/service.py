"""RAG tools service layer implementation.

Contains helper functions and tool implementation functions for grounding
chat turns in indexed lecture material and for formatted content search.
"""

from src.content_pipeline.retrieval_service import RetrievalService
from src.content_pipeline.schemas import ContentContext, SearchResponse
from src.utils.logging import get_logger

logger = get_logger(__name__)

NO_MATERIAL_RESPONSE = (
    "No relevant lecture material found for your query. "
    "Try rephrasing or using different keywords."
)

CONTEXT_INSTRUCTIONS = (
    "Answer the learner's question using the lecture material above. "
    "Explain in detail where the material is relevant; otherwise give a general answer."
)


# ==============================================================================
# Helper Functions (Deterministic, not exposed as LLM tools)
# ==============================================================================


def format_timestamp_display(seconds: float) -> str:
    """Format seconds as [MM:SS] or [HH:MM:SS] for display.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted timestamp string like [MM:SS] or [HH:MM:SS].

    Examples:
        >>> format_timestamp_display(125)
        "[02:05]"
        >>> format_timestamp_display(3725)
        "[01:02:05]"
    """
    total_seconds = int(seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    if hours > 0:
        return f"[{hours:02d}:{minutes:02d}:{secs:02d}]"
    else:
        return f"[{minutes:02d}:{secs:02d}]"


def build_context_prompt(context: ContentContext) -> str:
    """Build the system prompt block for retrieved lecture material."""
    return f"Relevant lecture material:\n{context.context}\n\n{CONTEXT_INSTRUCTIONS}"


def augment_messages_with_context(
    messages: list[dict[str, str]], context: ContentContext
) -> list[dict[str, str]]:
    """Return a copy of ``messages`` grounded in ``context``.

    The context prompt is appended to the first system message, or prepended
    as a new system message when there is none. Messages are returned
    unchanged when the context has nothing to add.

    Args:
        messages: Chat messages with ``role`` and ``content``.
        context: Result of ``RetrievalService.get_context``.

    Returns:
        New message list; the input list is not modified.
    """
    enhanced = [dict(m) for m in messages]
    if not context.has_context:
        return enhanced

    prompt = build_context_prompt(context)
    for message in enhanced:
        if message.get("role") == "system":
            message["content"] = f"{message.get('content', '')}\n\n{prompt}"
            return enhanced

    return [{"role": "system", "content": prompt}, *enhanced]


def format_search_results(response: SearchResponse) -> str:
    """Format search results with timestamps and similarity for display."""
    if not response.results:
        return NO_MATERIAL_RESPONSE

    formatted_results = []
    for i, result in enumerate(response.results, 1):
        if result.type == "summary":
            location = "Summary"
        else:
            location = (
                f"{format_timestamp_display(result.start_time or 0)}"
                f" - {format_timestamp_display(result.end_time or 0)}"
            )

        formatted = f"""
**Result {i}** (Similarity: {result.score:.2%})
**Content:** {result.content_id or "Unknown"}
**Location:** {location}

{result.text or ""}
"""
        formatted_results.append(formatted.strip())

    output = "\n\n---\n\n".join(formatted_results)
    if response.used_fallback:
        output += "\n\n[Note: no results matched the requested content; showing closest matches]"
    return output


# ==============================================================================
# Tool Implementation Functions
# ==============================================================================


async def search_lecture_content(
    retrieval_service: RetrievalService,
    query: str,
    match_count: int = 5,
    content_id: str | None = None,
) -> str:
    """Search indexed lecture material and format the hits.

    Args:
        retrieval_service: Retrieval engine over the vector index.
        query: User's search query.
        match_count: Maximum number of results to return (default: 5).
        content_id: Optional content id to restrict the search to.

    Returns:
        Formatted results, or ``NO_MATERIAL_RESPONSE`` when nothing matched.

    Raises:
        ContentPipelineError: If embedding or the index query fails.
    """
    logger.info(
        "lecture_search_started",
        query=query,
        match_count=match_count,
        content_id=content_id,
    )

    try:
        response = await retrieval_service.search(
            query, top_k=match_count, content_id=content_id
        )
    except Exception as e:
        logger.exception("lecture_search_failed", query=query, error_type=type(e).__name__)
        raise

    output = format_search_results(response)
    logger.info(
        "lecture_search_completed",
        results_found=response.total,
        total_chars=len(output),
    )
    return output


async def ground_chat_messages(
    retrieval_service: RetrievalService,
    messages: list[dict[str, str]],
    max_chunks: int = 3,
) -> tuple[list[dict[str, str]], ContentContext]:
    """Ground the latest user turn in lecture material when it is on-topic.

    Retrieval problems never block the chat: the relevance gate or a failed
    lookup simply leaves the messages ungrounded.

    Returns:
        Tuple of (messages to send, the context that was evaluated).
    """
    last_user = next((m for m in reversed(messages) if m.get("role") == "user"), None)
    if last_user is None:
        return [dict(m) for m in messages], ContentContext(has_context=False)

    context = await retrieval_service.get_context(last_user.get("content", ""), max_chunks)
    if context.has_context:
        logger.info("chat_grounded", relevant_chunks=context.relevant_chunks)
    else:
        logger.info("chat_not_grounded", max_score=context.max_score, gap=context.gap)
    return augment_messages_with_context(messages, context), context
