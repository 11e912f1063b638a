"""Excerpt generation for search results."""

from kura.constants.search import SNIPPET_LEAD_CHARS, SNIPPET_MAX_LENGTH
from kura.search.schemas import ContentType


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def generate_snippet(
    text: str,
    query: str,
    content_type: ContentType,
    max_length: int = SNIPPET_MAX_LENGTH,
    from_start: bool = False,
) -> str:
    """Create an excerpt around the first occurrence of any query term.

    The window opens SNIPPET_LEAD_CHARS before the match and closes
    max_length - SNIPPET_LEAD_CHARS after it, so a match near the start of
    the text yields a shorter excerpt.

    Args:
        text: Excerpt source for the item.
        query: Search query.
        content_type: Item content type, used for the empty placeholder.
        max_length: Approximate excerpt length before ellipses.
        from_start: Cut from the start of the text without looking for query
            terms (image and PDF annotations).

    Returns:
        The excerpt, the start of the text if no term occurs, or a
        placeholder when the item has no text at all.
    """
    text = " ".join(text.split())
    if not text:
        return f"[{content_type.value} content - no excerpt available]"
    if from_start:
        return _truncate(text, max_length)

    lower_text = text.lower()
    best = -1
    for term in query.lower().split():
        pos = lower_text.find(term)
        if pos != -1 and (best == -1 or pos < best):
            best = pos

    if best == -1:
        return _truncate(text, max_length)

    start = max(0, best - SNIPPET_LEAD_CHARS)
    end = min(len(text), best + max_length - SNIPPET_LEAD_CHARS)
    snippet = text[start:end].strip()

    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."

    return snippet
