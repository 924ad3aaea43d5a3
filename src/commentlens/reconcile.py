"""Map per-index model judgments back onto the original ordered comments."""

from __future__ import annotations

import logging
import re

from commentlens.models import (
    Category,
    ClassificationEntry,
    ClassifiedComment,
    Comment,
    ModelOutput,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = Category.NEUTRAL
NO_SUMMARY = "Summary unavailable."
NEUTRAL_SENTIMENT = 50
SENTIMENT_RANGE = (0, 100)

# ASCII digits only, with an optional all-zero fraction ("3", "-1", "3.0").
_INDEX_RE = re.compile(r"([+-]?[0-9]+)(?:\.0*)?")


def coerce_index(value: object) -> int | None:
    """Turn an int, integral float or integer string into an ``int``.

    The model sometimes emits ``"3"`` where ``3`` was asked for. Anything
    that is not clearly an integer returns ``None`` and never matches.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        match = _INDEX_RE.fullmatch(value.strip())
        return int(match.group(1)) if match else None
    return None


def _category(value: object) -> Category:
    code = coerce_index(value)
    if code is None:
        return DEFAULT_CATEGORY
    try:
        return Category(code)
    except ValueError:
        return DEFAULT_CATEGORY


def _classify(comment: Comment, category: Category) -> ClassifiedComment:
    return ClassifiedComment(**comment.model_dump(), category=category)


def _index_map(entries: list[ClassificationEntry]) -> dict[int, ClassificationEntry]:
    """Index entries by coerced ``i``; the first entry for an index wins."""
    by_index: dict[int, ClassificationEntry] = {}
    for entry in entries:
        idx = coerce_index(entry.i)
        if idx is not None and idx not in by_index:
            by_index[idx] = entry
    return by_index


def reconcile(comments: list[Comment], output: ModelOutput) -> list[ClassifiedComment]:
    """Return exactly one :class:`ClassifiedComment` per input comment, in order.

    Comments without a matching classification get the neutral catch-all
    category instead of being dropped.
    """
    by_index = _index_map(output.classifications or [])

    classified: list[ClassifiedComment] = []
    matched = 0
    for idx, comment in enumerate(comments):
        entry = by_index.get(idx)
        if entry is None:
            classified.append(_classify(comment, DEFAULT_CATEGORY))
            continue
        matched += 1
        classified.append(_classify(comment, _category(entry.c)))

    logger.info("Classified %d/%d comments", matched, len(comments))
    return classified


def highlights(
    comments: list[ClassifiedComment], output: ModelOutput
) -> list[ClassifiedComment]:
    """Resolve highlighted indices against *comments*, keeping model order.

    Entries pointing outside the comment list are dropped.
    """
    picked: list[ClassifiedComment] = []
    for entry in output.highlighted_comments or []:
        idx = coerce_index(entry.index)
        if idx is None or not 0 <= idx < len(comments):
            logger.debug("Dropping highlight with out-of-range index %r", entry.index)
            continue
        picked.append(
            comments[idx].model_copy(update={"highlight_reason": entry.reason})
        )
    return picked


def aggregate(output: ModelOutput) -> tuple[str, int | float, list[str]]:
    """Return ``(summary, sentiment_score, video_ideas)`` with fallbacks."""
    summary = output.summary or NO_SUMMARY
    score = (
        output.sentiment_score
        if output.sentiment_score is not None
        else NEUTRAL_SENTIMENT
    )
    low, high = SENTIMENT_RANGE
    score = max(low, min(high, score))
    ideas = list(output.video_ideas or [])
    return summary, score, ideas
