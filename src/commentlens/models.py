"""Domain models used across the pipeline."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class Category(IntEnum):
    CONSTRUCTIVE = 1
    QUESTION = 2
    POSITIVE = 3
    NEUTRAL = 4  # catch-all bucket
    NEGATIVE = 5


class _CamelModel(BaseModel):
    """Serialised with camelCase keys; accepts either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Comments ───────────────────────────────────────────────────────────────


class Comment(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    text: str = ""
    author: str = ""
    like_count: int = 0
    reply_count: int = 0
    published_at: datetime | None = None
    is_reply: bool = False
    parent_id: str | None = None
    author_image: str | None = None


class ClassifiedComment(Comment):
    category: Category = Category.NEUTRAL
    highlight_reason: str | None = None


# ── Model output ───────────────────────────────────────────────────────────


class ClassificationEntry(BaseModel):
    # Coerced to int in reconcile.py.
    i: int | float | str | None = None
    c: int | float | str | None = None


class HighlightEntry(BaseModel):
    index: int | float | str | None = None
    reason: str | None = None


class ModelOutput(BaseModel):
    """Structured generation-service output. Every field is optional."""

    summary: str | None = None
    sentiment_score: int | float | None = None
    video_ideas: list[str] | None = None
    highlighted_comments: list[HighlightEntry] | None = None
    classifications: list[ClassificationEntry] | None = None

    # Badly typed fields become None; entries that fail validation are dropped
    # one at a time.

    @field_validator("summary", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _number_or_none(cls, value: Any) -> int | float | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return None
        if isinstance(value, (int, float)) and math.isfinite(value):
            return value
        return None

    @field_validator("video_ideas", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> list[str] | None:
        if not isinstance(value, list):
            return None
        return [idea for idea in value if isinstance(idea, str)]

    @field_validator("highlighted_comments", mode="before")
    @classmethod
    def _valid_highlights(cls, value: Any) -> list[HighlightEntry] | None:
        return _valid_entries(value, HighlightEntry)

    @field_validator("classifications", mode="before")
    @classmethod
    def _valid_classifications(cls, value: Any) -> list[ClassificationEntry] | None:
        return _valid_entries(value, ClassificationEntry)


def _valid_entries(value: Any, model: type[BaseModel]) -> list[Any] | None:
    """Validate list items one by one, skipping the ones that do not fit."""
    if not isinstance(value, list):
        return None
    kept = []
    for item in value:
        try:
            kept.append(model.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping %s entry %r: %s", model.__name__, item, exc)
    return kept


# ── Quota ──────────────────────────────────────────────────────────────────


class QuotaRecord(BaseModel):
    caller_id: str
    label: str = ""
    subscription_status: str = "free"
    quota_limit: int
    usage_count: int = 0
    quota_reset_date: datetime
    created_at: datetime

    def snapshot(self) -> QuotaSnapshot:
        return QuotaSnapshot(
            subscription_status=self.subscription_status,
            usage_count=self.usage_count,
            quota_limit=self.quota_limit,
            remaining=max(0, self.quota_limit - self.usage_count),
        )


class QuotaSnapshot(_CamelModel):
    subscription_status: str
    usage_count: int
    quota_limit: int
    remaining: int


# ── Result ─────────────────────────────────────────────────────────────────


class AnalysisResult(_CamelModel):
    video_id: str
    total_comments: int = 0
    summary: str
    sentiment_score: int | float = 50
    video_ideas: list[str] = Field(default_factory=list)
    highlights: list[ClassifiedComment] = Field(default_factory=list)
    results: list[ClassifiedComment] = Field(default_factory=list)
    user_quota: QuotaSnapshot
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready response body with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
