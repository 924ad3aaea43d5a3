"""Analysis orchestration: charge, fetch, classify, reconcile, respond.

The quota unit is charged before any external call and is never refunded;
failures after the charge are reported with the consumed snapshot attached.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from commentlens import config
from commentlens.errors import (
    AnalysisFailed,
    CommentLensError,
    MalformedOutput,
    UpstreamFetchError,
    UpstreamGenerationError,
)
from commentlens.ledger import QuotaLedger
from commentlens.llm import CommentClassifier
from commentlens.models import AnalysisResult, Comment, QuotaSnapshot
from commentlens.parse import parse_model_output
from commentlens.reconcile import aggregate, highlights, reconcile
from commentlens.youtube_client import YouTubeClient

logger = logging.getLogger(__name__)

NO_COMMENTS_SUMMARY = "No comments found."


class Phase(str, Enum):
    CHARGING = "charging"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    RECONCILING = "reconciling"
    DONE = "done"


# Unexpected errors after the charge are reported as the phase's own failure.
_PHASE_ERRORS: dict[Phase, type[AnalysisFailed]] = {
    Phase.FETCHING: UpstreamFetchError,
    Phase.CLASSIFYING: UpstreamGenerationError,
    Phase.RECONCILING: MalformedOutput,
}


class CommentSource(Protocol):
    def fetch_comments(
        self, video_id: str, access_token: str, max_count: int = ...
    ) -> list[Comment]: ...


class Classifier(Protocol):
    def generate(self, comments: list[Comment], language: str) -> str: ...


class Ledger(Protocol):
    def charge(self, caller_id: str, label: str = ...) -> QuotaSnapshot: ...

    def status(self, caller_id: str, label: str = ...) -> QuotaSnapshot: ...


class CommentAnalyzer:
    """Runs one analysis request against injected collaborators."""

    def __init__(
        self, ledger: Ledger, source: CommentSource, classifier: Classifier
    ) -> None:
        self._ledger = ledger
        self._source = source
        self._classifier = classifier

    def run(
        self,
        caller_id: str,
        video_id: str,
        access_token: str,
        max_count: int = config.DEFAULT_COUNT,
        language: str = config.DEFAULT_LANGUAGE,
        label: str = "",
    ) -> AnalysisResult:
        """Analyze up to *max_count* comments of *video_id* for *caller_id*.

        Raises ``QuotaExceeded`` or ``PersistenceError`` before anything is
        charged, and an ``AnalysisFailed`` subclass after the charge.
        """
        who = f"{caller_id} ({label or '-'})"
        logger.info("[Request] %s requesting analysis for %s", who, video_id)

        # ── 1. Charge ─────────────────────────────────────────────────────
        try:
            quota = self._ledger.charge(caller_id, label)
        except CommentLensError as exc:
            logger.warning(
                "Request from %s stopped during %s: %s", who, Phase.CHARGING.value, exc
            )
            raise

        phase = Phase.FETCHING
        try:
            # ── 2. Fetch ──────────────────────────────────────────────────
            comments = self._source.fetch_comments(video_id, access_token, max_count)
            if not comments:
                logger.info("No comments for %s; skipping classification", video_id)
                return AnalysisResult(
                    video_id=video_id,
                    total_comments=0,
                    summary=NO_COMMENTS_SUMMARY,
                    user_quota=quota,
                    message="No comments found",
                )

            # ── 3. Classify ───────────────────────────────────────────────
            phase = Phase.CLASSIFYING
            logger.info("Sending %d comments to the LLM (%s)", len(comments), language)
            raw = self._classifier.generate(comments, language)

            # ── 4. Reconcile ──────────────────────────────────────────────
            phase = Phase.RECONCILING
            output = parse_model_output(raw)
            classified = reconcile(comments, output)
            summary, sentiment, ideas = aggregate(output)
            picked = highlights(classified, output)
        except AnalysisFailed as exc:
            self._report(exc, phase, quota, who, video_id)
            raise
        except Exception as exc:
            failure = _PHASE_ERRORS[phase](f"Unexpected error: {exc!r}")
            self._report(failure, phase, quota, who, video_id)
            raise failure from exc

        logger.info(
            "[%s] %s: %d comments, %d highlights, %d/%d quota used",
            Phase.DONE.value, video_id, len(classified), len(picked),
            quota.usage_count, quota.quota_limit,
        )
        return AnalysisResult(
            video_id=video_id,
            total_comments=len(comments),
            summary=summary,
            sentiment_score=sentiment,
            video_ideas=ideas,
            highlights=picked,
            results=classified,
            user_quota=quota,
        )

    @staticmethod
    def _report(
        exc: AnalysisFailed,
        phase: Phase,
        quota: QuotaSnapshot,
        who: str,
        video_id: str,
    ) -> None:
        exc.phase = phase.value
        exc.quota = quota
        logger.error(
            "Analysis failed for %s on %s during %s: %s",
            who, video_id, phase.value, exc,
        )

    def status(self, caller_id: str, label: str = "") -> QuotaSnapshot:
        """Return the caller's quota balance without charging."""
        snapshot = self._ledger.status(caller_id, label)
        logger.info(
            "[Status] %s: %d/%d (remaining %d)",
            caller_id, snapshot.usage_count, snapshot.quota_limit, snapshot.remaining,
        )
        return snapshot


def build_analyzer() -> CommentAnalyzer:
    """Wire the production collaborators from :mod:`commentlens.config`."""
    ledger = QuotaLedger(db_path=config.DB_PATH, default_limit=config.FREE_QUOTA_LIMIT)
    source = YouTubeClient(api_base=config.YOUTUBE_API_BASE, timeout=config.YOUTUBE_TIMEOUT)
    classifier = CommentClassifier(
        provider=config.LLM_PROVIDER,
        api_key=config.LLM_API_KEY,
        model=config.LLM_MODEL,
        base_url=config.LLM_BASE_URL,
        timeout=config.LLM_TIMEOUT,
        temperature=config.LLM_TEMPERATURE,
    )
    return CommentAnalyzer(ledger=ledger, source=source, classifier=classifier)
