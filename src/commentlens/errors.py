"""Exception taxonomy for the analysis pipeline."""

from __future__ import annotations

from commentlens.models import QuotaSnapshot


class CommentLensError(Exception):
    """Base class for every error the pipeline surfaces to callers."""


class QuotaExceeded(CommentLensError):
    """Raised when a caller has no usage units left this period."""

    def __init__(self, caller_id: str, snapshot: QuotaSnapshot) -> None:
        super().__init__(
            f"Quota exceeded for {caller_id}: "
            f"{snapshot.usage_count}/{snapshot.quota_limit} used"
        )
        self.caller_id = caller_id
        self.snapshot = snapshot


class PersistenceError(CommentLensError):
    """Raised when the quota store is unavailable. Nothing was charged."""


class AnalysisFailed(CommentLensError):
    """A failure after the charge committed; the quota unit stays consumed.

    ``phase`` and ``quota`` are filled in by the analyzer when it reports
    the failure.
    """

    phase: str | None = None
    quota: QuotaSnapshot | None = None


class UpstreamFetchError(AnalysisFailed):
    """Raised when the YouTube Data API call fails."""


class UpstreamGenerationError(AnalysisFailed):
    """Raised when the generation service call fails or times out."""


class MalformedOutput(AnalysisFailed):
    """Raised when no repair layer can turn the model output into JSON."""
