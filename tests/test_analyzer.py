"""Unit tests for the analysis orchestrator, using fake collaborators."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from commentlens.analyzer import NO_COMMENTS_SUMMARY, CommentAnalyzer
from commentlens.errors import (
    MalformedOutput,
    PersistenceError,
    QuotaExceeded,
    UpstreamFetchError,
    UpstreamGenerationError,
)
from commentlens.ledger import QuotaLedger
from commentlens.models import Comment, QuotaSnapshot


class FakeSource:
    def __init__(self, comments: list[Comment] | None = None, error: Exception | None = None) -> None:
        self.comments = comments or []
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    def fetch_comments(self, video_id: str, access_token: str, max_count: int = 100) -> list[Comment]:
        self.calls.append((video_id, access_token, max_count))
        if self.error:
            raise self.error
        return self.comments[:max_count]


class FakeClassifier:
    def __init__(self, raw: str = "{}", error: Exception | None = None) -> None:
        self.raw = raw
        self.error = error
        self.calls: list[tuple[int, str]] = []

    def generate(self, comments: list[Comment], language: str) -> str:
        self.calls.append((len(comments), language))
        if self.error:
            raise self.error
        return self.raw


class BrokenLedger:
    def charge(self, caller_id: str, label: str = "") -> QuotaSnapshot:
        raise PersistenceError("disk gone")

    def status(self, caller_id: str, label: str = "") -> QuotaSnapshot:
        raise PersistenceError("disk gone")


def _comments(n: int) -> list[Comment]:
    return [Comment(id=f"c{i}", text=f"text {i}", like_count=i) for i in range(n)]


def _ledger(tmp_path: Path) -> QuotaLedger:
    return QuotaLedger(
        tmp_path / "quota.sqlite3",
        default_limit=5,
        clock=lambda: datetime(2026, 5, 20, tzinfo=UTC),
    )


def _make(
    tmp_path: Path,
    source: FakeSource,
    classifier: FakeClassifier,
) -> tuple[CommentAnalyzer, QuotaLedger]:
    ledger = _ledger(tmp_path)
    return CommentAnalyzer(ledger=ledger, source=source, classifier=classifier), ledger


_RAW = json.dumps({
    "summary": "Mostly praise with a few feature requests.",
    "sentiment_score": 77,
    "video_ideas": ["Tutorial follow-up"],
    "highlighted_comments": [{"index": 2, "reason": "Concrete idea"}, {"index": 9, "reason": "??"}],
    "classifications": [{"i": 0, "c": 3}, {"i": "2", "c": 1}],
})


class TestRun:
    def test_happy_path(self, tmp_path: Path) -> None:
        source = FakeSource(_comments(3))
        classifier = FakeClassifier(_RAW)
        analyzer, _ = _make(tmp_path, source, classifier)

        result = analyzer.run("user-1", "vid42", "token", max_count=50, language="English")

        assert source.calls == [("vid42", "token", 50)]
        assert classifier.calls == [(3, "English")]
        assert result.total_comments == 3
        assert result.summary == "Mostly praise with a few feature requests."
        assert result.sentiment_score == 77
        assert [r.category for r in result.results] == [3, 4, 1]
        assert [h.id for h in result.highlights] == ["c2"]
        assert result.user_quota.usage_count == 1
        assert result.user_quota.remaining == 4

    def test_payload_shape(self, tmp_path: Path) -> None:
        analyzer, _ = _make(tmp_path, FakeSource(_comments(3)), FakeClassifier(_RAW))
        payload = analyzer.run("user-1", "vid42", "token").to_payload()

        assert payload["videoId"] == "vid42"
        assert payload["totalComments"] == 3
        assert payload["videoIdeas"] == ["Tutorial follow-up"]
        assert payload["userQuota"] == {
            "subscriptionStatus": "free",
            "usageCount": 1,
            "quotaLimit": 5,
            "remaining": 4,
        }
        assert payload["results"][0]["likeCount"] == 0
        assert payload["results"][0]["category"] == 3
        assert payload["highlights"][0]["highlightReason"] == "Concrete idea"

    def test_fallbacks_when_model_omits_fields(self, tmp_path: Path) -> None:
        analyzer, _ = _make(tmp_path, FakeSource(_comments(2)), FakeClassifier("```json\n{}\n```"))
        result = analyzer.run("user-1", "vid", "token")
        assert result.sentiment_score == 50
        assert result.video_ideas == []
        assert [r.category for r in result.results] == [4, 4]

    def test_empty_fetch_short_circuits(self, tmp_path: Path) -> None:
        classifier = FakeClassifier(_RAW)
        analyzer, ledger = _make(tmp_path, FakeSource([]), classifier)

        result = analyzer.run("user-1", "quiet-video", "token")

        assert classifier.calls == []
        assert result.total_comments == 0
        assert result.results == []
        assert result.summary == NO_COMMENTS_SUMMARY
        assert result.user_quota.usage_count == 1
        assert ledger.status("user-1").usage_count == 1

    def test_quota_denied_before_any_external_call(self, tmp_path: Path) -> None:
        source = FakeSource(_comments(1))
        classifier = FakeClassifier(_RAW)
        analyzer, ledger = _make(tmp_path, source, classifier)
        for _ in range(5):
            ledger.charge("user-1")
        source.calls.clear()

        with pytest.raises(QuotaExceeded):
            analyzer.run("user-1", "vid", "token")

        assert source.calls == []
        assert classifier.calls == []
        assert ledger.status("user-1").usage_count == 5

    def test_persistence_failure_is_pre_charge(self, tmp_path: Path) -> None:
        source = FakeSource(_comments(1))
        analyzer = CommentAnalyzer(BrokenLedger(), source, FakeClassifier(_RAW))
        with pytest.raises(PersistenceError):
            analyzer.run("user-1", "vid", "token")
        assert source.calls == []


class TestNoRefund:
    def test_fetch_failure_keeps_charge(self, tmp_path: Path) -> None:
        source = FakeSource(error=UpstreamFetchError("Failed to fetch comments: 403"))
        classifier = FakeClassifier(_RAW)
        analyzer, ledger = _make(tmp_path, source, classifier)

        with pytest.raises(UpstreamFetchError) as excinfo:
            analyzer.run("user-1", "vid", "token")

        assert excinfo.value.phase == "fetching"
        assert excinfo.value.quota is not None
        assert excinfo.value.quota.usage_count == 1
        assert classifier.calls == []
        assert ledger.status("user-1").usage_count == 1

    def test_generation_failure_keeps_charge(self, tmp_path: Path) -> None:
        classifier = FakeClassifier(error=UpstreamGenerationError("LLM request failed: timeout"))
        analyzer, ledger = _make(tmp_path, FakeSource(_comments(2)), classifier)

        with pytest.raises(UpstreamGenerationError) as excinfo:
            analyzer.run("user-1", "vid", "token")

        assert not isinstance(excinfo.value, QuotaExceeded)
        assert excinfo.value.phase == "classifying"
        assert ledger.status("user-1").usage_count == 1

    def test_malformed_output_keeps_charge(self, tmp_path: Path) -> None:
        analyzer, ledger = _make(
            tmp_path, FakeSource(_comments(2)), FakeClassifier("I cannot do that.")
        )

        with pytest.raises(MalformedOutput) as excinfo:
            analyzer.run("user-1", "vid", "token")

        assert excinfo.value.phase == "reconciling"
        assert ledger.status("user-1").usage_count == 1

    def test_unexpected_error_reported_with_phase(self, tmp_path: Path) -> None:
        classifier = FakeClassifier(error=IndexError("list index out of range"))
        analyzer, ledger = _make(tmp_path, FakeSource(_comments(2)), classifier)

        with pytest.raises(UpstreamGenerationError) as excinfo:
            analyzer.run("user-1", "vid", "token")

        assert excinfo.value.phase == "classifying"
        assert excinfo.value.quota is not None
        assert excinfo.value.quota.usage_count == 1
        assert isinstance(excinfo.value.__cause__, IndexError)
        assert ledger.status("user-1").usage_count == 1


class TestStatus:
    def test_status_does_not_charge(self, tmp_path: Path) -> None:
        analyzer, _ = _make(tmp_path, FakeSource(), FakeClassifier())
        assert analyzer.status("user-1").usage_count == 0
        assert analyzer.status("user-1").remaining == 5
