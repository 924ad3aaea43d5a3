"""Unit tests for prompt building and the classifier client."""

import json
from types import SimpleNamespace
from typing import Any

import pytest
from openai import OpenAIError

from commentlens.errors import UpstreamGenerationError
from commentlens.llm import CommentClassifier, build_prompt, simplify
from commentlens.models import Comment


def _make(n: int) -> list[Comment]:
    return [
        Comment(id=f"c{i}", text=f"text {i}", like_count=i * 2, reply_count=i)
        for i in range(n)
    ]


class FakeCompletions:
    def __init__(
        self,
        content: str | None = None,
        error: Exception | None = None,
        blocked: bool = False,
    ) -> None:
        self.content = content
        self.error = error
        self.blocked = blocked
        self.requests: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        if self.blocked:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestPrompt:
    def test_simplify_keeps_index_and_engagement(self) -> None:
        assert simplify(_make(2)) == [
            {"index": 0, "text": "text 0", "likes": 0, "replies": 0},
            {"index": 1, "text": "text 1", "likes": 2, "replies": 1},
        ]

    def test_prompt_embeds_batch_language_and_scheme(self) -> None:
        prompt = build_prompt(_make(3), "Japanese")
        assert "following 3 comments" in prompt
        assert "exactly 3 items" in prompt
        assert "Target Language: Japanese" in prompt
        assert "5: Negative" in prompt
        assert json.dumps(simplify(_make(3))) in prompt

    def test_non_ascii_text_kept_readable(self) -> None:
        prompt = build_prompt([Comment(id="x", text="太好看了")], "Traditional Chinese")
        assert "太好看了" in prompt


class TestGenerate:
    def test_returns_raw_text(self) -> None:
        completions = FakeCompletions(content='{"summary": "ok"}')
        classifier = CommentClassifier("openai", "", "gpt-test", client=_client(completions))

        raw = classifier.generate(_make(2), "English")

        assert raw == '{"summary": "ok"}'
        request = completions.requests[0]
        assert request["model"] == "gpt-test"
        assert request["messages"][0]["role"] == "system"
        assert "Target Language: English" in request["messages"][1]["content"]

    def test_sdk_error_wrapped(self) -> None:
        completions = FakeCompletions(error=OpenAIError("request timed out"))
        classifier = CommentClassifier("openai", "", "gpt-test", client=_client(completions))
        with pytest.raises(UpstreamGenerationError, match="timed out"):
            classifier.generate(_make(1), "English")

    def test_empty_content(self) -> None:
        completions = FakeCompletions(content=None)
        classifier = CommentClassifier("openai", "", "gpt-test", client=_client(completions))
        with pytest.raises(UpstreamGenerationError):
            classifier.generate(_make(1), "English")

    def test_no_choices(self) -> None:
        completions = FakeCompletions(blocked=True)
        classifier = CommentClassifier("openai", "", "gpt-test", client=_client(completions))
        with pytest.raises(UpstreamGenerationError, match="no choices"):
            classifier.generate(_make(1), "English")

    def test_unconfigured_provider(self) -> None:
        classifier = CommentClassifier("openai", "", "gpt-test")
        with pytest.raises(UpstreamGenerationError, match="not configured"):
            classifier.generate(_make(1), "English")

    def test_unknown_provider(self) -> None:
        classifier = CommentClassifier("carrier-pigeon", "key", "m")
        with pytest.raises(UpstreamGenerationError):
            classifier.generate(_make(1), "English")
