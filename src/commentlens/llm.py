"""LLM-powered comment classifier: one batch request per analysis."""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import OpenAI, OpenAIError

from commentlens.errors import UpstreamGenerationError
from commentlens.models import Comment

logger = logging.getLogger(__name__)

# ── Prompt used for every classification call ─────────────────────────────
_SYSTEM_PROMPT = (
    "You are an expert YouTube comment analyst. "
    "Reply with a single PURE JSON object and nothing else "
    "(no Markdown code blocks)."
)

_CLASSIFICATION_RULES = """\
Classification Rules (strictly map to these IDs):
1: Constructive/Ideas (specific suggestions for improvement, "I hope you do X next time", or future topic requests).
2: Questions (genuine information-seeking inquiries only; exclude rhetorical questions, sarcasm, jokes ending in '?', or rhetorical praise).
3: Positive (praise, appreciation, "Love this", support).
4: Neutral/Personal/Jokes (personal stories, facts, jokes, sarcasm, emojis, or anything that fits no other category; this is the catch-all bucket).
5: Negative (criticism, complaints, hate speech, or harsh feedback)."""

_USER_TEMPLATE = """\
Analyze the following {count} comments deeply.

Target Language: {language} (write ALL summaries, reasons and ideas in this language)

JSON Structure:
{{
  "summary": "A concise executive summary (50-100 words) of the main discussion points and atmosphere. Ignore spam.",
  "sentiment_score": 0-100 (0=Toxic/Hate, 50=Neutral, 100=Love/Support),
  "video_ideas": ["Idea 1", "Idea 2", "Idea 3"] (derived from viewer requests),
  "highlighted_comments": [
    {{ "index": <original_index>, "reason": "Why this is valuable (in {language})" }}
  ],
  "classifications": [
    {{ "i": <index>, "c": <category_id> }}
  ]
}}

{rules}

IMPORTANT CONSTRAINTS:
1. The "classifications" array MUST contain exactly {count} items.
2. Every input comment MUST have a corresponding classification entry.
3. Map the "i" field strictly to the input "index".

Input Data:
{data}
"""


def simplify(comments: list[Comment]) -> list[dict[str, Any]]:
    """Keep only the fields the model needs, keyed by batch index."""
    return [
        {
            "index": idx,
            "text": c.text,
            "likes": c.like_count,
            "replies": c.reply_count,
        }
        for idx, c in enumerate(comments)
    ]


def build_prompt(comments: list[Comment], language: str) -> str:
    """Render the user message for a batch of comments."""
    simplified = simplify(comments)
    return _USER_TEMPLATE.format(
        count=len(simplified),
        language=language,
        rules=_CLASSIFICATION_RULES,
        data=json.dumps(simplified, ensure_ascii=False),
    )


class CommentClassifier:
    """Provider-agnostic classifier client. Ships with OpenAI-compatible APIs."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str,
        base_url: str = "",
        timeout: float = 120.0,
        temperature: float = 0.3,
        client: Any = None,
    ) -> None:
        self._provider = provider.lower()
        self._model = model
        self._temperature = temperature
        self._client: Any = client

        if self._client is not None:
            return

        if not api_key:
            logger.warning("LLM_API_KEY not set; analysis requests will fail.")
            return

        if self._provider == "openai":
            # Single attempt per request; the timeout bounds the wait.
            self._client = OpenAI(
                api_key=api_key,
                base_url=base_url or None,
                timeout=timeout,
                max_retries=0,
            )
        else:
            logger.warning("Unknown LLM_PROVIDER '%s'; analysis requests will fail.", provider)

    # ── public ──────────────────────────────────────────────────────────

    def generate(self, comments: list[Comment], language: str) -> str:
        """Send the whole batch in one request and return the raw model text."""
        if self._client is None:
            raise UpstreamGenerationError(
                f"LLM provider '{self._provider}' is not configured"
            )

        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(comments, language)},
                ],
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            raise UpstreamGenerationError(f"LLM request failed: {exc}") from exc

        if not resp.choices:
            # Blocked replies (e.g. safety filters) come back without choices.
            raise UpstreamGenerationError("LLM returned no choices")
        text = resp.choices[0].message.content or ""
        if not text.strip():
            raise UpstreamGenerationError("LLM returned an empty response")
        logger.info("LLM raw response: %s...", text[:50])
        return text
