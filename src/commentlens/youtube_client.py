"""Minimal YouTube Data API v3 comment-thread client (read-only)."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from commentlens.errors import UpstreamFetchError
from commentlens.models import Comment

logger = logging.getLogger(__name__)

_DEFAULT_API_BASE = "https://www.googleapis.com/youtube/v3"
_PAGE_SIZE = 100  # API maximum for commentThreads.list
_DEFAULT_RETRY_AFTER = 5
_MAX_RETRY_AFTER = 60


def _retry_after_seconds(value: str | None) -> int:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if not value:
        return _DEFAULT_RETRY_AFTER
    value = value.strip()
    if value.isascii() and value.isdigit():
        return min(int(value), _MAX_RETRY_AFTER)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return _DEFAULT_RETRY_AFTER
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = int((when - datetime.now(UTC)).total_seconds())
    return min(max(delta, 0), _MAX_RETRY_AFTER)


class YouTubeClient:
    """Thin wrapper around ``GET /commentThreads`` with inline replies."""

    def __init__(
        self,
        api_base: str = _DEFAULT_API_BASE,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/commentThreads"
        self._timeout = timeout
        self._session = session or requests.Session()

    # ── public ──────────────────────────────────────────────────────────
    def fetch_comments(
        self, video_id: str, access_token: str, max_count: int = 100
    ) -> list[Comment]:
        """Return up to *max_count* comments (top-level and replies) in API order.

        Replies follow their parent thread. Duplicate IDs are dropped.
        """
        if not access_token:
            raise UpstreamFetchError("Failed to fetch comments: access token is empty")

        headers = {"Authorization": f"Bearer {access_token}"}
        comments: list[Comment] = []
        seen: set[str] = set()
        page_token: str | None = None

        logger.info("Fetching comments for video: %s", video_id)
        while len(comments) < max_count:
            params: dict[str, Any] = {
                "part": "snippet,replies",
                "videoId": video_id,
                "maxResults": min(_PAGE_SIZE, max_count - len(comments)),
                "textFormat": "plainText",
            }
            if page_token:
                params["pageToken"] = page_token

            data = self._get(params, headers)
            items: list[dict[str, Any]] = data.get("items", [])
            if not items:
                break

            for item in items:
                try:
                    thread = self._parse_thread(item)
                except (KeyError, ValueError) as exc:
                    raise UpstreamFetchError(
                        f"Failed to fetch comments: unexpected thread payload ({exc})"
                    ) from exc
                for comment in thread:
                    if comment.id in seen:
                        continue
                    seen.add(comment.id)
                    comments.append(comment)
                if len(comments) >= max_count:
                    break

            logger.info("Fetched %d comments so far...", len(comments))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        final = comments[:max_count]
        logger.info("Total comments fetched for %s: %d", video_id, len(final))
        return final

    # ── private ─────────────────────────────────────────────────────────
    @staticmethod
    def _parse_thread(item: dict[str, Any]) -> list[Comment]:
        snippet = item.get("snippet", {})
        top = snippet.get("topLevelComment", {}).get("snippet", {})
        thread_id = str(item["id"])
        parsed = [
            Comment(
                id=thread_id,
                text=top.get("textOriginal", ""),
                author=top.get("authorDisplayName", ""),
                like_count=top.get("likeCount", 0),
                reply_count=snippet.get("totalReplyCount", 0),
                published_at=top.get("publishedAt"),
                author_image=top.get("authorProfileImageUrl"),
                is_reply=False,
            )
        ]
        for reply in item.get("replies", {}).get("comments", []):
            rs = reply.get("snippet", {})
            parsed.append(
                Comment(
                    id=str(reply["id"]),
                    text=rs.get("textOriginal", ""),
                    author=rs.get("authorDisplayName", ""),
                    like_count=rs.get("likeCount", 0),
                    reply_count=0,
                    published_at=rs.get("publishedAt"),
                    author_image=rs.get("authorProfileImageUrl"),
                    is_reply=True,
                    parent_id=thread_id,
                )
            )
        return parsed

    def _get(self, params: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        try:
            resp = self._session.get(
                self._url, params=params, headers=headers, timeout=self._timeout
            )
            if resp.status_code == 429:
                retry_after = _retry_after_seconds(resp.headers.get("Retry-After"))
                logger.warning("Rate-limited; sleeping %ds", retry_after)
                time.sleep(retry_after)
                resp = self._session.get(
                    self._url, params=params, headers=headers, timeout=self._timeout
                )
        except requests.RequestException as exc:
            raise UpstreamFetchError(f"Failed to fetch comments: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamFetchError(
                f"Failed to fetch comments: YouTube API returned "
                f"{resp.status_code}: {resp.text[:500]}"
            )
        try:
            return resp.json()  # type: ignore[no-any-return]
        except ValueError as exc:
            raise UpstreamFetchError(
                f"Failed to fetch comments: invalid JSON from YouTube API ({exc})"
            ) from exc
