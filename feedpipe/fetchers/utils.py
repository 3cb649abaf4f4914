from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import requests

logger = logging.getLogger(__name__)

_HTTP_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}


def load_screenshot(
    reference: str | None, root: str = "public", session: Any = None
) -> tuple[bytes, str] | None:
    """Return ``(image_bytes, mime_type)`` for a screenshot reference.

    *reference* is either an ``http(s)`` URL or a path relative to *root*
    (a leading ``/`` is treated as relative too). ``None`` means the image
    could not be found.
    """
    if not reference:
        return None

    if reference.startswith(("http://", "https://")):
        http = session or requests
        try:
            response = http.get(reference, timeout=30, headers=_HTTP_HEADERS)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to download screenshot %s: %s", reference, exc)
            return None
        mime_type = response.headers.get("Content-Type", "image/png").split(";")[0]
        return response.content, mime_type

    path = Path(reference)
    if not path.is_absolute() or not path.exists():
        path = Path(root) / reference.lstrip("/")
    if not path.exists():
        logger.info("Screenshot not found: %s", path)
        return None

    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return path.read_bytes(), mime_type


def fetch_reddit_metrics(post_id: str, session: Any = None) -> dict[str, Any] | None:
    """Current score/comment counts from Reddit's public JSON endpoint."""
    http = session or requests
    try:
        response = http.get(
            f"https://www.reddit.com/comments/{post_id}.json",
            timeout=15,
            headers={**_HTTP_HEADERS, "Accept": "application/json"},
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Reddit metrics fetch error for %s: %s", post_id, exc)
        return None

    try:
        post = data[0]["data"]["children"][0]["data"]
    except (IndexError, KeyError, TypeError):
        return None

    return {
        "score": post.get("score", 0),
        "upvote_ratio": post.get("upvote_ratio", 0),
        "comments": post.get("num_comments", 0),
    }
