"""ICS feed fetching."""

import logging
from typing import Optional

import httpx

from calsync.config import get_settings
from calsync.errors import FeedUnreachableError

logger = logging.getLogger(__name__)


def normalize_feed_url(url: str) -> str:
    """webcal:// is an alias for https:// used by calendar subscription links."""
    url = url.strip()
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


async def fetch_feed(
    url: str,
    *,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Download an ICS feed and return its text.

    Raises FeedUnreachableError on transport errors, timeouts and any
    non-2xx response.
    """
    settings = get_settings()
    target = normalize_feed_url(url)
    headers = {
        "User-Agent": settings.feed_user_agent,
        "Accept": "text/calendar, text/plain, */*",
    }

    try:
        async with httpx.AsyncClient(
            timeout=timeout or settings.feed_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(target, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning(f"Timed out fetching feed {target}")
        raise FeedUnreachableError(f"Timed out fetching feed: {e}") from e
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch feed {target}: {e}")
        raise FeedUnreachableError(f"Failed to fetch feed: {e}") from e

    if not response.is_success:
        logger.warning(f"Feed {target} returned HTTP {response.status_code}")
        raise FeedUnreachableError(
            f"Feed returned HTTP {response.status_code} {response.reason_phrase}".strip()
        )

    logger.debug(f"Fetched {len(response.content)} bytes from {target}")
    return response.text
