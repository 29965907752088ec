"""
PostHog analytics client for server-side event tracking.

A singleton client mirrors customer engagement events recorded by the job.
Capture failures are logged and swallowed; analytics never breaks a run.
"""

from functools import lru_cache
from typing import Any

from posthog import Posthog

from guest_engagement.config import get_settings
from guest_engagement.core.logging import get_logger

logger = get_logger(__name__)


# Event name constants for type safety
class Events:
    REVIEW_SMS_SENT = "review_sms_sent"
    REVIEW_WINDOW_CLOSED = "review_window_closed"


@lru_cache(maxsize=1)
def get_posthog_client() -> Posthog | None:
    """
    Get or create the singleton PostHog client.

    Returns None if POSTHOG_API_KEY is not configured.
    """
    settings = get_settings()

    if not settings.posthog_api_key:
        logger.bind(hint="Set POSTHOG_API_KEY to enable analytics").debug("posthog_not_configured")
        return None

    client = Posthog(
        api_key=settings.posthog_api_key,
        host=settings.posthog_host,
        debug=settings.debug,
    )

    logger.bind(host=settings.posthog_host).info("posthog_initialized")
    return client


def capture(
    distinct_id: str,
    event: str,
    properties: dict[str, Any] | None = None,
) -> None:
    """
    Capture an event for a customer.

    Args:
        distinct_id: Customer ID
        event: Event name (use Events constants)
        properties: Additional event properties
    """
    client = get_posthog_client()
    if client is None:
        return

    try:
        client.capture(
            distinct_id=distinct_id,
            event=event,
            properties=properties or {},
        )
    except Exception as e:
        logger.bind(event=event, error=str(e)).error("posthog_capture_failed")


def shutdown() -> None:
    """Flush any pending events and shutdown the client."""
    client = get_posthog_client()
    if client is not None:
        client.shutdown()
