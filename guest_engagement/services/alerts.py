"""Operator alerts for failed or aborted engagement runs (Discord webhook + email)."""

from html import escape

import httpx
import resend

from guest_engagement.config import get_config, get_settings
from guest_engagement.core.logging import get_logger

logger = get_logger(__name__)


ALERT_COLOR = 0xE74C3C
MAX_FIELD_LENGTH = 1024
MAX_DESCRIPTION_LENGTH = 2000


def build_alert_embed(title: str, error: str, context: dict | None = None) -> dict:
    """Discord embed for a failed or aborted run; context becomes inline fields."""
    engagement = get_config().engagement
    return {
        "title": f":warning: {title}",
        "description": error[:MAX_DESCRIPTION_LENGTH],
        "color": ALERT_COLOR,
        "fields": [
            {"name": str(key), "value": str(value)[:MAX_FIELD_LENGTH], "inline": True}
            for key, value in (context or {}).items()
            if value is not None
        ],
        "footer": {"text": f"{engagement.venue_name} · {engagement.job_name}"},
    }


async def send_discord_error(title: str, error: str, context: dict | None = None) -> bool:
    """Post a run alert to the Discord error webhook. Returns False when not configured or on failure."""
    webhook_url = get_settings().discord_error_webhook_url
    if not webhook_url:
        logger.debug("discord_error_webhook_not_set")
        return False

    payload = {"embeds": [build_alert_embed(title, error, context)]}
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(webhook_url, json=payload)
    except httpx.TimeoutException:
        logger.bind(title=title).error("discord_error_webhook_timeout")
        return False
    except httpx.HTTPError as e:
        logger.bind(title=title, error=str(e)).error("discord_error_send_failed")
        return False

    if resp.status_code not in (200, 204):
        logger.bind(title=title, status=resp.status_code).error("discord_error_webhook_failed")
        return False

    logger.bind(title=title).info("discord_error_sent")
    return True


async def send_operator_email(title: str, error: str, context: dict | None = None) -> bool:
    """Email the operator through Resend. Returns False when not configured or on failure."""
    settings = get_settings()
    if not settings.resend_api_key or not settings.operator_email:
        logger.debug("operator_email_not_configured")
        return False

    resend.api_key = settings.resend_api_key
    rows = "".join(
        f"<tr><td><b>{escape(str(key))}</b></td><td>{escape(str(value))}</td></tr>"
        for key, value in (context or {}).items()
    )
    html = f"<h2>{escape(title)}</h2><p>{escape(error)}</p><table>{rows}</table>"

    try:
        resend.Emails.send(
            {
                "from": f"The Anchor Alerts <alerts@{settings.email_domain}>",
                "to": [settings.operator_email],
                "subject": title,
                "html": html,
            }
        )
    except Exception as e:
        logger.bind(error=str(e)).error("operator_email_failed")
        return False

    logger.bind(to=settings.operator_email).info("operator_email_sent")
    return True


async def alert_operator(title: str, error: str, context: dict | None = None) -> None:
    """Best-effort fan-out to every configured alert channel."""
    await send_discord_error(title, error, context)
    await send_operator_email(title, error, context)
