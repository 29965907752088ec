"""Cron trigger endpoint for the event guest engagement job."""

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from guest_engagement.core.logging import get_logger
from guest_engagement.core.security import extract_cron_secret, verify_cron_secret
from guest_engagement.dependencies import AppSettings, DBSession, Gateway
from guest_engagement.jobs.engagement import run_guest_engagement

logger = get_logger(__name__)

router = APIRouter()

GENERIC_FAILURE = "Failed to process event guest engagement"


@router.api_route("/cron/event-guest-engagement", methods=["GET", "POST"])
async def trigger_event_guest_engagement(
    db: DBSession,
    settings: AppSettings,
    gateway: Gateway,
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
) -> JSONResponse:
    """
    Run the guest engagement job once.

    Authorized by ``Authorization: Bearer <CRON_SECRET>`` or ``x-cron-secret``.
    Skips and safety aborts are still 200s; only an unhandled failure is a 500.
    """
    if not verify_cron_secret(settings, extract_cron_secret(authorization, x_cron_secret)):
        logger.warning("cron_request_unauthorized")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        report = await run_guest_engagement(db, gateway, settings=settings)
    except Exception as e:
        logger.bind(error=str(e)).error("cron_event_guest_engagement_failed")
        return JSONResponse({"success": False, "error": GENERIC_FAILURE}, status_code=500)

    return JSONResponse(report.to_response())
