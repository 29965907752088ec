"""
SMS gateway adapters.

A gateway sends one SMS and records it in ``messages``. It never raises for
provider failures; it reports them through ``SendResult`` so the dispatcher
can tell an ordinary per-recipient failure from a fatal safety signal.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_settings
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.models.message import Message, MessageDirection

logger = get_logger(__name__)

# Twilio error codes for numbers that will never accept the message
_UNREACHABLE_TWILIO_CODES = frozenset({21211, 21610, 21614})


class SendErrorKind(str, Enum):
    LOGGING_FAILED = "logging_failed"
    SAFETY_UNAVAILABLE = "safety_unavailable"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    PROVIDER_ERROR = "provider_error"
    INVALID_NUMBER = "invalid_number"
    GATEWAY_DISABLED = "gateway_disabled"
    EXCEPTION = "exception"

    @property
    def fatal(self) -> bool:
        """Whether this failure means the send pipeline itself can't be trusted."""
        return self in _FATAL_KINDS


_FATAL_KINDS = frozenset(
    {
        SendErrorKind.LOGGING_FAILED,
        SendErrorKind.SAFETY_UNAVAILABLE,
        SendErrorKind.IDEMPOTENCY_CONFLICT,
    }
)


@dataclass
class SendResult:
    """Outcome of a single send."""

    success: bool
    sid: str | None = None
    scheduled_for: datetime | None = None
    error: str | None = None
    code: SendErrorKind | None = None
    log_failure: bool = False

    @property
    def is_fatal(self) -> bool:
        return self.log_failure or (self.code is not None and self.code.fatal)


class SmsGateway(Protocol):
    """Protocol for SMS providers."""

    async def send(
        self,
        to: str,
        body: str,
        *,
        customer_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        """Send one SMS."""
        ...


class TwilioGateway:
    """Twilio Messages REST API, with an outbound ``messages`` row per send."""

    def __init__(self, db: AsyncSession, settings: Settings) -> None:
        self.db = db
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.from_number = settings.twilio_phone_number
        self.url = (
            f"{settings.twilio_api_base_url.rstrip('/')}"
            f"/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        )

    async def send(
        self,
        to: str,
        body: str,
        *,
        customer_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        metadata = metadata or {}
        template_key = metadata.get("template_key")
        log = logger.bind(customer_id=customer_id, template_key=template_key)

        async with httpx.AsyncClient(timeout=15.0, auth=(self.account_sid, self.auth_token)) as client:
            try:
                resp = await client.post(
                    self.url,
                    data={"To": to, "From": self.from_number, "Body": body},
                )
            except httpx.TimeoutException:
                log.error("twilio_send_timeout")
                return SendResult(success=False, error="Twilio request timed out", code=SendErrorKind.PROVIDER_ERROR)
            except httpx.HTTPError as e:
                log.bind(error=str(e)).error("twilio_send_failed")
                return SendResult(success=False, error=str(e), code=SendErrorKind.PROVIDER_ERROR)

        if resp.status_code >= 400:
            payload = _json_or_empty(resp)
            twilio_code = payload.get("code")
            code = (
                SendErrorKind.INVALID_NUMBER
                if twilio_code in _UNREACHABLE_TWILIO_CODES
                else SendErrorKind.PROVIDER_ERROR
            )
            log.bind(status=resp.status_code, twilio_code=twilio_code).warning("twilio_send_rejected")
            return SendResult(
                success=False,
                error=payload.get("message") or f"Twilio returned {resp.status_code}",
                code=code,
            )

        payload = _json_or_empty(resp)
        sid = payload.get("sid")
        sent_at = utc_now()

        try:
            await self._record(
                to=to,
                body=body,
                customer_id=customer_id,
                metadata=metadata,
                sid=sid,
                status=payload.get("status") or "queued",
                sent_at=sent_at,
            )
        except Exception as e:
            # The SMS is out but nothing remembers it; dedupe can no longer be trusted
            log.bind(sid=sid, error=str(e)).error("sms_message_record_failed")
            await self.db.rollback()
            return SendResult(
                success=True,
                sid=sid,
                scheduled_for=sent_at,
                error=str(e),
                code=SendErrorKind.LOGGING_FAILED,
                log_failure=True,
            )

        log.bind(sid=sid).info("sms_sent")
        return SendResult(success=True, sid=sid, scheduled_for=sent_at)

    async def _record(
        self,
        *,
        to: str,
        body: str,
        customer_id: str | None,
        metadata: dict[str, Any],
        sid: str | None,
        status: str,
        sent_at: datetime,
    ) -> None:
        self.db.add(
            Message(
                customer_id=customer_id,
                event_booking_id=metadata.get("event_booking_id"),
                table_booking_id=metadata.get("table_booking_id"),
                event_id=metadata.get("event_id"),
                template_key=metadata.get("template_key"),
                direction=MessageDirection.OUTBOUND,
                to_number=to,
                body=body,
                status=status,
                provider_sid=sid,
                metadata_json=metadata,
                created_at=sent_at,
            )
        )
        await self.db.flush()


class DisabledGateway:
    """Used when Twilio isn't configured. Every send is a non-fatal failure."""

    async def send(
        self,
        to: str,
        body: str,
        *,
        customer_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        logger.bind(customer_id=customer_id).warning("sms_gateway_disabled")
        return SendResult(
            success=False,
            error="SMS gateway not configured",
            code=SendErrorKind.GATEWAY_DISABLED,
        )


def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def get_sms_gateway(db: AsyncSession, settings: Settings | None = None) -> SmsGateway:
    """Twilio when fully configured, otherwise the disabled gateway."""
    settings = settings or get_settings()
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number:
        return TwilioGateway(db, settings)
    logger.warning("twilio_not_configured")
    return DisabledGateway()
