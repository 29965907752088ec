"""
Safe SMS dispatch.

``send_sms_safe`` is the only way the engagement stages send. Ordinary
failures come back as a failed ``SendResult``; failures that mean the send or
record-keeping pipeline is unreliable raise ``FatalSafetySignal`` and stop the
whole run.
"""

from dataclasses import asdict, dataclass
from typing import Any

from guest_engagement.core.logging import get_logger
from guest_engagement.schemas.engagement import SafetyAbort
from guest_engagement.services.sms_gateway import SendErrorKind, SendResult, SmsGateway

logger = get_logger(__name__)


@dataclass
class SendContext:
    """Where in the run a send happens, for logs and abort reports."""

    stage: str
    template_key: str | None = None
    booking_id: str | None = None
    customer_id: str | None = None
    event_id: str | None = None


class FatalSafetySignal(Exception):
    """Raised when a send result (or a safety-critical read) means the run must stop."""

    def __init__(
        self,
        code: str,
        *,
        stage: str,
        template_key: str | None = None,
        booking_id: str | None = None,
        customer_id: str | None = None,
        event_id: str | None = None,
        result: SendResult | None = None,
    ) -> None:
        super().__init__(f"Fatal safety signal {code} at {stage}")
        self.code = code
        self.stage = stage
        self.template_key = template_key
        self.booking_id = booking_id
        self.customer_id = customer_id
        self.event_id = event_id
        self.result = result

    def to_abort(self) -> SafetyAbort:
        return SafetyAbort(
            stage=self.stage,
            code=self.code,
            booking_id=self.booking_id,
            customer_id=self.customer_id,
            event_id=self.event_id,
            template_key=self.template_key,
        )


def _fatal_code(result: SendResult) -> str:
    if result.code is not None and result.code.fatal:
        return result.code.value
    return SendErrorKind.LOGGING_FAILED.value


async def send_sms_safe(
    gateway: SmsGateway,
    to: str,
    body: str,
    *,
    context: SendContext,
    customer_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> SendResult:
    """Send through ``gateway`` without letting provider errors escape.

    Raises:
        FatalSafetySignal: when the result is fatal (logging failed, safety
            system unavailable, idempotency conflict)
    """
    log = logger.bind(**{k: v for k, v in asdict(context).items() if v is not None})
    try:
        result = await gateway.send(to, body, customer_id=customer_id, metadata=metadata)
    except Exception as e:
        log.bind(error=str(e)).error("sms_send_exception")
        result = SendResult(success=False, error=str(e), code=SendErrorKind.EXCEPTION)

    if result.is_fatal:
        code = _fatal_code(result)
        log.bind(code=code, error=result.error).critical("sms_fatal_safety_signal")
        raise FatalSafetySignal(code, result=result, **asdict(context))

    if not result.success:
        log.bind(code=result.code.value if result.code else None, error=result.error).warning(
            "sms_send_failed"
        )
    return result
