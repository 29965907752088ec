"""Response models for the guest engagement run.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendGuardResult(CamelModel):
    """Outcome of the recent-send circuit breaker."""

    blocked: bool
    recent_count: int
    window_minutes: int
    limit: int


class ReminderCounts(CamelModel):
    sent_7d: int = Field(default=0, alias="sent7d")
    sent_1d: int = Field(default=0, alias="sent1d")
    skipped: int = 0


class ReviewCounts(CamelModel):
    sent: int = 0
    skipped: int = 0


class CompletionCounts(CamelModel):
    completed: int = 0


class MarketingCounts(CamelModel):
    sent: int = 0
    skipped: int = 0
    events_processed: int = 0


class SafetyAbort(CamelModel):
    """Structured context of a fatal safety signal."""

    stage: str
    code: str
    booking_id: str | None = None
    customer_id: str | None = None
    event_id: str | None = None
    template_key: str | None = None


class EngagementRunReport(CamelModel):
    """What a single engagement run did (or why it did nothing)."""

    success: bool = True
    skipped: bool | None = None
    reason: str | None = None
    aborted: bool | None = None
    abort_reason: str | None = None
    abort_stage: str | None = None
    abort_booking_id: str | None = None
    abort_customer_id: str | None = None
    abort_event_id: str | None = None
    abort_template_key: str | None = None
    safety_aborts: list[SafetyAbort] | None = None
    deadline_reached: bool | None = None

    reminders: ReminderCounts | None = None
    reviews: ReviewCounts | None = None
    completion: CompletionCounts | None = None
    table_reviews: ReviewCounts | None = None
    table_completion: CompletionCounts | None = None
    marketing: MarketingCounts | None = None

    run_key: str | None = None
    guard: SendGuardResult | None = None
    processed_at: datetime

    def to_response(self) -> dict:
        """JSON-ready camelCase payload, omitting fields that do not apply."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
