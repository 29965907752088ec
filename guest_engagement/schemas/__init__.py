from guest_engagement.schemas.engagement import (
    CompletionCounts,
    EngagementRunReport,
    MarketingCounts,
    ReminderCounts,
    ReviewCounts,
    SafetyAbort,
    SendGuardResult,
)

__all__ = [
    "CompletionCounts",
    "EngagementRunReport",
    "MarketingCounts",
    "ReminderCounts",
    "ReviewCounts",
    "SafetyAbort",
    "SendGuardResult",
]
