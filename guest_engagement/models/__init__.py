from guest_engagement.models.analytics import AnalyticsEvent
from guest_engagement.models.base import Base
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking, WaitlistEntry
from guest_engagement.models.customer import Customer, SmsStatus
from guest_engagement.models.event import Event, EventStatus
from guest_engagement.models.guest_token import GuestToken, GuestTokenAction
from guest_engagement.models.interest import ManualInterestRecipient
from guest_engagement.models.job_run import CronJobRun, CronRunStatus
from guest_engagement.models.message import Message, MessageDirection

__all__ = [
    "Base",
    "AnalyticsEvent",
    "BookingStatus",
    "EventBooking",
    "TableBooking",
    "WaitlistEntry",
    "Customer",
    "SmsStatus",
    "Event",
    "EventStatus",
    "GuestToken",
    "GuestTokenAction",
    "ManualInterestRecipient",
    "CronJobRun",
    "CronRunStatus",
    "Message",
    "MessageDirection",
]
