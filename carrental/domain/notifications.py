"""
Notification kinds emitted as side effects of workflow transitions.
"""
import enum


class NotificationKind(str, enum.Enum):
    """Email kinds the notification service knows how to deliver."""
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    AGENCY_APPROVED = "agency_approved"
    AGENCY_REJECTED = "agency_rejected"
    AGENCY_REGISTERED = "agency_registered"  # admin notice, not a status transition
