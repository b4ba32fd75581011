"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from carrental.models.users import User, UserRole
from carrental.models.agencies import Agency, AgencyStatus
from carrental.models.cars import Car
from carrental.models.bookings import Booking, BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.transitions import StatusTransition

__all__ = [
    "User",
    "UserRole",
    "Agency",
    "AgencyStatus",
    "Car",
    "Booking",
    "BookingStatus",
    "PaymentMethod",
    "PaymentStatus",
    "StatusTransition",
]
