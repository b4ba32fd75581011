"""
Booking model - car rentals between customers and agencies.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, Numeric, DateTime, ForeignKey, Uuid, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from carrental.lib.db import Base


class BookingStatus(str, enum.Enum):
    """Booking status state machine."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    """How the customer pays."""
    CARD = "card"
    CASH = "cash"


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class Booking(Base):
    """
    Booking entity - car rentals.
    State machine: pending → confirmed → in_progress → completed (or cancelled).
    Pricing columns are written once at creation and never updated.
    """
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    reference: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        nullable=False,
        index=True,
    )

    # Parties
    customer_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    car_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("cars.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Rental window
    pickup_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dropoff_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Pricing snapshot
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    extras_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    insurance_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    selected_extras: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        comment="Comma-separated extras catalog ids",
    )

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Payment
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "dropoff_at > pickup_at",
            name="booking_dropoff_after_pickup",
        ),
        CheckConstraint(
            "total_price = base_price + extras_price + insurance_price + tax_amount",
            name="booking_total_is_sum",
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, reference={self.reference}, status={self.status})>"
