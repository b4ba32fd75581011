"""
Agency model - rental agencies registered on the marketplace.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, DateTime, ForeignKey, Uuid, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from carrental.lib.db import Base


class AgencyStatus(str, enum.Enum):
    """Agency account status. Only approved agencies take new bookings."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class Agency(Base):
    """
    Agency entity.
    State machine: pending → approved | rejected, approved ⇄ suspended.
    """
    __tablename__ = "agencies"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # Registering user (no FK: users.agency_id already points back here)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Contact
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    license_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[AgencyStatus] = mapped_column(
        SQLEnum(AgencyStatus, name="agency_status"),
        nullable=False,
        default=AgencyStatus.PENDING,
        index=True,
    )

    # Audit
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suspension_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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
            "approved_at IS NULL OR rejected_at IS NULL",
            name="agency_approval_exclusive",
        ),
    )

    def __repr__(self) -> str:
        return f"<Agency(id={self.id}, slug={self.slug}, status={self.status})>"
