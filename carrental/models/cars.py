"""
Car model - the part of the fleet the booking workflow needs.
"""
from decimal import Decimal
from uuid import uuid4, UUID

from sqlalchemy import String, Integer, Numeric, Boolean, ForeignKey, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from carrental.lib.db import Base


class Car(Base):
    """
    Car entity - belongs to exactly one agency.
    Bookable only while active and while its agency is approved.
    """
    __tablename__ = "cars"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    agency_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    price_per_day: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("price_per_day > 0", name="car_price_positive"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model} {self.year}"

    def __repr__(self) -> str:
        return f"<Car(id={self.id}, name={self.display_name}, agency_id={self.agency_id})>"
