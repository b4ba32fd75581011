"""
Status transition log - append-only audit trail for bookings and agencies.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Text, DateTime, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column

from carrental.lib.db import Base


class StatusTransition(Base):
    """
    One applied status change. Written in the same transaction as the
    compare-and-swap that applied it; never updated or deleted.
    """
    __tablename__ = "status_transitions"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # booking | agency
    entity_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_status_transitions_entity", "entity_type", "entity_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<StatusTransition({self.entity_type}={self.entity_id}, "
            f"{self.from_status}->{self.to_status})>"
        )
