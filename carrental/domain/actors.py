"""
Acting principal passed to every workflow operation.
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from carrental.models.users import UserRole


AGENCY_ROLES = frozenset({UserRole.AGENCY_OWNER, UserRole.AGENCY_STAFF})


@dataclass(frozen=True)
class Actor:
    """Who is asking. ``agency_id`` is set for agency owners and staff."""

    user_id: UUID
    role: UserRole
    agency_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_agency(self) -> bool:
        return self.role in AGENCY_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def actor_class(self) -> str:
        """Coarse class used by the transition tables: customer, agency or admin."""
        if self.is_admin:
            return "admin"
        if self.is_agency:
            return "agency"
        return "customer"

    @classmethod
    def customer(cls, user_id: UUID) -> "Actor":
        return cls(user_id=user_id, role=UserRole.CUSTOMER)
