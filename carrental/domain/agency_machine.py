"""
Agency status state machine.

Every transition is admin-only. There is no terminal state: an approved agency
can be suspended and later reinstated. ``approved_at`` and ``rejected_at`` are
mutually exclusive, so each plan carries the full set of audit fields the
store must write in the same update.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from carrental.domain.actors import Actor
from carrental.domain.errors import ForbiddenError, InvalidTransitionError, ValidationError
from carrental.domain.notifications import NotificationKind
from carrental.models.agencies import AgencyStatus


AGENCY_TRANSITIONS = {
    (AgencyStatus.PENDING, AgencyStatus.APPROVED): NotificationKind.AGENCY_APPROVED,
    (AgencyStatus.PENDING, AgencyStatus.REJECTED): NotificationKind.AGENCY_REJECTED,
    (AgencyStatus.APPROVED, AgencyStatus.SUSPENDED): None,
    # Reinstatement
    (AgencyStatus.SUSPENDED, AgencyStatus.APPROVED): NotificationKind.AGENCY_APPROVED,
}


@dataclass(frozen=True)
class AgencyTransition:
    from_status: AgencyStatus
    to_status: AgencyStatus
    notification: Optional[NotificationKind] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status


def coerce_agency_status(value: Union[str, AgencyStatus]) -> AgencyStatus:
    try:
        return AgencyStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown agency status '{value}'", field="status")


def _audit_fields(target: AgencyStatus, now: datetime, reason: Optional[str]) -> Dict[str, Any]:
    if target == AgencyStatus.APPROVED:
        return {"approved_at": now, "rejected_at": None, "suspension_reason": None}
    if target == AgencyStatus.REJECTED:
        return {"rejected_at": now, "approved_at": None, "rejection_reason": reason}
    return {"suspension_reason": reason}


def plan_agency_transition(
    current: AgencyStatus,
    requested: Union[str, AgencyStatus],
    actor: Actor,
    now: datetime,
    reason: Optional[str] = None,
) -> AgencyTransition:
    """
    Decide whether ``actor`` may move an agency from ``current`` to ``requested``.

    Raises:
        ValidationError: unknown requested status
        ForbiddenError: actor is not an administrator
        InvalidTransitionError: no such edge
    """
    target = coerce_agency_status(requested)

    if not actor.is_admin:
        raise ForbiddenError("Only administrators can change agency status", actor_role=actor.role.value)

    if target == current:
        return AgencyTransition(current, target)

    if (current, target) not in AGENCY_TRANSITIONS:
        raise InvalidTransitionError("agency", current.value, target.value, actor.role.value)

    reason = reason if reason and reason.strip() else None
    return AgencyTransition(
        current,
        target,
        AGENCY_TRANSITIONS[(current, target)],
        _audit_fields(target, now, reason),
    )
