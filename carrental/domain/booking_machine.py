"""
Booking status state machine.

Three transition relations:

* ``BOOKING_TRANSITIONS`` - the strict table every actor goes through. Each
  edge lists the actor classes allowed to take it and the customer
  notification it fires.
* ``ADMIN_OVERRIDE_TARGETS`` - the administrator escape hatch: from any
  non-terminal status an admin may set any of these targets, whether or not
  the table has an edge for it.
* ``OWN_CANCELLATION_SOURCES`` - the statuses a customer may cancel their own
  booking from through the dedicated cancel action. Wider than the
  customer's entries in the table, which stop at ``pending``.

Planning is pure: ``plan_booking_transition`` and ``plan_own_cancellation``
only decide what should happen. Persisting the change (compare-and-swap) and
firing the notification are the coordinator's job.
"""
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from carrental.domain.actors import Actor
from carrental.domain.errors import ForbiddenError, InvalidTransitionError, ValidationError
from carrental.domain.notifications import NotificationKind
from carrental.models.bookings import BookingStatus, PaymentStatus


TERMINAL_STATES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

ADMIN_OVERRIDE_TARGETS = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.CANCELLED,
    BookingStatus.COMPLETED,
})

PATH_TABLE = "table"
PATH_OVERRIDE = "override"
PATH_NOOP = "noop"

OWN_CANCELLATION_SOURCES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


@dataclass(frozen=True)
class BookingEdge:
    actors: frozenset
    notification: Optional[NotificationKind]


BOOKING_TRANSITIONS = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): BookingEdge(
        frozenset({"agency", "admin"}), NotificationKind.BOOKING_CONFIRMED
    ),
    (BookingStatus.PENDING, BookingStatus.CANCELLED): BookingEdge(
        frozenset({"customer", "agency", "admin"}), NotificationKind.BOOKING_CANCELLED
    ),
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS): BookingEdge(
        frozenset({"agency"}), None
    ),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): BookingEdge(
        frozenset({"agency", "admin"}), NotificationKind.BOOKING_CANCELLED
    ),
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED): BookingEdge(
        frozenset({"agency", "admin"}), NotificationKind.BOOKING_COMPLETED
    ),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED): BookingEdge(
        frozenset({"agency", "admin"}), NotificationKind.BOOKING_COMPLETED
    ),
}

# Notification for a target status reached through the admin override
OVERRIDE_NOTIFICATIONS = {
    BookingStatus.CONFIRMED: NotificationKind.BOOKING_CONFIRMED,
    BookingStatus.CANCELLED: NotificationKind.BOOKING_CANCELLED,
    BookingStatus.COMPLETED: NotificationKind.BOOKING_COMPLETED,
}


@dataclass(frozen=True)
class BookingTransition:
    """Outcome of planning a status change for one booking."""
    from_status: BookingStatus
    to_status: BookingStatus
    path: str
    notification: Optional[NotificationKind] = None
    payment_status: Optional[PaymentStatus] = None

    @property
    def is_noop(self) -> bool:
        return self.path == PATH_NOOP


def coerce_booking_status(value: Union[str, BookingStatus]) -> BookingStatus:
    """Parse a requested status, rejecting unknown values."""
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown booking status '{value}'", field="status")


def authorize_booking_actor(actor: Actor, customer_id: UUID, agency_id: UUID) -> None:
    """
    Ownership check, independent of the requested status.

    Customers act only on their own bookings, agency members only on bookings
    for cars their agency owns, admins on anything.
    """
    if actor.is_admin:
        return
    if actor.is_agency:
        if actor.agency_id is None or actor.agency_id != agency_id:
            raise ForbiddenError("Booking belongs to another agency", actor_role=actor.role.value)
        return
    if actor.user_id != customer_id:
        raise ForbiddenError("Booking belongs to another customer", actor_role=actor.role.value)


def plan_booking_transition(
    current: BookingStatus,
    requested: Union[str, BookingStatus],
    actor: Actor,
    *,
    customer_id: UUID,
    agency_id: UUID,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
) -> BookingTransition:
    """
    Decide whether ``actor`` may move a booking from ``current`` to ``requested``.

    Returns a no-op plan when the booking is already in the requested status.

    Raises:
        ValidationError: unknown requested status
        ForbiddenError: actor is not linked to the booking
        InvalidTransitionError: neither the table nor the admin override allows it
    """
    target = coerce_booking_status(requested)
    authorize_booking_actor(actor, customer_id, agency_id)

    if target == current:
        return BookingTransition(current, target, PATH_NOOP)

    refund = (
        PaymentStatus.REFUNDED
        if target == BookingStatus.CANCELLED and payment_status == PaymentStatus.COMPLETED
        else None
    )

    edge = BOOKING_TRANSITIONS.get((current, target))
    if edge is not None and actor.actor_class in edge.actors:
        return BookingTransition(current, target, PATH_TABLE, edge.notification, refund)

    if actor.is_admin and current not in TERMINAL_STATES and target in ADMIN_OVERRIDE_TARGETS:
        return BookingTransition(
            current, target, PATH_OVERRIDE, OVERRIDE_NOTIFICATIONS.get(target), refund
        )

    raise InvalidTransitionError("booking", current.value, target.value, actor.role.value)


def plan_own_cancellation(
    current: BookingStatus,
    actor: Actor,
    *,
    customer_id: UUID,
    agency_id: UUID,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
) -> BookingTransition:
    """
    Decide whether the booking's customer may cancel it.

    Allows ``pending`` and ``confirmed`` bookings; a card payment already
    captured is marked refunded.

    Raises:
        ForbiddenError: actor is not the booking's customer
        InvalidTransitionError: booking is in progress or completed
    """
    if not actor.is_customer:
        raise ForbiddenError("Only the booking's customer can cancel it here", actor_role=actor.role.value)
    authorize_booking_actor(actor, customer_id, agency_id)

    target = BookingStatus.CANCELLED
    if current == target:
        return BookingTransition(current, target, PATH_NOOP)
    if current not in OWN_CANCELLATION_SOURCES:
        raise InvalidTransitionError("booking", current.value, target.value, actor.role.value)

    refund = PaymentStatus.REFUNDED if payment_status == PaymentStatus.COMPLETED else None
    return BookingTransition(current, target, PATH_TABLE, NotificationKind.BOOKING_CANCELLED, refund)
