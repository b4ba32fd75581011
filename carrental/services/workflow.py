"""
Workflow coordinator - booking lifecycle and agency approval.

This module ties caller actions to the two state machines:
1. Load the entity from the data store
2. Plan the transition (legal table, admin override or no-op)
3. Apply it with a compare-and-swap on the current status
4. After the write succeeds, hand the notification to the dispatcher

A lost compare-and-swap is retried once. The retry re-reads the record and
only re-attempts if the status is still the one first observed; a stale
transition is never applied. Notification failures are logged by the
dispatcher and never affect the result of a transition.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from carrental.domain.actors import Actor
from carrental.domain.agency_machine import coerce_agency_status, plan_agency_transition
from carrental.domain.booking_machine import (
    BookingTransition,
    coerce_booking_status,
    plan_booking_transition,
    plan_own_cancellation,
)
from carrental.domain.errors import ConflictError, ForbiddenError, UnavailableError, ValidationError
from carrental.domain.identifiers import generate_booking_reference, slugify
from carrental.domain.notifications import NotificationKind
from carrental.domain.pricing import Quote, quote
from carrental.lib.db import get_session_factory
from carrental.lib.logging import get_logger, log_with_context
from carrental.lib.metrics import MetricsCollector, get_metrics_collector
from carrental.lib.settings import settings
from carrental.models.agencies import AgencyStatus
from carrental.models.bookings import BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.users import UserRole
from carrental.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from carrental.services.store import (
    AgencyRecord,
    AgencyRegistration,
    BookingRecord,
    DataStore,
    DuplicateReferenceError,
    NewBooking,
    SqlAlchemyDataStore,
    TransitionLogEntry,
    UserRecord,
)

logger = get_logger(__name__)


# One retry after a lost compare-and-swap
CONFLICT_ATTEMPTS = 2

# Reference regeneration attempts on a duplicate
REFERENCE_ATTEMPTS = 3

HISTORY_ENTITIES = ("booking", "agency")


@dataclass(frozen=True)
class BookingRequest:
    car_id: UUID
    pickup_at: datetime
    dropoff_at: datetime
    payment_method: PaymentMethod
    extras: Tuple[str, ...] = ()
    special_requests: Optional[str] = None


@dataclass(frozen=True)
class BookingReceipt:
    booking_id: UUID
    reference: str
    total_price: Any
    deposit_amount: Any
    status: BookingStatus


@dataclass(frozen=True)
class TransitionResult:
    status: str
    changed: bool


def _utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise ForbiddenError(f"Only administrators can {action}", actor_role=actor.role.value)


class WorkflowCoordinator:
    """
    Orchestration surface for bookings and agencies.

    Collaborators are injected so tests can swap the store, the notifier and
    the clock.
    """

    def __init__(
        self,
        store: DataStore,
        notifier=None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
        admin_email: Optional[str] = None,
        reference_prefix: Optional[str] = None,
    ):
        """
        Args:
            store: Data store
            notifier: Object with ``notify(kind, recipient_email, payload)``; wrapped
                in a new dispatcher when ``dispatcher`` is not given
            dispatcher: Shared fire-and-forget dispatcher
            clock: Returns the current time (defaults to UTC now)
            metrics: Metrics collector (defaults to global instance)
            admin_email: Recipient of agency registration notices
            reference_prefix: Booking reference prefix
        """
        if dispatcher is None and notifier is None:
            raise ValueError("Either notifier or dispatcher is required")

        self.store = store
        self.metrics = metrics or get_metrics_collector()
        self.dispatcher = dispatcher or NotificationDispatcher(notifier, metrics=self.metrics)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.admin_email = admin_email or settings.admin_email
        self.reference_prefix = reference_prefix or settings.booking_reference_prefix

    # ===== Bookings =====

    def quote_booking(
        self,
        car_id: UUID,
        pickup_at: datetime,
        dropoff_at: datetime,
        extras: Iterable[str] = (),
    ) -> Quote:
        """Price a rental window without creating anything."""
        car = self.store.get_car_with_agency(car_id)
        return quote(car.price_per_day, _utc(pickup_at), _utc(dropoff_at), extras)

    def create_booking(
        self,
        customer_id: UUID,
        request: BookingRequest,
        created_by: Optional[Actor] = None,
        confirm: bool = False,
    ) -> BookingReceipt:
        """
        Price and persist a new booking.

        Bookings start ``pending``. An administrator booking on behalf of a
        customer may pass ``confirm=True`` to create it ``confirmed``, which
        fires the confirmation email.

        Raises:
            ForbiddenError: inactive customer, or acting for someone else without being admin
            ValidationError: bad window, unknown extras, car not bookable
            NotFoundError: unknown customer or car
        """
        if created_by is not None and not created_by.is_admin and created_by.user_id != customer_id:
            raise ForbiddenError("Cannot book on behalf of another user", actor_role=created_by.role.value)
        if confirm and (created_by is None or not created_by.is_admin):
            raise ForbiddenError(
                "Only administrators can create confirmed bookings",
                actor_role=created_by.role.value if created_by else None,
            )

        pickup = _utc(request.pickup_at)
        dropoff = _utc(request.dropoff_at)
        if dropoff <= pickup:
            raise ValidationError("Drop-off must be after pickup", field="dropoff_at")
        if pickup < _utc(self.clock()):
            raise ValidationError("Pickup cannot be in the past", field="pickup_at")

        customer = self.store.get_user(customer_id)
        if not customer.is_active:
            raise ForbiddenError("Customer account is inactive", actor_role=customer.role.value)

        car = self.store.get_car_with_agency(request.car_id)
        if car.agency_status != AgencyStatus.APPROVED:
            raise ValidationError(
                f"Car is not bookable: agency is {car.agency_status.value}", field="car_id"
            )
        if not car.is_active:
            raise ValidationError("Car is not bookable: car is inactive", field="car_id")

        priced = quote(car.price_per_day, pickup, dropoff, request.extras)
        status = BookingStatus.CONFIRMED if confirm else BookingStatus.PENDING
        # Card payments are captured at checkout, cash is collected at pickup
        payment_status = (
            PaymentStatus.COMPLETED if request.payment_method == PaymentMethod.CARD else PaymentStatus.PENDING
        )

        new_booking = NewBooking(
            reference="",
            customer_id=customer_id,
            car_id=car.car_id,
            pickup_at=pickup,
            dropoff_at=dropoff,
            pricing=priced.breakdown,
            status=status,
            payment_method=request.payment_method,
            payment_status=payment_status,
            extras=priced.extras,
            special_requests=request.special_requests,
        )
        booking = self._insert_with_fresh_reference(new_booking)

        self.metrics.increment_bookings_created(request.payment_method.value, status.value)
        log_with_context(
            logger,
            "info",
            "Booking created",
            booking_id=str(booking.id),
            reference=booking.reference,
            status=status.value,
            rental_days=priced.rental_days,
        )

        if status == BookingStatus.CONFIRMED:
            self.dispatcher.dispatch(
                NotificationKind.BOOKING_CONFIRMED,
                booking.customer_email,
                self._booking_payload(booking),
            )

        return BookingReceipt(
            booking_id=booking.id,
            reference=booking.reference,
            total_price=booking.pricing.total_price,
            deposit_amount=booking.pricing.security_deposit,
            status=booking.status,
        )

    def _insert_with_fresh_reference(self, new_booking: NewBooking) -> BookingRecord:
        retrying = Retrying(
            stop=stop_after_attempt(REFERENCE_ATTEMPTS),
            retry=retry_if_exception_type(DuplicateReferenceError),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    reference = generate_booking_reference(self.reference_prefix)
                    return self.store.insert_booking(replace(new_booking, reference=reference))
        except DuplicateReferenceError as e:
            logger.error(f"Could not allocate a unique booking reference: {e}")
            raise UnavailableError("insert_booking", "Could not allocate a unique booking reference") from e

    def transition_booking(
        self,
        booking_id: UUID,
        requested_status,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a booking to ``requested_status`` on behalf of ``actor``.

        Raises:
            ValidationError, ForbiddenError, InvalidTransitionError, NotFoundError:
                surfaced immediately
            ConflictError: the status kept changing underneath us
            UnavailableError: store timeout, nothing written
        """
        target = coerce_booking_status(requested_status)

        def plan(booking: BookingRecord) -> BookingTransition:
            return plan_booking_transition(
                booking.status,
                target,
                actor,
                customer_id=booking.customer_id,
                agency_id=booking.agency_id,
                payment_status=booking.payment_status,
            )

        return self._apply_booking_transition(booking_id, target, actor, reason, plan)

    def cancel_own_booking(
        self,
        booking_id: UUID,
        customer_id: UUID,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Customer cancels their own pending or confirmed booking."""
        actor = Actor.customer(customer_id)

        def plan(booking: BookingRecord) -> BookingTransition:
            return plan_own_cancellation(
                booking.status,
                actor,
                customer_id=booking.customer_id,
                agency_id=booking.agency_id,
                payment_status=booking.payment_status,
            )

        return self._apply_booking_transition(booking_id, BookingStatus.CANCELLED, actor, reason, plan)

    def _apply_booking_transition(
        self,
        booking_id: UUID,
        target: BookingStatus,
        actor: Actor,
        reason: Optional[str],
        planner: Callable[[BookingRecord], BookingTransition],
    ) -> TransitionResult:
        observed: Dict[str, BookingStatus] = {}

        def attempt():
            booking = self.store.get_booking(booking_id)
            first_seen = observed.setdefault("status", booking.status)
            if booking.status not in (first_seen, target):
                raise ConflictError("booking", booking_id, first_seen.value, booking.status.value)

            plan = planner(booking)
            if not plan.is_noop:
                extra = {"payment_status": plan.payment_status} if plan.payment_status else {}
                self.store.compare_and_set_booking_status(
                    booking_id,
                    plan.from_status,
                    plan.to_status,
                    actor=actor,
                    reason=reason,
                    **extra,
                )
            return plan, booking

        plan, booking = self._with_conflict_retry("booking", booking_id, attempt)

        if plan.is_noop:
            logger.debug(f"Booking {booking_id} already {plan.to_status.value}, nothing to do")
            return TransitionResult(status=plan.to_status.value, changed=False)

        self.metrics.increment_transitions("booking", plan.from_status.value, plan.to_status.value, plan.path)
        log_with_context(
            logger,
            "info",
            "Booking transition applied",
            booking_id=str(booking_id),
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
            path=plan.path,
            actor_role=actor.role.value,
        )

        if plan.notification is not None:
            self.dispatcher.dispatch(
                plan.notification,
                booking.customer_email,
                self._booking_payload(booking, reason),
            )

        return TransitionResult(status=plan.to_status.value, changed=True)

    def active_booking_count(self, actor: Actor, agency_id: Optional[UUID] = None) -> int:
        """Confirmed and in-progress bookings visible to ``actor``."""
        if actor.is_customer:
            return self.store.count_active_bookings_for_customer(actor.user_id)

        if actor.is_agency:
            if actor.agency_id is None:
                raise ForbiddenError("Agency account is not linked to an agency", actor_role=actor.role.value)
            if agency_id is not None and agency_id != actor.agency_id:
                raise ForbiddenError("Cannot read another agency's bookings", actor_role=actor.role.value)
            return self.store.count_active_bookings_for_agency(actor.agency_id)

        if agency_id is None:
            raise ValidationError("agency_id is required for administrators", field="agency_id")
        return self.store.count_active_bookings_for_agency(agency_id)

    # ===== Agencies =====

    def transition_agency(
        self,
        agency_id: UUID,
        requested_status,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Approve, reject, suspend or reinstate an agency. Admin only.

        Suspension only blocks new bookings; existing ones are left as they are.
        """
        _require_admin(actor, "change agency status")
        target = coerce_agency_status(requested_status)
        observed: Dict[str, AgencyStatus] = {}

        def attempt():
            agency = self.store.get_agency(agency_id)
            first_seen = observed.setdefault("status", agency.status)
            if agency.status not in (first_seen, target):
                raise ConflictError("agency", agency_id, first_seen.value, agency.status.value)

            plan = plan_agency_transition(agency.status, target, actor, _utc(self.clock()), reason)
            if not plan.is_noop:
                self.store.compare_and_set_agency_status(
                    agency_id,
                    plan.from_status,
                    plan.to_status,
                    actor=actor,
                    reason=reason,
                    **plan.fields,
                )
            return plan, agency

        plan, agency = self._with_conflict_retry("agency", agency_id, attempt)

        if plan.is_noop:
            return TransitionResult(status=plan.to_status.value, changed=False)

        self.metrics.increment_transitions("agency", plan.from_status.value, plan.to_status.value)
        log_with_context(
            logger,
            "info",
            "Agency transition applied",
            agency_id=str(agency_id),
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
            actor_role=actor.role.value,
        )

        if plan.notification is not None:
            self.dispatcher.dispatch(
                plan.notification,
                agency.contact_email,
                {
                    "agency_name": agency.name,
                    "recipient_name": agency.contact_name,
                    "reason": plan.fields.get("rejection_reason"),
                },
            )

        return TransitionResult(status=plan.to_status.value, changed=True)

    def register_agency(self, user_id: UUID, registration: AgencyRegistration) -> AgencyRecord:
        """
        Create a pending agency owned by ``user_id`` and notify the administrator.

        Raises:
            ValidationError: blank name or email, name already taken, user already in an agency
            ForbiddenError: inactive user or administrator account
        """
        name = registration.name.strip()
        slug = slugify(name)
        if not slug:
            raise ValidationError("Agency name must contain letters or digits", field="name")
        if not registration.email or not registration.email.strip():
            raise ValidationError("Agency contact email is required", field="email")

        user = self.store.get_user(user_id)
        if not user.is_active:
            raise ForbiddenError("User account is inactive", actor_role=user.role.value)
        if user.role == UserRole.ADMIN:
            raise ForbiddenError("Administrators cannot own an agency", actor_role=user.role.value)

        agency = self.store.create_agency(user_id, replace(registration, name=name), slug)

        log_with_context(
            logger,
            "info",
            "Agency registered",
            agency_id=str(agency.id),
            slug=agency.slug,
            owner_id=str(user_id),
        )
        self.dispatcher.dispatch(
            NotificationKind.AGENCY_REGISTERED,
            self.admin_email,
            {
                "agency_name": agency.name,
                "contact_email": agency.contact_email,
                "recipient_name": "Admin",
            },
        )
        return agency

    # ===== Administration =====

    def set_user_active(self, actor: Actor, user_id: UUID, is_active: bool) -> UserRecord:
        _require_admin(actor, "change account status")
        if actor.user_id == user_id and not is_active:
            raise ValidationError("Administrators cannot deactivate themselves", field="user_id")

        user = self.store.set_user_active(user_id, is_active)
        log_with_context(
            logger,
            "info",
            "User activation changed",
            user_id=str(user_id),
            is_active=is_active,
        )
        return user

    def status_history(self, entity: str, entity_id: UUID, actor: Actor) -> List[TransitionLogEntry]:
        _require_admin(actor, "read transition history")
        if entity not in HISTORY_ENTITIES:
            raise ValidationError(f"Unknown entity '{entity}'", field="entity")
        return self.store.list_status_history(entity, entity_id)

    # ===== Internals =====

    def _with_conflict_retry(self, entity: str, entity_id: UUID, operation: Callable[[], Any]) -> Any:
        def on_retry(retry_state: RetryCallState) -> None:
            self.metrics.increment_conflicts(entity, "retried")
            logger.warning(
                f"Conflict on {entity} {entity_id}, retrying once",
                extra={"extra_fields": {"attempt": retry_state.attempt_number}},
            )

        retrying = Retrying(
            stop=stop_after_attempt(CONFLICT_ATTEMPTS),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=on_retry,
            reraise=True,
        )
        try:
            return retrying(operation)
        except ConflictError as e:
            self.metrics.increment_conflicts(entity, "surfaced")
            logger.warning(f"Conflict on {entity} {entity_id} surfaced: {e.message}")
            raise

    @staticmethod
    def _booking_payload(booking: BookingRecord, reason: Optional[str] = None) -> Dict[str, Any]:
        return {
            "reference": booking.reference,
            "recipient_name": booking.customer_name,
            "car_name": booking.car_name,
            "agency_name": booking.agency_name,
            "pickup_at": booking.pickup_at.isoformat(),
            "dropoff_at": booking.dropoff_at.isoformat(),
            "total_price": str(booking.pricing.total_price),
            "deposit_amount": str(booking.pricing.security_deposit),
            "reason": reason,
        }


def get_workflow_coordinator() -> WorkflowCoordinator:
    """
    Get a WorkflowCoordinator wired to the database and the shared dispatcher.
    """
    return WorkflowCoordinator(
        store=SqlAlchemyDataStore(get_session_factory()),
        dispatcher=get_notification_dispatcher(),
    )
