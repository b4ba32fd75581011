"""
Unit tests for the workflow coordinator against the in-memory store.
"""
import threading
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from carrental.domain.actors import Actor
from carrental.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from carrental.domain.notifications import NotificationKind
from carrental.models.agencies import AgencyStatus
from carrental.models.bookings import BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.users import UserRole
from carrental.services.notification_service import NotificationDispatcher
from carrental.services.store import AgencyRegistration, DuplicateReferenceError
from carrental.services.workflow import BookingRequest, WorkflowCoordinator

from conftest import NOW, InMemoryDataStore, InlineExecutor, RecordingNotifier


def booking_request(car_id, days=3, payment_method=PaymentMethod.CASH, extras=()):
    pickup = NOW + timedelta(days=1)
    return BookingRequest(
        car_id=car_id,
        pickup_at=pickup,
        dropoff_at=pickup + timedelta(days=days),
        payment_method=payment_method,
        extras=tuple(extras),
    )


# ===== create_booking =====

@pytest.mark.unit
def test_create_booking_prices_and_persists_pending(coordinator, store, notifier, seed):
    receipt = coordinator.create_booking(seed.customer.id, booking_request(seed.car))

    assert receipt.status == BookingStatus.PENDING
    assert receipt.total_price == Decimal("648")
    assert receipt.deposit_amount == Decimal("162")
    assert receipt.reference.startswith("VB-")

    stored = store.get_booking(receipt.booking_id)
    assert stored.pricing.base_price == Decimal("540")
    assert stored.payment_status == PaymentStatus.PENDING
    # Pending bookings do not send a confirmation
    assert notifier.sent == []


@pytest.mark.unit
def test_card_payment_is_recorded_completed(coordinator, store, seed):
    receipt = coordinator.create_booking(
        seed.customer.id, booking_request(seed.car, payment_method=PaymentMethod.CARD)
    )
    assert store.get_booking(receipt.booking_id).payment_status == PaymentStatus.COMPLETED


@pytest.mark.unit
def test_create_booking_with_extras(coordinator, store, seed):
    receipt = coordinator.create_booking(
        seed.customer.id, booking_request(seed.car, extras=["gps", "insurance_full"])
    )
    stored = store.get_booking(receipt.booking_id)
    assert stored.extras == ("gps", "insurance_full")
    assert stored.pricing.extras_price == Decimal("50")
    assert stored.pricing.insurance_price == Decimal("200")


@pytest.mark.unit
@pytest.mark.parametrize("car_attr", ["pending_agency_car", "suspended_agency_car", "inactive_car"])
def test_car_must_be_bookable(coordinator, store, seed, car_attr):
    with pytest.raises(ValidationError) as exc_info:
        coordinator.create_booking(seed.customer.id, booking_request(getattr(seed, car_attr)))

    assert exc_info.value.field == "car_id"
    assert store.bookings == {}


@pytest.mark.unit
def test_inactive_customer_cannot_book(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.create_booking(seed.inactive_customer.id, booking_request(seed.car))


@pytest.mark.unit
def test_pickup_in_the_past_rejected(coordinator, seed):
    request = BookingRequest(
        car_id=seed.car,
        pickup_at=NOW - timedelta(hours=1),
        dropoff_at=NOW + timedelta(days=1),
        payment_method=PaymentMethod.CASH,
    )
    with pytest.raises(ValidationError) as exc_info:
        coordinator.create_booking(seed.customer.id, request)
    assert exc_info.value.field == "pickup_at"


@pytest.mark.unit
def test_dropoff_before_pickup_rejected(coordinator, seed):
    request = BookingRequest(
        car_id=seed.car,
        pickup_at=NOW + timedelta(days=2),
        dropoff_at=NOW + timedelta(days=1),
        payment_method=PaymentMethod.CASH,
    )
    with pytest.raises(ValidationError):
        coordinator.create_booking(seed.customer.id, request)


@pytest.mark.unit
def test_naive_datetimes_are_treated_as_utc(coordinator, seed):
    naive_pickup = (NOW + timedelta(days=1)).replace(tzinfo=None)
    request = BookingRequest(
        car_id=seed.car,
        pickup_at=naive_pickup,
        dropoff_at=naive_pickup + timedelta(days=2),
        payment_method=PaymentMethod.CASH,
    )
    receipt = coordinator.create_booking(seed.customer.id, request)
    assert receipt.total_price == Decimal("432")


@pytest.mark.unit
def test_unknown_car(coordinator, seed):
    with pytest.raises(NotFoundError):
        coordinator.create_booking(seed.customer.id, booking_request(uuid4()))


@pytest.mark.unit
def test_customer_cannot_book_for_someone_else(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.create_booking(
            seed.other_customer.id, booking_request(seed.car), created_by=seed.customer_actor
        )


@pytest.mark.unit
def test_admin_confirmed_booking_sends_confirmation(coordinator, notifier, seed):
    receipt = coordinator.create_booking(
        seed.customer.id, booking_request(seed.car), created_by=seed.admin_actor, confirm=True
    )

    assert receipt.status == BookingStatus.CONFIRMED
    assert notifier.kinds() == [NotificationKind.BOOKING_CONFIRMED]
    _, recipient, payload = notifier.sent[0]
    assert recipient == seed.customer.email
    assert payload["reference"] == receipt.reference
    assert payload["total_price"] == "648"


@pytest.mark.unit
def test_only_admin_may_create_confirmed(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.create_booking(
            seed.customer.id, booking_request(seed.car), created_by=seed.customer_actor, confirm=True
        )


@pytest.mark.unit
def test_duplicate_reference_is_regenerated(coordinator, store, seed, monkeypatch):
    real_insert = store.insert_booking
    attempted = []

    def clash_once(booking):
        attempted.append(booking.reference)
        if len(attempted) == 1:
            raise DuplicateReferenceError(booking.reference)
        return real_insert(booking)

    monkeypatch.setattr(store, "insert_booking", clash_once)

    receipt = coordinator.create_booking(seed.customer.id, booking_request(seed.car))
    assert len(attempted) == 2
    assert receipt.reference == attempted[1]
    assert receipt.booking_id in store.bookings


@pytest.mark.unit
def test_reference_exhaustion_is_unavailable(coordinator, store, seed, monkeypatch):
    def always_clash(booking):
        raise DuplicateReferenceError(booking.reference)

    monkeypatch.setattr(store, "insert_booking", always_clash)
    with pytest.raises(UnavailableError):
        coordinator.create_booking(seed.customer.id, booking_request(seed.car))


# ===== transition_booking =====

@pytest.mark.unit
def test_customer_cancel_fires_exactly_one_notification(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car)

    result = coordinator.cancel_own_booking(booking.id, seed.customer.id)

    assert result.status == "cancelled"
    assert result.changed is True
    assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
    assert notifier.kinds() == [NotificationKind.BOOKING_CANCELLED]


@pytest.mark.unit
def test_repeated_cancel_is_idempotent(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car)

    coordinator.cancel_own_booking(booking.id, seed.customer.id)
    result = coordinator.cancel_own_booking(booking.id, seed.customer.id)

    assert result.changed is False
    assert notifier.kinds() == [NotificationKind.BOOKING_CANCELLED]


@pytest.mark.unit
def test_customer_cancels_own_confirmed_booking(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.CONFIRMED)

    result = coordinator.cancel_own_booking(booking.id, seed.customer.id)

    assert result.status == "cancelled"
    assert result.changed is True
    assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
    assert notifier.kinds() == [NotificationKind.BOOKING_CANCELLED]


@pytest.mark.unit
def test_customer_cancelling_paid_confirmed_booking_marks_refund(coordinator, store, seed):
    booking = store.add_booking(
        seed.customer,
        seed.car,
        status=BookingStatus.CONFIRMED,
        payment_status=PaymentStatus.COMPLETED,
    )

    coordinator.cancel_own_booking(booking.id, seed.customer.id)

    assert store.get_booking(booking.id).payment_status == PaymentStatus.REFUNDED


@pytest.mark.unit
def test_customer_cannot_cancel_booking_in_progress(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.IN_PROGRESS)

    with pytest.raises(InvalidTransitionError):
        coordinator.cancel_own_booking(booking.id, seed.customer.id)
    assert store.get_booking(booking.id).status == BookingStatus.IN_PROGRESS
    assert notifier.kinds() == []


@pytest.mark.unit
def test_generic_transition_keeps_customer_off_confirmed_cancel(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.CONFIRMED)

    with pytest.raises(InvalidTransitionError):
        coordinator.transition_booking(booking.id, "cancelled", Actor.customer(seed.customer.id))
    assert store.get_booking(booking.id).status == BookingStatus.CONFIRMED
    assert notifier.kinds() == []


@pytest.mark.unit
def test_customer_cannot_cancel_someone_elses_booking(coordinator, store, seed):
    booking = store.add_booking(seed.customer, seed.car)
    with pytest.raises(ForbiddenError):
        coordinator.cancel_own_booking(booking.id, seed.other_customer.id)
    assert store.get_booking(booking.id).status == BookingStatus.PENDING


@pytest.mark.unit
@pytest.mark.parametrize("actor_attr", ["customer_actor", "agency_actor", "admin_actor"])
def test_completed_to_confirmed_is_invalid(coordinator, store, notifier, seed, actor_attr):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError) as exc_info:
        coordinator.transition_booking(booking.id, "confirmed", getattr(seed, actor_attr))

    assert exc_info.value.current_status == "completed"
    assert exc_info.value.requested_status == "confirmed"
    assert store.get_booking(booking.id).status == BookingStatus.COMPLETED
    assert store.cas_calls == 0
    assert notifier.sent == []


@pytest.mark.unit
def test_agency_confirms_its_booking(coordinator, store, notifier, metrics, seed):
    booking = store.add_booking(seed.customer, seed.car)

    coordinator.transition_booking(booking.id, BookingStatus.CONFIRMED, seed.staff_actor)

    assert store.get_booking(booking.id).status == BookingStatus.CONFIRMED
    kind, recipient, payload = notifier.sent[0]
    assert kind == NotificationKind.BOOKING_CONFIRMED
    assert recipient == seed.customer.email
    assert payload["car_name"] == "Dacia Logan 2023"
    assert metrics.get_counter_value(
        "status_transitions_total",
        {"entity": "booking", "from_status": "pending", "to_status": "confirmed", "path": "table"},
    ) == 1


@pytest.mark.unit
def test_other_agency_is_forbidden(coordinator, store, seed):
    booking = store.add_booking(seed.customer, seed.car)
    with pytest.raises(ForbiddenError):
        coordinator.transition_booking(booking.id, BookingStatus.CONFIRMED, seed.other_agency_actor)


@pytest.mark.unit
def test_in_progress_needs_no_notification(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.CONFIRMED)
    coordinator.transition_booking(booking.id, BookingStatus.IN_PROGRESS, seed.agency_actor)
    assert notifier.sent == []


@pytest.mark.unit
def test_admin_override_is_logged_with_reason(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.IN_PROGRESS)

    coordinator.transition_booking(booking.id, "cancelled", seed.admin_actor, reason="vehicle breakdown")

    assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
    assert notifier.sent[0][2]["reason"] == "vehicle breakdown"
    history = coordinator.status_history("booking", booking.id, seed.admin_actor)
    assert [(h.from_status, h.to_status, h.actor_role) for h in history] == [
        ("in_progress", "cancelled", "admin")
    ]


@pytest.mark.unit
def test_cancelling_paid_booking_records_refund(coordinator, store, seed):
    booking = store.add_booking(
        seed.customer, seed.car, status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.COMPLETED
    )
    coordinator.transition_booking(booking.id, BookingStatus.CANCELLED, seed.agency_actor)

    updated = store.get_booking(booking.id)
    assert updated.payment_status == PaymentStatus.REFUNDED
    assert updated.pricing == booking.pricing


@pytest.mark.unit
def test_unknown_booking(coordinator, seed):
    with pytest.raises(NotFoundError):
        coordinator.transition_booking(uuid4(), "confirmed", seed.admin_actor)


@pytest.mark.unit
def test_notification_failure_does_not_fail_transition(store, metrics, seed):
    failing = NotificationDispatcher(RecordingNotifier(fail=True), executor=InlineExecutor(), metrics=metrics)
    coordinator = WorkflowCoordinator(store, dispatcher=failing, clock=lambda: NOW, metrics=metrics)
    booking = store.add_booking(seed.customer, seed.car)

    result = coordinator.cancel_own_booking(booking.id, seed.customer.id)

    assert result.status == "cancelled"
    assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
    assert metrics.get_counter_value(
        "notifications_total", {"kind": "booking_cancelled", "outcome": "failed"}
    ) == 1


@pytest.mark.unit
def test_store_timeout_surfaces_as_unavailable(coordinator, store, seed, monkeypatch):
    booking = store.add_booking(seed.customer, seed.car)

    def timeout(*args, **kwargs):
        raise UnavailableError("compare_and_set_booking_status")

    monkeypatch.setattr(store, "compare_and_set_booking_status", timeout)
    with pytest.raises(UnavailableError):
        coordinator.transition_booking(booking.id, "confirmed", seed.agency_actor)
    assert store.get_booking(booking.id).status == BookingStatus.PENDING


# ===== conflict handling =====

class InterleavingStore(InMemoryDataStore):
    """Changes the booking status right after the first read, as a concurrent caller would."""

    def __init__(self, sneak_status, sneak_times=1):
        super().__init__()
        self.sneak_status = sneak_status
        self.sneak_times = sneak_times

    def get_booking(self, booking_id):
        record = super().get_booking(booking_id)
        if self.sneak_times > 0:
            self.sneak_times -= 1
            with self._lock:
                current = self.bookings[booking_id]
                self.bookings[booking_id] = replace(current, status=self.sneak_status)
        return record


def _coordinator_for(store, notifier, metrics):
    dispatcher = NotificationDispatcher(notifier, executor=InlineExecutor(), metrics=metrics)
    return WorkflowCoordinator(store, dispatcher=dispatcher, clock=lambda: NOW, metrics=metrics)


def _seed_minimal(store):
    customer = store.add_user()
    owner = store.add_user()
    agency = store.add_agency(owner, AgencyStatus.APPROVED)
    car = store.add_car(agency)
    return customer, agency, car


@pytest.mark.unit
def test_conflict_surfaces_when_status_moved_elsewhere(notifier, metrics):
    store = InterleavingStore(BookingStatus.CONFIRMED)
    customer, _, car = _seed_minimal(store)
    booking = store.add_booking(customer, car)
    coordinator = _coordinator_for(store, notifier, metrics)

    with pytest.raises(ConflictError) as exc_info:
        coordinator.cancel_own_booking(booking.id, customer.id)

    assert exc_info.value.current_status == "confirmed"
    assert store.get_booking(booking.id).status == BookingStatus.CONFIRMED
    assert notifier.sent == []
    assert metrics.get_counter_value("transition_conflicts_total", {"entity": "booking", "outcome": "retried"}) == 1
    assert metrics.get_counter_value("transition_conflicts_total", {"entity": "booking", "outcome": "surfaced"}) == 1


@pytest.mark.unit
def test_conflict_resolved_when_someone_else_reached_same_status(notifier, metrics):
    store = InterleavingStore(BookingStatus.CANCELLED)
    customer, _, car = _seed_minimal(store)
    booking = store.add_booking(customer, car)
    coordinator = _coordinator_for(store, notifier, metrics)

    result = coordinator.cancel_own_booking(booking.id, customer.id)

    assert result.changed is False
    assert notifier.sent == []


@pytest.mark.unit
def test_concurrent_conflicting_transitions_one_wins(notifier, metrics):
    """Customer cancels while the agency confirms: exactly one succeeds."""

    class BarrierStore(InMemoryDataStore):
        def __init__(self):
            super().__init__()
            self.barrier = threading.Barrier(2)
            self.reads = 0

        def get_booking(self, booking_id):
            with self._lock:
                first_round = self.reads < 2
                self.reads += 1
            record = super().get_booking(booking_id)
            if first_round:
                # Both callers hold the same stale read before either writes
                self.barrier.wait(timeout=5)
            return record

    store = BarrierStore()
    customer, agency, car = _seed_minimal(store)
    booking = store.add_booking(customer, car)
    coordinator = _coordinator_for(store, notifier, metrics)

    agency_actor = Actor(agency.owner_id, UserRole.AGENCY_OWNER, agency.id)

    outcomes = {}

    def run(name, fn):
        try:
            outcomes[name] = fn().status
        except ConflictError:
            outcomes[name] = "conflict"

    threads = [
        threading.Thread(target=run, args=("customer", lambda: coordinator.cancel_own_booking(booking.id, customer.id))),
        threading.Thread(target=run, args=("agency", lambda: coordinator.transition_booking(booking.id, "confirmed", agency_actor))),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sorted(outcomes.values()) in (["cancelled", "conflict"], ["confirmed", "conflict"])
    final = store.get_booking(booking.id).status.value
    assert final in outcomes.values()
    assert len(notifier.sent) == 1
    assert len(store.history) == 1


# ===== agencies =====

@pytest.mark.unit
def test_reject_agency_with_reason(coordinator, store, notifier, seed):
    result = coordinator.transition_agency(
        seed.pending_agency.id, "rejected", seed.admin_actor, reason="missing license"
    )

    agency = store.get_agency(seed.pending_agency.id)
    assert result.status == "rejected"
    assert agency.status == AgencyStatus.REJECTED
    assert agency.rejected_at == NOW
    assert agency.approved_at is None
    assert agency.rejection_reason == "missing license"

    kind, recipient, payload = notifier.sent[0]
    assert kind == NotificationKind.AGENCY_REJECTED
    assert recipient == seed.pending_agency.contact_email
    assert payload["reason"] == "missing license"


@pytest.mark.unit
def test_approve_agency_makes_cars_bookable(coordinator, store, notifier, seed):
    with pytest.raises(ValidationError):
        coordinator.create_booking(seed.customer.id, booking_request(seed.pending_agency_car))

    coordinator.transition_agency(seed.pending_agency.id, AgencyStatus.APPROVED, seed.admin_actor)

    agency = store.get_agency(seed.pending_agency.id)
    assert agency.approved_at == NOW
    assert agency.rejected_at is None
    assert notifier.kinds() == [NotificationKind.AGENCY_APPROVED]

    receipt = coordinator.create_booking(seed.customer.id, booking_request(seed.pending_agency_car))
    assert receipt.status == BookingStatus.PENDING


@pytest.mark.unit
def test_suspension_keeps_existing_bookings(coordinator, store, notifier, seed):
    booking = store.add_booking(seed.customer, seed.car, status=BookingStatus.CONFIRMED)

    coordinator.transition_agency(seed.agency.id, "suspended", seed.admin_actor, reason="insurance lapsed")

    assert store.get_agency(seed.agency.id).suspension_reason == "insurance lapsed"
    assert store.get_booking(booking.id).status == BookingStatus.CONFIRMED
    assert notifier.sent == []
    with pytest.raises(ValidationError):
        coordinator.create_booking(seed.customer.id, booking_request(seed.car))


@pytest.mark.unit
def test_reinstate_suspended_agency(coordinator, store, seed):
    coordinator.transition_agency(seed.suspended_agency.id, "approved", seed.admin_actor)
    assert store.get_agency(seed.suspended_agency.id).status == AgencyStatus.APPROVED


@pytest.mark.unit
def test_non_admin_cannot_transition_agency(coordinator, store, seed):
    with pytest.raises(ForbiddenError):
        coordinator.transition_agency(seed.pending_agency.id, "approved", seed.agency_actor)
    assert store.get_agency(seed.pending_agency.id).status == AgencyStatus.PENDING


@pytest.mark.unit
def test_rejected_agency_cannot_be_approved(coordinator, seed):
    coordinator.transition_agency(seed.pending_agency.id, "rejected", seed.admin_actor)
    with pytest.raises(InvalidTransitionError):
        coordinator.transition_agency(seed.pending_agency.id, "approved", seed.admin_actor)


@pytest.mark.unit
def test_register_agency(coordinator, store, notifier, seed):
    agency = coordinator.register_agency(
        seed.other_customer.id,
        AgencyRegistration(name="  Casa Auto & Co. ", email="hello@casa-auto.ma", city="Casablanca"),
    )

    assert agency.slug == "casa-auto-co"
    assert agency.name == "Casa Auto & Co."
    assert agency.status == AgencyStatus.PENDING
    owner = store.get_user(seed.other_customer.id)
    assert owner.role == UserRole.AGENCY_OWNER
    assert owner.agency_id == agency.id

    kind, recipient, payload = notifier.sent[0]
    assert kind == NotificationKind.AGENCY_REGISTERED
    assert recipient == "admin@carrental.ma"
    assert payload["contact_email"] == "hello@casa-auto.ma"


@pytest.mark.unit
def test_register_agency_slug_taken(coordinator, seed):
    coordinator.register_agency(seed.customer.id, AgencyRegistration(name="Dune Cars", email="a@dune.ma"))
    with pytest.raises(ValidationError):
        coordinator.register_agency(seed.other_customer.id, AgencyRegistration(name="dune cars!", email="b@dune.ma"))


@pytest.mark.unit
@pytest.mark.parametrize("name", ["", "   ", "!!!"])
def test_register_agency_needs_a_name(coordinator, seed, name):
    with pytest.raises(ValidationError):
        coordinator.register_agency(seed.customer.id, AgencyRegistration(name=name, email="x@y.ma"))


@pytest.mark.unit
def test_admin_cannot_register_agency(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.register_agency(seed.admin.id, AgencyRegistration(name="Admin Cars", email="x@y.ma"))


# ===== administration =====

@pytest.mark.unit
def test_deactivated_customer_cannot_book(coordinator, seed):
    user = coordinator.set_user_active(seed.admin_actor, seed.customer.id, False)
    assert user.is_active is False

    with pytest.raises(ForbiddenError):
        coordinator.create_booking(seed.customer.id, booking_request(seed.car))


@pytest.mark.unit
def test_only_admin_changes_activation(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.set_user_active(seed.customer_actor, seed.other_customer.id, False)


@pytest.mark.unit
def test_admin_cannot_deactivate_self(coordinator, seed):
    with pytest.raises(ValidationError):
        coordinator.set_user_active(seed.admin_actor, seed.admin.id, False)


@pytest.mark.unit
def test_active_booking_counts(coordinator, store, seed):
    store.add_booking(seed.customer, seed.car, status=BookingStatus.CONFIRMED)
    store.add_booking(seed.customer, seed.car, status=BookingStatus.IN_PROGRESS)
    store.add_booking(seed.customer, seed.car, status=BookingStatus.PENDING)
    store.add_booking(seed.other_customer, seed.other_agency_car, status=BookingStatus.CONFIRMED)

    assert coordinator.active_booking_count(seed.customer_actor) == 2
    assert coordinator.active_booking_count(seed.agency_actor) == 2
    assert coordinator.active_booking_count(seed.other_agency_actor) == 1
    assert coordinator.active_booking_count(seed.admin_actor, seed.other_agency.id) == 1

    with pytest.raises(ValidationError):
        coordinator.active_booking_count(seed.admin_actor)
    with pytest.raises(ForbiddenError):
        coordinator.active_booking_count(seed.agency_actor, seed.other_agency.id)


@pytest.mark.unit
def test_history_is_admin_only(coordinator, seed):
    with pytest.raises(ForbiddenError):
        coordinator.status_history("agency", seed.agency.id, seed.agency_actor)
    with pytest.raises(ValidationError):
        coordinator.status_history("car", seed.car, seed.admin_actor)
