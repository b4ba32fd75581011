"""
Shared fixtures: an in-memory data store, a recording notifier, a fixed clock
and a seeded marketplace (customers, admin, agencies in every status, cars).
"""
import threading
from concurrent.futures import Executor, Future
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List
from uuid import UUID, uuid4

import pytest

from carrental.domain.actors import Actor
from carrental.domain.errors import ConflictError, NotFoundError, ValidationError
from carrental.domain.pricing import calculate_price
from carrental.lib.metrics import MetricsCollector
from carrental.models.agencies import AgencyStatus
from carrental.models.bookings import BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.users import UserRole
from carrental.services.notification_service import NotificationDispatcher, NotificationError
from carrental.services.store import (
    ACTIVE_BOOKING_STATUSES,
    MUTABLE_AGENCY_FIELDS,
    MUTABLE_BOOKING_FIELDS,
    AgencyRecord,
    AgencyRegistration,
    BookingRecord,
    CarWithAgency,
    DataStore,
    DuplicateReferenceError,
    NewBooking,
    TransitionLogEntry,
    UserRecord,
    check_mutable_fields,
)
from carrental.services.workflow import WorkflowCoordinator


NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


class InMemoryDataStore(DataStore):
    """Lock-guarded dict store with the same compare-and-swap semantics as the database."""

    def __init__(self):
        self._lock = threading.RLock()
        self.users: Dict[UUID, UserRecord] = {}
        self.agencies: Dict[UUID, AgencyRecord] = {}
        self.cars: Dict[UUID, dict] = {}
        self.bookings: Dict[UUID, BookingRecord] = {}
        self.history: List[TransitionLogEntry] = []
        self.cas_calls = 0

    # ----- seeding helpers -----

    def add_user(self, role=UserRole.CUSTOMER, is_active=True, agency_id=None, name="Test User") -> UserRecord:
        user_id = uuid4()
        user = UserRecord(
            id=user_id,
            email=f"{user_id.hex[:8]}@example.com",
            full_name=name,
            role=role,
            is_active=is_active,
            agency_id=agency_id,
        )
        self.users[user_id] = user
        return user

    def add_agency(self, owner: UserRecord, status=AgencyStatus.APPROVED, name="Atlas Cars") -> AgencyRecord:
        agency_id = uuid4()
        agency = AgencyRecord(
            id=agency_id,
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{agency_id.hex[:4]}",
            owner_id=owner.id,
            contact_email=f"contact-{agency_id.hex[:6]}@agency.ma",
            contact_name=owner.full_name,
            status=status,
            approved_at=NOW if status == AgencyStatus.APPROVED else None,
        )
        self.agencies[agency_id] = agency
        self.users[owner.id] = replace(owner, agency_id=agency_id, role=UserRole.AGENCY_OWNER)
        return agency

    def add_car(self, agency: AgencyRecord, price_per_day="180", is_active=True, name="Dacia Logan 2023") -> UUID:
        car_id = uuid4()
        self.cars[car_id] = {
            "agency_id": agency.id,
            "display_name": name,
            "price_per_day": Decimal(price_per_day),
            "is_active": is_active,
        }
        return car_id

    def add_booking(
        self,
        customer: UserRecord,
        car_id: UUID,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        days=3,
    ) -> BookingRecord:
        car = self.get_car_with_agency(car_id)
        pickup = NOW + timedelta(days=2)
        booking = self._record(
            NewBooking(
                reference=f"VB-TEST-{uuid4().hex[:6].upper()}",
                customer_id=customer.id,
                car_id=car_id,
                pickup_at=pickup,
                dropoff_at=pickup + timedelta(days=days),
                pricing=calculate_price(car.price_per_day, days),
                status=status,
                payment_method=PaymentMethod.CARD if payment_status == PaymentStatus.COMPLETED else PaymentMethod.CASH,
                payment_status=payment_status,
            )
        )
        self.bookings[booking.id] = booking
        return booking

    def _record(self, new: NewBooking) -> BookingRecord:
        customer = self.users[new.customer_id]
        car = self.get_car_with_agency(new.car_id)
        return BookingRecord(
            id=uuid4(),
            reference=new.reference,
            customer_id=customer.id,
            customer_email=customer.email,
            customer_name=customer.full_name,
            car_id=car.car_id,
            car_name=car.display_name,
            agency_id=car.agency_id,
            agency_name=car.agency_name,
            pickup_at=new.pickup_at,
            dropoff_at=new.dropoff_at,
            pricing=new.pricing,
            status=new.status,
            payment_method=new.payment_method,
            payment_status=new.payment_status,
            extras=new.extras,
        )

    # ----- DataStore -----

    def get_user(self, user_id):
        with self._lock:
            if user_id not in self.users:
                raise NotFoundError("User", user_id)
            return self.users[user_id]

    def get_booking(self, booking_id):
        with self._lock:
            if booking_id not in self.bookings:
                raise NotFoundError("Booking", booking_id)
            return self.bookings[booking_id]

    def get_agency(self, agency_id):
        with self._lock:
            if agency_id not in self.agencies:
                raise NotFoundError("Agency", agency_id)
            return self.agencies[agency_id]

    def get_car_with_agency(self, car_id):
        with self._lock:
            if car_id not in self.cars:
                raise NotFoundError("Car", car_id)
            car = self.cars[car_id]
            agency = self.agencies[car["agency_id"]]
            return CarWithAgency(
                car_id=car_id,
                agency_id=agency.id,
                agency_name=agency.name,
                agency_status=agency.status,
                display_name=car["display_name"],
                price_per_day=car["price_per_day"],
                is_active=car["is_active"],
            )

    def insert_booking(self, booking):
        with self._lock:
            if any(b.reference == booking.reference for b in self.bookings.values()):
                raise DuplicateReferenceError(booking.reference)
            record = self._record(booking)
            self.bookings[record.id] = record
            return record

    def compare_and_set_booking_status(self, booking_id, expected, new, *, actor, reason=None, **fields):
        check_mutable_fields(fields, MUTABLE_BOOKING_FIELDS, "booking")
        with self._lock:
            self.cas_calls += 1
            current = self.get_booking(booking_id)
            if current.status != expected:
                raise ConflictError("booking", booking_id, expected.value, current.status.value)
            self.bookings[booking_id] = replace(current, status=new, **fields)
            self._log("booking", booking_id, expected, new, actor, reason)

    def compare_and_set_agency_status(self, agency_id, expected, new, *, actor, reason=None, **fields):
        check_mutable_fields(fields, MUTABLE_AGENCY_FIELDS, "agency")
        with self._lock:
            self.cas_calls += 1
            current = self.get_agency(agency_id)
            if current.status != expected:
                raise ConflictError("agency", agency_id, expected.value, current.status.value)
            self.agencies[agency_id] = replace(current, status=new, **fields)
            self._log("agency", agency_id, expected, new, actor, reason)

    def _log(self, entity, entity_id, expected, new, actor, reason):
        self.history.append(TransitionLogEntry(
            entity_type=entity,
            entity_id=entity_id,
            from_status=expected.value,
            to_status=new.value,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            reason=reason,
            created_at=NOW,
        ))

    def create_agency(self, owner_id, registration: AgencyRegistration, slug):
        with self._lock:
            owner = self.get_user(owner_id)
            if owner.agency_id is not None:
                raise ValidationError("User already belongs to an agency", field="user_id")
            if any(a.slug == slug for a in self.agencies.values()):
                raise ValidationError("Agency name already taken", field="name")
            agency = AgencyRecord(
                id=uuid4(),
                name=registration.name,
                slug=slug,
                owner_id=owner_id,
                contact_email=registration.email,
                contact_name=owner.full_name,
                status=AgencyStatus.PENDING,
            )
            self.agencies[agency.id] = agency
            self.users[owner_id] = replace(owner, agency_id=agency.id, role=UserRole.AGENCY_OWNER)
            return agency

    def set_user_active(self, user_id, is_active):
        with self._lock:
            user = replace(self.get_user(user_id), is_active=is_active)
            self.users[user_id] = user
            return user

    def count_active_bookings_for_customer(self, customer_id):
        with self._lock:
            return sum(
                1 for b in self.bookings.values()
                if b.customer_id == customer_id and b.status in ACTIVE_BOOKING_STATUSES
            )

    def count_active_bookings_for_agency(self, agency_id):
        with self._lock:
            return sum(
                1 for b in self.bookings.values()
                if b.agency_id == agency_id and b.status in ACTIVE_BOOKING_STATUSES
            )

    def list_status_history(self, entity_type, entity_id):
        with self._lock:
            return [h for h in self.history if h.entity_type == entity_type and h.entity_id == entity_id]


class RecordingNotifier:
    """Captures notify() calls; set ``fail`` to make every delivery raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self._lock = threading.Lock()

    def notify(self, kind, recipient_email, payload):
        if self.fail:
            raise NotificationError("SMTP server unreachable")
        with self._lock:
            self.sent.append((kind, recipient_email, payload))

    def kinds(self):
        return [kind for kind, _, _ in self.sent]


class InlineExecutor(Executor):
    """Runs submitted work immediately so notification effects are visible to asserts."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture
def store():
    return InMemoryDataStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def coordinator(store, notifier, metrics):
    dispatcher = NotificationDispatcher(notifier, executor=InlineExecutor(), metrics=metrics)
    return WorkflowCoordinator(
        store,
        dispatcher=dispatcher,
        clock=lambda: NOW,
        metrics=metrics,
        admin_email="admin@carrental.ma",
    )


@pytest.fixture
def seed(store):
    """A small marketplace: one agency per status, cars, customers and an admin."""
    customer = store.add_user(name="Salma Idrissi")
    other_customer = store.add_user(name="Youssef Amrani")
    inactive_customer = store.add_user(is_active=False, name="Dormant Account")
    admin = store.add_user(role=UserRole.ADMIN, name="Platform Admin")

    owner = store.add_user(name="Karim Benali")
    agency = store.add_agency(owner, AgencyStatus.APPROVED, "Atlas Cars")
    other_owner = store.add_user(name="Nadia Tazi")
    other_agency = store.add_agency(other_owner, AgencyStatus.APPROVED, "Rif Rentals")
    pending_owner = store.add_user(name="Omar Chraibi")
    pending_agency = store.add_agency(pending_owner, AgencyStatus.PENDING, "Souss Wheels")
    suspended_owner = store.add_user(name="Leila Fassi")
    suspended_agency = store.add_agency(suspended_owner, AgencyStatus.SUSPENDED, "Medina Motors")

    return SimpleNamespace(
        customer=customer,
        other_customer=other_customer,
        inactive_customer=inactive_customer,
        admin=admin,
        agency=agency,
        other_agency=other_agency,
        pending_agency=pending_agency,
        suspended_agency=suspended_agency,
        car=store.add_car(agency, "180"),
        inactive_car=store.add_car(agency, "250", is_active=False),
        other_agency_car=store.add_car(other_agency, "300"),
        pending_agency_car=store.add_car(pending_agency, "150"),
        suspended_agency_car=store.add_car(suspended_agency, "200"),
        customer_actor=Actor.customer(customer.id),
        other_customer_actor=Actor.customer(other_customer.id),
        admin_actor=Actor(admin.id, UserRole.ADMIN),
        agency_actor=Actor(owner.id, UserRole.AGENCY_OWNER, agency.id),
        staff_actor=Actor(uuid4(), UserRole.AGENCY_STAFF, agency.id),
        other_agency_actor=Actor(other_owner.id, UserRole.AGENCY_OWNER, other_agency.id),
    )
