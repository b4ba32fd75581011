"""
Data store contract and its SQLAlchemy implementation.

The workflow coordinator only talks to ``DataStore``. Reads return immutable
record dataclasses (never live ORM objects); status changes go exclusively
through the two ``compare_and_set_*`` methods, which apply the update only if
the stored status still equals the expected one.

Failure mapping:
- missing entity        -> NotFoundError
- lost compare-and-swap -> ConflictError
- timeout/unreachable   -> UnavailableError (transaction rolled back)
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from carrental.domain.actors import Actor
from carrental.domain.errors import ConflictError, NotFoundError, UnavailableError, ValidationError
from carrental.domain.pricing import PriceBreakdown
from carrental.lib.logging import get_logger
from carrental.models.agencies import Agency, AgencyStatus
from carrental.models.bookings import Booking, BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.cars import Car
from carrental.models.transitions import StatusTransition
from carrental.models.users import User, UserRole


logger = get_logger(__name__)


ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

# Columns a status compare-and-swap may touch besides status itself.
# Pricing columns are deliberately absent: the snapshot is immutable.
MUTABLE_BOOKING_FIELDS = frozenset({"payment_status"})
MUTABLE_AGENCY_FIELDS = frozenset({
    "approved_at",
    "rejected_at",
    "rejection_reason",
    "suspension_reason",
})


class DuplicateReferenceError(Exception):
    """Booking reference already taken; the caller should generate another."""


# ===== Records =====

@dataclass(frozen=True)
class UserRecord:
    id: UUID
    email: str
    full_name: str
    role: UserRole
    is_active: bool
    agency_id: Optional[UUID] = None


@dataclass(frozen=True)
class AgencyRecord:
    id: UUID
    name: str
    slug: str
    owner_id: UUID
    contact_email: str
    contact_name: str
    status: AgencyStatus
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    suspension_reason: Optional[str] = None


@dataclass(frozen=True)
class CarWithAgency:
    car_id: UUID
    agency_id: UUID
    agency_name: str
    agency_status: AgencyStatus
    display_name: str
    price_per_day: Any
    is_active: bool


@dataclass(frozen=True)
class BookingRecord:
    id: UUID
    reference: str
    customer_id: UUID
    customer_email: str
    customer_name: str
    car_id: UUID
    car_name: str
    agency_id: UUID
    agency_name: str
    pickup_at: datetime
    dropoff_at: datetime
    pricing: PriceBreakdown
    status: BookingStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    extras: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NewBooking:
    reference: str
    customer_id: UUID
    car_id: UUID
    pickup_at: datetime
    dropoff_at: datetime
    pricing: PriceBreakdown
    status: BookingStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    extras: Tuple[str, ...] = ()
    special_requests: Optional[str] = None


@dataclass(frozen=True)
class AgencyRegistration:
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    license_number: Optional[str] = None
    description: Optional[str] = None
    website_url: Optional[str] = None


@dataclass(frozen=True)
class TransitionLogEntry:
    entity_type: str
    entity_id: UUID
    from_status: str
    to_status: str
    actor_id: Optional[UUID]
    actor_role: str
    reason: Optional[str]
    created_at: datetime


def check_mutable_fields(fields: Dict[str, Any], allowed: frozenset, entity: str) -> None:
    """Reject any extra column a status update is not allowed to write."""
    illegal = set(fields) - allowed
    if illegal:
        raise ValueError(f"Cannot update {entity} field(s) {sorted(illegal)} during a status change")


# ===== Contract =====

class DataStore(ABC):
    """
    Transactional store reachable by primary key and a few filtered queries.
    Implementations must make each method atomic.
    """

    @abstractmethod
    def get_user(self, user_id: UUID) -> UserRecord:
        pass

    @abstractmethod
    def get_booking(self, booking_id: UUID) -> BookingRecord:
        pass

    @abstractmethod
    def get_agency(self, agency_id: UUID) -> AgencyRecord:
        pass

    @abstractmethod
    def get_car_with_agency(self, car_id: UUID) -> CarWithAgency:
        pass

    @abstractmethod
    def insert_booking(self, booking: NewBooking) -> BookingRecord:
        """Persist a new booking. Raises DuplicateReferenceError on a reference clash."""

    @abstractmethod
    def compare_and_set_booking_status(
        self,
        booking_id: UUID,
        expected: BookingStatus,
        new: BookingStatus,
        *,
        actor: Actor,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> None:
        """Set ``new`` only if the stored status is still ``expected``; log the transition."""

    @abstractmethod
    def compare_and_set_agency_status(
        self,
        agency_id: UUID,
        expected: AgencyStatus,
        new: AgencyStatus,
        *,
        actor: Actor,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> None:
        """Set ``new`` only if the stored status is still ``expected``; log the transition."""

    @abstractmethod
    def create_agency(self, owner_id: UUID, registration: AgencyRegistration, slug: str) -> AgencyRecord:
        """Create a pending agency and promote its owner to agency_owner."""

    @abstractmethod
    def set_user_active(self, user_id: UUID, is_active: bool) -> UserRecord:
        pass

    @abstractmethod
    def count_active_bookings_for_customer(self, customer_id: UUID) -> int:
        pass

    @abstractmethod
    def count_active_bookings_for_agency(self, agency_id: UUID) -> int:
        pass

    @abstractmethod
    def list_status_history(self, entity_type: str, entity_id: UUID) -> List[TransitionLogEntry]:
        pass


# ===== SQLAlchemy implementation =====

def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        is_active=user.is_active,
        agency_id=user.agency_id,
    )


def _agency_record(agency: Agency, owner: Optional[User]) -> AgencyRecord:
    return AgencyRecord(
        id=agency.id,
        name=agency.name,
        slug=agency.slug,
        owner_id=agency.owner_id,
        contact_email=agency.email,
        contact_name=owner.full_name if owner else agency.name,
        status=agency.status,
        approved_at=agency.approved_at,
        rejected_at=agency.rejected_at,
        rejection_reason=agency.rejection_reason,
        suspension_reason=agency.suspension_reason,
    )


class SqlAlchemyDataStore(DataStore):
    """``DataStore`` over SQLAlchemy; one session and one transaction per call."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, PoolTimeoutError) as e:
            session.rollback()
            logger.error(f"Store operation '{operation}' failed: {e}", exc_info=True)
            raise UnavailableError(operation) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ----- reads -----

    def get_user(self, user_id: UUID) -> UserRecord:
        with self._session("get_user") as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            return _user_record(user)

    def get_agency(self, agency_id: UUID) -> AgencyRecord:
        with self._session("get_agency") as session:
            row = session.execute(
                select(Agency, User)
                .outerjoin(User, User.id == Agency.owner_id)
                .where(Agency.id == agency_id)
            ).one_or_none()
            if row is None:
                raise NotFoundError("Agency", agency_id)
            return _agency_record(*row)

    def get_car_with_agency(self, car_id: UUID) -> CarWithAgency:
        with self._session("get_car_with_agency") as session:
            row = session.execute(
                select(Car, Agency)
                .join(Agency, Agency.id == Car.agency_id)
                .where(Car.id == car_id)
            ).one_or_none()
            if row is None:
                raise NotFoundError("Car", car_id)
            car, agency = row
            return CarWithAgency(
                car_id=car.id,
                agency_id=agency.id,
                agency_name=agency.name,
                agency_status=agency.status,
                display_name=car.display_name,
                price_per_day=car.price_per_day,
                is_active=car.is_active,
            )

    def get_booking(self, booking_id: UUID) -> BookingRecord:
        with self._session("get_booking") as session:
            return self._load_booking(session, booking_id)

    def _load_booking(self, session: Session, booking_id: UUID) -> BookingRecord:
        row = session.execute(
            select(Booking, Car, Agency, User)
            .join(Car, Car.id == Booking.car_id)
            .join(Agency, Agency.id == Car.agency_id)
            .join(User, User.id == Booking.customer_id)
            .where(Booking.id == booking_id)
        ).one_or_none()
        if row is None:
            raise NotFoundError("Booking", booking_id)

        booking, car, agency, customer = row
        return BookingRecord(
            id=booking.id,
            reference=booking.reference,
            customer_id=customer.id,
            customer_email=customer.email,
            customer_name=customer.full_name,
            car_id=car.id,
            car_name=car.display_name,
            agency_id=agency.id,
            agency_name=agency.name,
            pickup_at=booking.pickup_at,
            dropoff_at=booking.dropoff_at,
            pricing=PriceBreakdown(
                base_price=booking.base_price,
                extras_price=booking.extras_price,
                insurance_price=booking.insurance_price,
                tax_amount=booking.tax_amount,
                total_price=booking.total_price,
                security_deposit=booking.security_deposit,
            ),
            status=booking.status,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            extras=tuple(e for e in booking.selected_extras.split(",") if e),
        )

    def count_active_bookings_for_customer(self, customer_id: UUID) -> int:
        with self._session("count_active_bookings_for_customer") as session:
            return session.execute(
                select(func.count(Booking.id)).where(
                    Booking.customer_id == customer_id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                )
            ).scalar_one()

    def count_active_bookings_for_agency(self, agency_id: UUID) -> int:
        with self._session("count_active_bookings_for_agency") as session:
            return session.execute(
                select(func.count(Booking.id))
                .join(Car, Car.id == Booking.car_id)
                .where(
                    Car.agency_id == agency_id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                )
            ).scalar_one()

    def list_status_history(self, entity_type: str, entity_id: UUID) -> List[TransitionLogEntry]:
        with self._session("list_status_history") as session:
            rows = session.execute(
                select(StatusTransition)
                .where(
                    StatusTransition.entity_type == entity_type,
                    StatusTransition.entity_id == entity_id,
                )
                .order_by(StatusTransition.created_at)
            ).scalars().all()
            return [
                TransitionLogEntry(
                    entity_type=row.entity_type,
                    entity_id=row.entity_id,
                    from_status=row.from_status,
                    to_status=row.to_status,
                    actor_id=row.actor_id,
                    actor_role=row.actor_role,
                    reason=row.reason,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    # ----- writes -----

    def insert_booking(self, booking: NewBooking) -> BookingRecord:
        with self._session("insert_booking") as session:
            taken = session.execute(
                select(Booking.id).where(Booking.reference == booking.reference)
            ).first()
            if taken:
                raise DuplicateReferenceError(booking.reference)

            pricing = booking.pricing
            row = Booking(
                reference=booking.reference,
                customer_id=booking.customer_id,
                car_id=booking.car_id,
                pickup_at=booking.pickup_at,
                dropoff_at=booking.dropoff_at,
                base_price=pricing.base_price,
                extras_price=pricing.extras_price,
                insurance_price=pricing.insurance_price,
                tax_amount=pricing.tax_amount,
                total_price=pricing.total_price,
                security_deposit=pricing.security_deposit,
                selected_extras=",".join(booking.extras),
                status=booking.status,
                payment_method=booking.payment_method,
                payment_status=booking.payment_status,
                special_requests=booking.special_requests,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as e:
                # A concurrent insert took the reference after the check above
                if "reference" in str(e.orig).lower():
                    raise DuplicateReferenceError(booking.reference) from e
                raise
            return self._load_booking(session, row.id)

    def compare_and_set_booking_status(
        self,
        booking_id: UUID,
        expected: BookingStatus,
        new: BookingStatus,
        *,
        actor: Actor,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> None:
        check_mutable_fields(fields, MUTABLE_BOOKING_FIELDS, "booking")

        with self._session("compare_and_set_booking_status") as session:
            result = session.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == expected)
                .values(status=new, updated_at=datetime.now(timezone.utc), **fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = session.execute(
                    select(Booking.status).where(Booking.id == booking_id)
                ).scalar_one_or_none()
                if current is None:
                    raise NotFoundError("Booking", booking_id)
                raise ConflictError("booking", booking_id, expected.value, current.value)

            session.add(StatusTransition(
                entity_type="booking",
                entity_id=booking_id,
                from_status=expected.value,
                to_status=new.value,
                actor_id=actor.user_id,
                actor_role=actor.role.value,
                reason=reason,
            ))

    def compare_and_set_agency_status(
        self,
        agency_id: UUID,
        expected: AgencyStatus,
        new: AgencyStatus,
        *,
        actor: Actor,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> None:
        check_mutable_fields(fields, MUTABLE_AGENCY_FIELDS, "agency")

        with self._session("compare_and_set_agency_status") as session:
            result = session.execute(
                update(Agency)
                .where(Agency.id == agency_id, Agency.status == expected)
                .values(status=new, updated_at=datetime.now(timezone.utc), **fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = session.execute(
                    select(Agency.status).where(Agency.id == agency_id)
                ).scalar_one_or_none()
                if current is None:
                    raise NotFoundError("Agency", agency_id)
                raise ConflictError("agency", agency_id, expected.value, current.value)

            session.add(StatusTransition(
                entity_type="agency",
                entity_id=agency_id,
                from_status=expected.value,
                to_status=new.value,
                actor_id=actor.user_id,
                actor_role=actor.role.value,
                reason=reason,
            ))

    def create_agency(self, owner_id: UUID, registration: AgencyRegistration, slug: str) -> AgencyRecord:
        with self._session("create_agency") as session:
            owner = session.get(User, owner_id)
            if owner is None:
                raise NotFoundError("User", owner_id)
            if owner.agency_id is not None:
                raise ValidationError("User already belongs to an agency", field="user_id")

            taken = session.execute(select(Agency.id).where(Agency.slug == slug)).first()
            if taken:
                raise ValidationError("Agency name already taken", field="name")

            agency = Agency(
                name=registration.name,
                slug=slug,
                owner_id=owner.id,
                email=registration.email,
                phone=registration.phone,
                address=registration.address,
                city=registration.city,
                license_number=registration.license_number,
                description=registration.description,
                website_url=registration.website_url,
                status=AgencyStatus.PENDING,
            )
            session.add(agency)
            session.flush()

            owner.agency_id = agency.id
            owner.role = UserRole.AGENCY_OWNER
            session.flush()

            return _agency_record(agency, owner)

    def set_user_active(self, user_id: UUID, is_active: bool) -> UserRecord:
        with self._session("set_user_active") as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.is_active = is_active
            session.flush()
            return _user_record(user)
