"""
Booking Routes - quote, create and move bookings through their lifecycle.

Provides:
- POST /bookings/quote: price a rental window
- POST /bookings: create a booking (admins may book for a customer and confirm it)
- POST /bookings/{booking_id}/transition: change booking status
- POST /bookings/{booking_id}/cancel: customer cancels their own booking
- GET /bookings/active-count: confirmed and in-progress bookings for the caller
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from carrental.api.dependencies import get_coordinator, get_current_actor
from carrental.domain.actors import Actor
from carrental.domain.errors import ForbiddenError
from carrental.lib.logging import get_logger
from carrental.models.bookings import PaymentMethod
from carrental.services.workflow import BookingRequest, WorkflowCoordinator


logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


# Request/response models
class QuoteRequest(BaseModel):
    car_id: UUID
    pickup_at: datetime
    dropoff_at: datetime
    extras: List[str] = Field(default_factory=list, description="Extras catalog ids")


class QuoteResponse(BaseModel):
    rental_days: int
    extras: List[str]
    base_price: Decimal
    extras_price: Decimal
    insurance_price: Decimal
    tax_amount: Decimal
    total_price: Decimal
    security_deposit: Decimal


class CreateBookingRequest(BaseModel):
    car_id: UUID
    pickup_at: datetime
    dropoff_at: datetime
    payment_method: PaymentMethod
    extras: List[str] = Field(default_factory=list, description="Extras catalog ids")
    special_requests: Optional[str] = Field(None, max_length=1000)
    customer_id: Optional[UUID] = Field(None, description="Admin only: book on behalf of this customer")
    confirm: bool = Field(False, description="Admin only: create the booking already confirmed")


class BookingCreatedResponse(BaseModel):
    booking_id: UUID
    reference: str
    total_price: Decimal
    deposit_amount: Decimal
    status: str


class TransitionRequest(BaseModel):
    status: str = Field(description="Requested status")
    reason: Optional[str] = Field(None, max_length=500)


class TransitionResponse(BaseModel):
    status: str
    changed: bool


class ActiveCountResponse(BaseModel):
    count: int


@router.post("/quote", response_model=QuoteResponse, summary="Price a rental window")
def quote_booking(
    request: QuoteRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> QuoteResponse:
    priced = coordinator.quote_booking(request.car_id, request.pickup_at, request.dropoff_at, request.extras)
    breakdown = priced.breakdown
    return QuoteResponse(
        rental_days=priced.rental_days,
        extras=list(priced.extras),
        base_price=breakdown.base_price,
        extras_price=breakdown.extras_price,
        insurance_price=breakdown.insurance_price,
        tax_amount=breakdown.tax_amount,
        total_price=breakdown.total_price,
        security_deposit=breakdown.security_deposit,
    )


@router.post(
    "",
    response_model=BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a booking",
)
def create_booking(
    request: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> BookingCreatedResponse:
    """
    Create a booking for the calling customer.

    Administrators may set ``customer_id`` to book on someone's behalf and
    ``confirm`` to skip the pending step.
    """
    customer_id = request.customer_id or actor.user_id
    logger.info(f"POST /bookings (car={request.car_id}, customer={customer_id})")

    receipt = coordinator.create_booking(
        customer_id,
        BookingRequest(
            car_id=request.car_id,
            pickup_at=request.pickup_at,
            dropoff_at=request.dropoff_at,
            payment_method=request.payment_method,
            extras=tuple(request.extras),
            special_requests=request.special_requests,
        ),
        created_by=actor,
        confirm=request.confirm,
    )
    return BookingCreatedResponse(
        booking_id=receipt.booking_id,
        reference=receipt.reference,
        total_price=receipt.total_price,
        deposit_amount=receipt.deposit_amount,
        status=receipt.status.value,
    )


@router.post("/{booking_id}/transition", response_model=TransitionResponse, summary="Change booking status")
def transition_booking(
    booking_id: UUID,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = coordinator.transition_booking(booking_id, request.status, actor, reason=request.reason)
    return TransitionResponse(status=result.status, changed=result.changed)


@router.post("/{booking_id}/cancel", response_model=TransitionResponse, summary="Cancel own booking")
def cancel_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    if not actor.is_customer:
        raise ForbiddenError("Only customers can cancel their own booking", actor_role=actor.role.value)
    result = coordinator.cancel_own_booking(booking_id, actor.user_id)
    return TransitionResponse(status=result.status, changed=result.changed)


@router.get("/active-count", response_model=ActiveCountResponse, summary="Count active bookings")
def active_count(
    agency_id: Optional[UUID] = Query(None, description="Admin only: agency to count for"),
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> ActiveCountResponse:
    return ActiveCountResponse(count=coordinator.active_booking_count(actor, agency_id))
