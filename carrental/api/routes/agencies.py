"""
Agency Routes - self-service agency registration.

The registering user becomes the agency owner. The agency starts pending
and its cars cannot be booked until an administrator approves it.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from carrental.api.dependencies import get_coordinator, get_current_actor
from carrental.domain.actors import Actor
from carrental.services.store import AgencyRegistration
from carrental.services.workflow import WorkflowCoordinator


router = APIRouter(prefix="/agencies", tags=["agencies"])


class RegisterAgencyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=255, description="Agency contact email")
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    license_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    website_url: Optional[str] = Field(None, max_length=255)


class RegisterAgencyResponse(BaseModel):
    agency_id: UUID
    slug: str
    status: str


@router.post(
    "/register",
    response_model=RegisterAgencyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an agency",
)
def register_agency(
    request: RegisterAgencyRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> RegisterAgencyResponse:
    agency = coordinator.register_agency(actor.user_id, AgencyRegistration(**request.model_dump()))
    return RegisterAgencyResponse(agency_id=agency.id, slug=agency.slug, status=agency.status.value)
