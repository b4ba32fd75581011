"""
Admin Routes - agency approval, account activation and transition history.

Provides:
- POST /admin/agencies/{agency_id}/transition: approve, reject, suspend or reinstate
- PATCH /admin/users/{user_id}/status: activate or deactivate an account
- GET /admin/history/{entity}/{entity_id}: status transition log

Every route requires an administrator token; the coordinator enforces it.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from carrental.api.dependencies import get_coordinator, get_current_actor
from carrental.api.routes.bookings import TransitionRequest, TransitionResponse
from carrental.domain.actors import Actor
from carrental.lib.logging import get_logger
from carrental.services.workflow import WorkflowCoordinator


logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


class UserStatusRequest(BaseModel):
    is_active: bool


class UserStatusResponse(BaseModel):
    user_id: UUID
    is_active: bool


class HistoryEntry(BaseModel):
    from_status: str
    to_status: str
    actor_id: Optional[UUID]
    actor_role: str
    reason: Optional[str]
    created_at: datetime


class HistoryResponse(BaseModel):
    entity: str
    entity_id: UUID
    transitions: List[HistoryEntry] = Field(default_factory=list)


@router.post(
    "/agencies/{agency_id}/transition",
    response_model=TransitionResponse,
    summary="Change agency status",
)
def transition_agency(
    agency_id: UUID,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    logger.info(f"POST /admin/agencies/{agency_id}/transition -> {request.status}")
    result = coordinator.transition_agency(agency_id, request.status, actor, reason=request.reason)
    return TransitionResponse(status=result.status, changed=result.changed)


@router.patch("/users/{user_id}/status", response_model=UserStatusResponse, summary="Activate or deactivate a user")
def set_user_status(
    user_id: UUID,
    request: UserStatusRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> UserStatusResponse:
    user = coordinator.set_user_active(actor, user_id, request.is_active)
    return UserStatusResponse(user_id=user.id, is_active=user.is_active)


@router.get("/history/{entity}/{entity_id}", response_model=HistoryResponse, summary="Status transition log")
def status_history(
    entity: str,
    entity_id: UUID,
    actor: Actor = Depends(get_current_actor),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> HistoryResponse:
    entries = coordinator.status_history(entity, entity_id, actor)
    return HistoryResponse(
        entity=entity,
        entity_id=entity_id,
        transitions=[
            HistoryEntry(
                from_status=entry.from_status,
                to_status=entry.to_status,
                actor_id=entry.actor_id,
                actor_role=entry.actor_role,
                reason=entry.reason,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
    )
