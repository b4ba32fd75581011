"""
API dependencies for FastAPI dependency injection.

Provides the acting principal (from the bearer token) and the workflow
coordinator. Tests override ``get_coordinator`` to inject an in-memory store.
"""
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import InvalidTokenError

from carrental.api.middleware.error_handler import UnauthorizedException
from carrental.domain.actors import Actor
from carrental.lib.jwt import get_principal_from_token
from carrental.lib.logging import set_actor
from carrental.models.users import UserRole
from carrental.services.workflow import WorkflowCoordinator, get_workflow_coordinator


# HTTP Bearer token security scheme; a missing header is reported as 401 below
security = HTTPBearer(auto_error=False)


def get_coordinator() -> WorkflowCoordinator:
    return get_workflow_coordinator()


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """
    Dependency to get the acting principal from a JWT bearer token.

    The principal is also attached to the logging context of the request.

    Raises:
        UnauthorizedException: 401 if the token is missing, invalid or malformed
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")

    try:
        user_id, role, agency_id = get_principal_from_token(credentials.credentials)
        actor = Actor(
            user_id=UUID(str(user_id)),
            role=UserRole(role),
            agency_id=UUID(str(agency_id)) if agency_id else None,
        )
    except InvalidTokenError as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}")
    except ValueError:
        raise UnauthorizedException("Token carries an invalid subject or role")

    set_actor(str(actor.user_id), actor.role.value)
    return actor
