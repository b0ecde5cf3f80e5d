"""
Request principal.

Authentication happens upstream (session middleware / gateway), which puts
the principal on ``request.state.user``. These dependencies only read and
authorize it.
"""

from typing import Any, Callable
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError

from clearstack.models.tenant import UserRole

logger = structlog.get_logger()


class CurrentUser(BaseModel):
    """The authenticated user of the current request."""

    id: UUID
    tenant_id: UUID
    email: str | None = None
    role: UserRole = UserRole.USER


def get_current_user(request: Request) -> CurrentUser:
    principal: Any = getattr(request.state, "user", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(principal, CurrentUser):
        return principal
    try:
        return CurrentUser.model_validate(principal, from_attributes=True)
    except ValidationError:
        logger.warning("invalid_request_principal")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


# admin > manager > user
ROLE_HIERARCHY = {UserRole.ADMIN: 100, UserRole.MANAGER: 50, UserRole.USER: 10}


def requires_role(required_role: UserRole) -> Callable[[CurrentUser], CurrentUser]:
    """
    FastAPI dependency for RBAC.

    Usage:
        @router.get("/logs")
        async def logs(user: CurrentUser = Depends(requires_role(UserRole.ADMIN))):
            ...
    """

    def role_checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if ROLE_HIERARCHY.get(user.role, 0) < ROLE_HIERARCHY[required_role]:
            logger.warning(
                "insufficient_permissions",
                user_id=str(user.id),
                user_role=user.role.value,
                required_role=required_role.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role.value}",
            )
        return user

    return role_checker
