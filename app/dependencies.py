"""
HRFlow - FastAPI Dependencies

Shared dependencies for authentication, tenant scoping and RBAC.

This module provides dependency injection for:
1. Current user authentication (JWT bearer token or access_token cookie)
2. The acting user as the salary advance engine sees it (Actor)
3. Permission-based access control for organization users
"""

import uuid
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.models.user import User
from app.services.salary_advance.workflow import Actor
from app.utils.error_handling import InsufficientPermissionsException
from app.utils.permissions import AdvancePermission, has_all_permissions
from app.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Get the current authenticated user from JWT token.

    Token can be provided via:
    1. Authorization: Bearer <token> header
    2. access_token cookie

    When the token carries an `org` claim it must match the user's
    organization.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token",
        )

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    org_claim = payload.get("org")
    if org_claim and org_claim != str(user.organization_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token organization does not match user",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def get_current_actor(
    current_user: User = Depends(get_current_user),
) -> Actor:
    """The authenticated user reduced to what the advance engine needs."""
    return Actor.from_user(current_user)


def require_permission(required_permissions: List[AdvancePermission]):
    """
    Dependency factory for salary advance permission checks.

    Usage:
        @router.post("/{request_id}/disburse")
        async def disburse(
            actor: Actor = Depends(require_permission([AdvancePermission.DISBURSE]))
        ):
            ...
    """
    async def permission_checker(
        actor: Actor = Depends(get_current_actor),
    ) -> Actor:
        if not has_all_permissions(actor.role, required_permissions):
            raise InsufficientPermissionsException(
                required_permission=", ".join(p.value for p in required_permissions),
                user_role=actor.role.value,
            )
        return actor

    return permission_checker
