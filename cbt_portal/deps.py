"""Shared FastAPI dependencies for database access and authentication."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from cbt_portal.database import get_session
from cbt_portal.models import Role, User
from cbt_portal.security import end_session, session_user_id
from cbt_portal.services.user_service import permissions_for


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = session_user_id(request)
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        end_session(request)
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in."""
    if current_user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return current_user


def require_role(required_roles: list[Role]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


def require_staff_permission(permission: str):
    """Dependency factory for admin-or-staff routes gated by a staff permission flag."""

    def wrapper(current_user: User = Depends(require_role([Role.ADMIN, Role.STAFF]))) -> User:
        if not getattr(permissions_for(current_user), permission):
            raise HTTPException(
                status_code=403,
                detail="You do not have permission to perform this action",
            )
        return current_user

    return wrapper
