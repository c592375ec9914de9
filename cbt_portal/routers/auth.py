"""Login/logout against the cookie session."""

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlmodel import Session

from cbt_portal.database import get_session
from cbt_portal.deps import require_login
from cbt_portal.models import User
from cbt_portal.schemas import LoginIn
from cbt_portal.security import end_session, start_session
from cbt_portal.services.user_service import authenticate, permissions_for

router = APIRouter()


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "admission_number": user.admission_number,
        "role": user.role,
        "class_level": user.class_level,
        "permissions": permissions_for(user).model_dump(),
    }


@router.post("/login")
def login(
    request: Request,
    payload: LoginIn = Body(...),
    session: Session = Depends(get_session),
):
    """Staff and admins use their email, students their admission number."""
    user = authenticate(session, payload.username, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials. Please check your login details and try again.")
    start_session(request, user)
    return _user_out(user)


@router.post("/logout")
def logout(request: Request):
    end_session(request)
    return {"status": "success"}


@router.get("/me")
def me(current_user: User = Depends(require_login)):
    return _user_out(current_user)
