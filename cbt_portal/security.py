"""Password hashing and the cookie session that remembers who is logged in."""

from passlib.context import CryptContext
from starlette.requests import Request

from cbt_portal.models import User

# bcrypt is pinned below 4.1 in the project dependencies for passlib
PWD_CONTEXT = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

SESSION_USER_KEY = "user_id"
SESSION_ROLE_KEY = "role"


def hash_password(plain_password: str) -> str:
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return PWD_CONTEXT.verify(plain_password, password_hash)


def start_session(request: Request, user: User) -> None:
    """Store the user in the signed session cookie."""
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id
    request.session[SESSION_ROLE_KEY] = user.role.value


def session_user_id(request: Request):
    return request.session.get(SESSION_USER_KEY)


def end_session(request: Request) -> None:
    request.session.clear()
