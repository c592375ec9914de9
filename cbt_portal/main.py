"""FastAPI entrypoint for the School CBT Portal."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from cbt_portal.security import hash_password
from cbt_portal.config import settings
from cbt_portal.database import create_db_and_tables, engine
from cbt_portal.errors import ExamNotAccessible, PortalError
from cbt_portal.logging_config import configure_logging
from cbt_portal.models import Role, User
from cbt_portal.routers import admin as admin_router_module
from cbt_portal.routers import auth as auth_router_module
from cbt_portal.routers import staff as staff_router_module
from cbt_portal.routers import student as student_router_module

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """Translate service errors into JSON responses with the matching status."""
    content = {"detail": exc.detail}
    if isinstance(exc, ExamNotAccessible) and exc.reason:
        content["reason"] = exc.reason
    if exc.status_code >= 500:
        logger.error("Unhandled portal error on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=content)


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])
app.include_router(staff_router_module.router, prefix="/staff", tags=["staff"])
app.include_router(student_router_module.router, prefix="/exams", tags=["student"])


@app.get("/")
def home():
    return {"app": settings.app_name, "status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize logging and database schema, and seed the first admin."""
    configure_logging()
    create_db_and_tables()
    with Session(engine) as session:
        existing_admin = session.exec(select(User).where(User.role == Role.ADMIN)).first()
        if not existing_admin:
            admin_user = User(
                name="System Admin",
                email=settings.seed_admin_email,
                password_hash=hash_password(settings.seed_admin_password),
                role=Role.ADMIN,
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default admin user: %s", settings.seed_admin_email)
