import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_users.password import PasswordHelper
from sqlalchemy import select

from . import background
from .database import async_session_maker, init_db
from .errors import (
    AudioshelfError, AuthorizationError, ConflictError, InvalidTransition, NotEligible, StorageError,
    ValidationError,
)
from .models import User, UserRole
from .routers import admin, chapters, content, library, webhooks
from .schemas import ContentRead, UserCreate, UserRead, UserUpdate
from .settings.config import settings
from .users import auth_backend, cookie_auth_backend, fastapi_users

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Audioshelf")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(content.router)
app.include_router(chapters.router)
app.include_router(library.router)
app.include_router(admin.router)
app.include_router(webhooks.router)

# Authentication Routes
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(fastapi_users.get_auth_router(cookie_auth_backend), prefix="/auth/cookie", tags=["auth"])
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])


# ----------------------
# Domain errors -> HTTP
# ----------------------
def status_for(exc: AudioshelfError) -> int:
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, ValidationError):
        return 413 if exc.code == "file_too_large" else 400
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, NotEligible):
        return 403
    if isinstance(exc, StorageError):
        return 502
    if isinstance(exc, AuthorizationError):
        return 404
    return 400


@app.exception_handler(AudioshelfError)
async def _domain_error_handler(request: Request, exc: AudioshelfError):
    code = status_for(exc)
    body = {"error": exc.code, "message": exc.message}
    current = getattr(exc, "current", None)
    if current is not None:
        body["current"] = [
            {"id": ch.id, "chapter_index": ch.chapter_index, "title": ch.title} for ch in current
        ] if isinstance(current, list) else ContentRead.model_validate(current).model_dump(mode="json")
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content=body)


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Something went wrong. Please try again."},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


# ----------------------
# Auto-create admin user
# ----------------------
async def create_admin_user():
    admin_email = settings.ADMIN_EMAIL
    admin_password = settings.ADMIN_PASSWORD

    if not admin_email or not admin_password:
        logger.info("ADMIN_EMAIL or ADMIN_PASSWORD not set, skipping admin creation.")
        return

    async with async_session_maker() as session:
        result = await session.execute(select(User).where(User.email == admin_email))
        existing_admin = result.scalars().first()
        if existing_admin:
            logger.info("Admin user already exists: %s", admin_email)
            return
        session.add(User(
            email=admin_email,
            hashed_password=PasswordHelper().hash(admin_password),
            username=settings.ADMIN_USERNAME,
            role=UserRole.admin,
            is_superuser=True,
            is_active=True,
            is_verified=True,
        ))
        await session.commit()
        logger.info("Admin user created: %s", admin_email)


@app.on_event("startup")
async def on_startup():
    await init_db()
    await create_admin_user()


@app.on_event("shutdown")
async def on_shutdown():
    await background.drain()
