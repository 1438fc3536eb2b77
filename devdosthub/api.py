"""FastAPI application for DevDostHub."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .ai import AIClient, build_ai_client
from .config import settings
from .crud import (
    cancel_rsvp,
    category_counts,
    create_event,
    create_rsvp,
    delete_event,
    delete_user,
    event_attendees,
    event_stats,
    get_event,
    has_rsvped,
    list_event_rsvps,
    list_events,
    list_user_rsvps,
    list_users,
    login_user,
    register_user,
    require_user,
    set_user_role,
    update_event,
    update_profile,
    user_from_token,
)
from .database import SessionLocal
from .errors import DevDostError, Forbidden, NotFound, Unauthenticated
from .models import Event, RSVP, User
from .scheduler import start_scheduler, stop_scheduler
from .security import create_access_token
from .storage import init_db
from .utils import isoformat, page_count

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("devdosthub")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db()
    except OperationalError:
        logger.exception("Unable to connect to the database at startup")
        raise
    app.state.ai_client = build_ai_client(settings)
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="DevDostHub", version=APP_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    return user_from_token(db, _get_bearer_token(request))


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise Forbidden()
    return user


def get_ai_client(request: Request) -> AIClient:
    client = getattr(request.app.state, "ai_client", None)
    if client is None:
        client = build_ai_client(settings)
        request.app.state.ai_client = client
    return client


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


@app.exception_handler(DevDostError)
async def domain_error_handler(request: Request, exc: DevDostError):
    if exc.status_code >= 500:
        logger.warning(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _error(exc.status_code, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        text = error.get("msg", "Invalid value")
        messages.append(f"{location}: {text}" if location else text)
    return _error(400, "; ".join(messages) or "Invalid request.")


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return _error(500, raw)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return _error(500, str(exc) or "Internal server error")


# -------- Serialization --------

PUBLIC_USER_FIELDS = ("name", "email", "role", "avatar")


def _serialize_user(user: User, *, fields: tuple[str, ...] | None = None):
    payload = {
        "_id": user.id,
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "skills": list(user.skills or []),
        "bio": user.bio,
        "avatar": user.avatar,
        "github": user.github,
        "linkedin": user.linkedin,
        "createdAt": isoformat(user.created_at),
        "updatedAt": isoformat(user.updated_at),
    }
    if fields is None:
        return payload
    return {key: payload[key] for key in ("_id", "id", *fields)}


def _serialize_event(event: Event, *, creator_fields: tuple[str, ...] = ("name", "email")):
    return {
        "_id": event.id,
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "date": isoformat(event.date),
        "endDate": isoformat(event.end_date),
        "location": event.location,
        "speaker": event.speaker,
        "category": event.category,
        "capacity": event.capacity,
        "tags": list(event.tags or []),
        "isOnline": event.is_online,
        "meetingLink": event.meeting_link,
        "createdBy": _serialize_user(event.creator, fields=creator_fields)
        if event.creator
        else None,
        "status": event.status,
        "rsvpCount": event.rsvp_count,
        "createdAt": isoformat(event.created_at),
        "updatedAt": isoformat(event.updated_at),
    }


def _serialize_rsvp(rsvp: RSVP, *, include_user: bool = False):
    user_ref = rsvp.user_id
    if include_user:
        user_ref = (
            _serialize_user(rsvp.user, fields=PUBLIC_USER_FIELDS) if rsvp.user else None
        )
    return {
        "_id": rsvp.id,
        "id": rsvp.id,
        "eventId": rsvp.event_id,
        "userId": user_ref,
        "createdAt": isoformat(rsvp.created_at),
        "updatedAt": isoformat(rsvp.updated_at),
    }


# -------- Payloads --------


class RegisterPayload(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""
    role: str | None = None
    skills: list[str] | str | None = None
    bio: str | None = None
    avatar: str | None = None
    github: str | None = None
    linkedin: str | None = None


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""


class ProfileUpdatePayload(BaseModel):
    name: str | None = None
    skills: list[str] | str | None = None
    bio: str | None = None
    avatar: str | None = None
    github: str | None = None
    linkedin: str | None = None


class RolePayload(BaseModel):
    role: str | None = None


class EventCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    description: str | None = None
    date: datetime | None = None
    end_date: datetime | None = Field(None, alias="endDate")
    location: str = ""
    speaker: str = ""
    category: str | None = None
    capacity: int | None = None
    tags: list[str] | str | None = None
    is_online: bool = Field(False, alias="isOnline")
    meeting_link: str | None = Field(None, alias="meetingLink")
    status: str | None = None


class EventUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    description: str | None = None
    date: datetime | None = None
    end_date: datetime | None = Field(None, alias="endDate")
    location: str | None = None
    speaker: str | None = None
    category: str | None = None
    capacity: int | None = None
    tags: list[str] | str | None = None
    is_online: bool | None = Field(None, alias="isOnline")
    meeting_link: str | None = Field(None, alias="meetingLink")
    status: str | None = None


class RSVPCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field("", alias="eventId")


class AskPayload(BaseModel):
    question: str | None = None


# -------- Routes --------


@app.get("/")
def health():
    return {"success": True, "message": "DevDostHub API is running!"}


@app.post("/api/users/register", status_code=201)
def api_register(payload: RegisterPayload, db: Session = Depends(get_db)):
    user = register_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        skills=payload.skills,
        bio=payload.bio,
        avatar=payload.avatar,
        github=payload.github,
        linkedin=payload.linkedin,
    )
    logger.info("Registered user %s (%s)", user.id, user.role)
    return {
        "success": True,
        "message": "Account created successfully",
        "token": create_access_token(user.id),
        "data": _serialize_user(user),
    }


@app.post("/api/users/login")
def api_login(payload: LoginPayload, db: Session = Depends(get_db)):
    try:
        token, user = login_user(db, email=payload.email, password=payload.password)
    except NotFound as exc:
        # Unknown emails answer 401 like every other login failure.
        raise Unauthenticated(exc.message) from exc
    return {
        "success": True,
        "message": "Login successful",
        "token": token,
        "data": _serialize_user(user),
    }


@app.get("/api/users")
def api_list_users(
    _: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    users = list_users(db)
    return {
        "success": True,
        "count": len(users),
        "data": [_serialize_user(user) for user in users],
    }


@app.get("/api/users/me")
def api_current_user(user: User = Depends(get_current_user)):
    return {"success": True, "data": _serialize_user(user)}


@app.put("/api/users/me")
def api_update_current_user(
    payload: ProfileUpdatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = update_profile(db, user, payload.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": _serialize_user(user),
    }


@app.get("/api/users/{user_id}")
def api_get_user(user_id: str, db: Session = Depends(get_db)):
    user = require_user(db, user_id)
    return {"success": True, "data": _serialize_user(user)}


@app.put("/api/users/{user_id}/role")
def api_set_user_role(
    user_id: str,
    payload: RolePayload,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = set_user_role(db, user_id, payload.role)
    logger.info("Admin %s set role of user %s to %s", admin.id, user.id, user.role)
    return {"success": True, "data": _serialize_user(user)}


@app.delete("/api/users/{user_id}")
def api_delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    delete_user(db, user_id)
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return {"success": True, "message": "User deleted"}


@app.post("/api/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = create_event(
        db,
        title=payload.title,
        description=payload.description,
        date=payload.date,
        end_date=payload.end_date,
        location=payload.location,
        speaker=payload.speaker,
        category=payload.category,
        capacity=payload.capacity,
        tags=payload.tags,
        is_online=payload.is_online,
        meeting_link=payload.meeting_link,
        status=payload.status,
        creator=user,
    )
    logger.info("User %s created event %s", user.id, event.id)
    return {
        "success": True,
        "message": "Event created successfully",
        "data": _serialize_event(event),
    }


@app.get("/api/events")
def api_list_events(
    search: str | None = Query(None),
    category: str | None = Query(None),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.events_per_page, ge=1),
    db: Session = Depends(get_db),
):
    events, total = list_events(
        db,
        search=search,
        category=category,
        status=status,
        page=page,
        per_page=limit,
    )
    return {
        "success": True,
        "count": len(events),
        "total": total,
        "page": page,
        "pages": page_count(total, limit),
        "data": [_serialize_event(event) for event in events],
    }


@app.get("/api/events/categories")
def api_event_categories(db: Session = Depends(get_db)):
    return {"success": True, "data": category_counts(db)}


@app.get("/api/events/stats")
def api_event_stats(db: Session = Depends(get_db)):
    return {"success": True, "data": event_stats(db)}


@app.get("/api/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = get_event(db, event_id)
    payload = _serialize_event(event, creator_fields=("name", "email", "role"))
    payload["attendees"] = [
        _serialize_user(user, fields=PUBLIC_USER_FIELDS)
        for user in event_attendees(event)
    ]
    return {"success": True, "data": payload}


@app.put("/api/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = update_event(db, event_id, payload.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Event updated successfully",
        "data": _serialize_event(event),
    }


@app.delete("/api/events/{event_id}")
def api_delete_event(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    delete_event(db, event_id)
    logger.info("User %s deleted event %s and its RSVPs", user.id, event_id)
    return {"success": True, "message": "Event deleted successfully"}


@app.post("/api/rsvps", status_code=201)
def api_create_rsvp(
    payload: RSVPCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rsvp = create_rsvp(db, event_id=payload.event_id, user_id=user.id)
    logger.info("User %s RSVPed to event %s", user.id, rsvp.event_id)
    return {
        "success": True,
        "message": "RSVP successful! You're going 🎉",
        "data": _serialize_rsvp(rsvp),
    }


@app.get("/api/rsvps/my")
def api_my_rsvps(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    events = []
    for rsvp in list_user_rsvps(db, user.id):
        events.append(
            {
                "rsvpId": rsvp.id,
                "rsvpDate": isoformat(rsvp.created_at),
                **_serialize_event(rsvp.event, creator_fields=("name",)),
            }
        )
    return {"success": True, "count": len(events), "data": events}


@app.get("/api/rsvps/check/{event_id}")
def api_check_rsvp(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"success": True, "hasRSVPed": has_rsvped(db, event_id=event_id, user_id=user.id)}


@app.get("/api/rsvps/event/{event_id}")
def api_event_rsvps(event_id: str, db: Session = Depends(get_db)):
    rsvps = list_event_rsvps(db, event_id)
    return {
        "success": True,
        "count": len(rsvps),
        "data": [_serialize_rsvp(rsvp, include_user=True) for rsvp in rsvps],
    }


@app.delete("/api/rsvps/{event_id}")
def api_cancel_rsvp(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cancel_rsvp(db, event_id=event_id, user_id=user.id)
    logger.info("User %s cancelled RSVP for event %s", user.id, event_id)
    return {"success": True, "message": "RSVP cancelled successfully"}


@app.post("/api/ai/ask")
def api_ask(payload: AskPayload, client: AIClient = Depends(get_ai_client)):
    answer = client.ask(payload.question)
    return {"success": True, "question": payload.question, "answer": answer}
