"""
FastAPI backend for Assistant Memory.

Provides REST endpoints for:
- Registration and login (API-key authentication)
- Contexts, tasks and structured data (CRUD + filtered listing)
- Preferences (lazily created, upserted)

Every handler calls into the Store chosen at startup; storage errors are
mapped to HTTP statuses by the exception handlers registered here.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi import Query as QueryParam
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from amem.core.config import Settings, get_logger
from amem.core.errors import (
    Conflict,
    CorruptData,
    NotFound,
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from amem.core.security import hash_password, verify_password
from amem.core.types import (
    ContextCreate,
    ContextUpdate,
    LoginRequest,
    Preference,
    PreferenceUpdate,
    RegisterRequest,
    StructuredDataCreate,
    StructuredDataUpdate,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    User,
    utcnow,
)
from amem.storage.base import Store
from amem.storage.query import DEFAULT_LIMIT, Query
from amem.storage.selector import select_store

logger = get_logger("api")

ERROR_STATUS: dict[type[Exception], int] = {
    NotFound: 404,
    Conflict: 409,
    ValidationError: 400,
    StorageUnavailable: 500,
    CorruptData: 500,
    StorageError: 500,
}


# ==========================================
# Dependencies
# ==========================================

def get_store(request: Request) -> Store:
    """The Store selected at startup."""
    return request.app.state.store


async def current_user(
    x_api_key: str | None = Header(default=None),
    store: Store = Depends(get_store),
) -> User:
    """Resolve the X-API-Key header to a user."""
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")
    page = await store.query("users", Query(equals={"apiKey": x_api_key}, limit=1))
    if not page.items:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return page.items[0]


def _listing(
    user: User,
    equals: dict[str, Any],
    tags: str | None,
    limit: int,
    skip: int,
) -> Query:
    try:
        return Query(user_id=user.id, equals=equals, tags=tags, limit=limit, skip=skip)
    except PydanticValidationError as e:
        raise ValidationError(e.errors()[0]["msg"]) from e


router = APIRouter(prefix="/api/v1")


# ==========================================
# Auth
# ==========================================

@router.post("/auth/register", status_code=201)
async def register(body: RegisterRequest, store: Store = Depends(get_store)):
    """Register a new user/assistant and issue its API key."""
    user = User(
        username=body.username,
        email=body.email,
        password=hash_password(body.password),
        role=body.role or "assistant",
    )
    try:
        user = await store.create("users", user)
    except Conflict:
        raise HTTPException(status_code=409, detail="Username or email already exists")
    logger.info(f"Registered user {user.username}")
    return {"message": "User registered successfully", "user": user.public()}


@router.post("/auth/login")
async def login(body: LoginRequest, store: Store = Depends(get_store)):
    """Exchange username and password for the user's API key."""
    page = await store.query(
        "users", Query(equals={"username": body.username.strip().lower()}, limit=1)
    )
    if not page.items or not verify_password(body.password, page.items[0].password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user = await store.update_by_id("users", page.items[0].id, None, {"lastLogin": utcnow()})
    return {"message": "Login successful", "user": user.public()}


# ==========================================
# Contexts
# ==========================================

@router.post("/contexts", status_code=201)
async def create_context(
    body: ContextCreate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    context = await store.create("contexts", body.to_record(user.id))
    return {"message": "Context created", "context": context.to_document()}


@router.get("/contexts")
async def list_contexts(
    session_id: str | None = QueryParam(default=None, alias="sessionId"),
    tags: str | None = None,
    limit: int = DEFAULT_LIMIT,
    skip: int = 0,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    query = _listing(user, {"sessionId": session_id}, tags, limit, skip)
    page = await store.query("contexts", query)
    return {"contexts": [c.to_document() for c in page.items], "count": page.count}


@router.get("/contexts/{context_id}")
async def get_context(
    context_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    context = await store.get_by_id("contexts", context_id, user.id)
    return {"context": context.to_document()}


@router.put("/contexts/{context_id}")
async def update_context(
    context_id: str,
    body: ContextUpdate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    context = await store.update_by_id("contexts", context_id, user.id, body.changes())
    return {"message": "Context updated", "context": context.to_document()}


@router.delete("/contexts/{context_id}")
async def delete_context(
    context_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    await store.delete_by_id("contexts", context_id, user.id)
    return {"message": "Context deleted"}


# ==========================================
# Tasks
# ==========================================

@router.post("/tasks", status_code=201)
async def create_task(
    body: TaskCreate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    task = await store.create("tasks", body.to_record(user.id))
    return {"message": "Task created", "task": task.to_document()}


@router.get("/tasks")
async def list_tasks(
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    tags: str | None = None,
    limit: int = DEFAULT_LIMIT,
    skip: int = 0,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    equals = {
        "status": status.value if status else None,
        "priority": priority.value if priority else None,
    }
    page = await store.query("tasks", _listing(user, equals, tags, limit, skip))
    return {"tasks": [t.to_document() for t in page.items], "count": page.count}


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    task = await store.get_by_id("tasks", task_id, user.id)
    return {"task": task.to_document()}


@router.put("/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    task = await store.update_by_id("tasks", task_id, user.id, body.changes())
    return {"message": "Task updated", "task": task.to_document()}


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    await store.delete_by_id("tasks", task_id, user.id)
    return {"message": "Task deleted"}


# ==========================================
# Structured Data
# ==========================================

@router.post("/data", status_code=201)
async def create_data(
    body: StructuredDataCreate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    item = await store.create("structured_data", body.to_record(user.id))
    return {"message": "Data created", "data": item.to_document()}


@router.get("/data")
async def list_data(
    collection: str | None = None,
    tags: str | None = None,
    limit: int = DEFAULT_LIMIT,
    skip: int = 0,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    query = _listing(user, {"collection": collection}, tags, limit, skip)
    page = await store.query("structured_data", query)
    return {"data": [d.to_document() for d in page.items], "count": page.count}


@router.get("/data/{data_id}")
async def get_data(
    data_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    item = await store.get_by_id("structured_data", data_id, user.id)
    return {"data": item.to_document()}


@router.put("/data/{data_id}")
async def update_data(
    data_id: str,
    body: StructuredDataUpdate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    item = await store.update_by_id("structured_data", data_id, user.id, body.changes())
    return {"message": "Data updated", "data": item.to_document()}


@router.delete("/data/{data_id}")
async def delete_data(
    data_id: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    await store.delete_by_id("structured_data", data_id, user.id)
    return {"message": "Data deleted"}


# ==========================================
# Preferences
# ==========================================

@router.get("/preferences")
async def get_preferences(
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    """Get the user's preferences, creating the defaults on first read."""
    try:
        prefs = await store.get_by_id("preferences", user.id, user.id)
    except NotFound:
        try:
            prefs = await store.create("preferences", Preference(user_id=user.id))
        except Conflict:
            # created by a concurrent request
            prefs = await store.get_by_id("preferences", user.id, user.id)
    return {"preferences": prefs.to_document()}


@router.put("/preferences")
async def update_preferences(
    body: PreferenceUpdate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    changes = body.changes()
    try:
        prefs = await store.update_by_id("preferences", user.id, user.id, changes)
    except NotFound:
        try:
            prefs = Preference(user_id=user.id, **body.model_dump(exclude_none=True))
            prefs = await store.create("preferences", prefs)
            return {"message": "Preferences created", "preferences": prefs.to_document()}
        except Conflict:
            # created by a concurrent request
            prefs = await store.update_by_id("preferences", user.id, user.id, changes)
    return {"message": "Preferences updated", "preferences": prefs.to_document()}


@router.get("/preferences/{key}")
async def get_preference(
    key: str,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    prefs = await store.get_by_id("preferences", user.id, user.id)
    value = prefs.lookup(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Preference key not found")
    return {"key": key, "value": value}


# ==========================================
# Application
# ==========================================

def _storage_error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc)})
    return handler


async def _bad_input_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if hasattr(exc, "errors") else []
    detail = "; ".join(str(e.get("msg")) for e in errors) or str(exc)
    return JSONResponse(status_code=400, content={"error": detail})


def create_app(settings: Settings | None = None, store: Store | None = None) -> FastAPI:
    """
    Build the application.

    The Store is selected once in the lifespan (unless one is passed in)
    and closed on shutdown. A selection failure in database mode aborts
    startup.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = store or await select_store(settings)
        app.state.store = active
        logger.info(f"Storage mode: {active.mode}")
        try:
            yield
        finally:
            await active.close()

    app = FastAPI(
        title="Assistant Memory API",
        description="Per-user memory: contexts, tasks, preferences and structured data",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for exc_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _storage_error_handler(status_code))
    app.add_exception_handler(RequestValidationError, _bad_input_handler)
    app.add_exception_handler(PydanticValidationError, _bad_input_handler)

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "storage": request.app.state.store.mode,
        }

    app.include_router(router)
    return app
