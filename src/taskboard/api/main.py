import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import hash_password
from .repositories import get_repository
from .routers import export as export_router
from .routers import notes as notes_router
from .routers import todos as todos_router
from .routers import users as users_router
from .services import DEMO_PASSWORD, seed_demo_data
from .settings import get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "CRUD operations for Todo items with tags, mentions, filtering, sorting, and pagination.",
    },
    {"name": "notes", "description": "Immutable notes attached to todos."},
    {"name": "users", "description": "Sign-up, the user directory and @mention resolution."},
    {"name": "export", "description": "JSON and CSV export of a user's todos."},
]

_settings = get_settings()


def configure_logging(level: str) -> None:
    """Attach a stream handler to the 'taskboard' logger hierarchy once."""
    root = logging.getLogger("taskboard")
    root.setLevel(getattr(logging, level, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)


configure_logging(_settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _settings.seed_demo_data:
        seed_demo_data(get_repository(), hash_password(DEMO_PASSWORD))
    yield


app = FastAPI(
    title="Taskboard",
    description="Todo service with tags, notes, @mentions and export, backed by pluggable storage.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    logger.debug("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # model validators put the raw exception under ctx, which is not JSON serializable
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers
app.include_router(users_router.router)
app.include_router(todos_router.router)
app.include_router(notes_router.router)
app.include_router(export_router.router)
