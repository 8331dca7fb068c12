"""FastAPI application exposing registration, coffee list and label analysis endpoints."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analysis import analyze_coffee_image
from .auth import get_store
from .config import Settings, get_settings
from .database import CoffeeStore, open_store
from .errors import ServiceError
from .services import list_coffees, register_user, replace_coffees, validate_token
from .vision import VisionClient


logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

START_TIME = time.monotonic()

GENERAL_RATE_LIMIT_MESSAGE = "Too many requests, please try again later."
AI_RATE_LIMIT_MESSAGE = "AI analysis limit reached. Please try again in an hour."

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


class RateLimits:
    """Limit strings in effect for the process-wide limiter.

    :func:`create_app` copies them from its settings, so the most recently
    built application decides the limits.
    """

    general = "100/15minutes"
    ai = "10/hour"


def general_rate_limit() -> str:
    return RateLimits.general


def ai_rate_limit() -> str:
    return RateLimits.ai


# One bucket per caller shared by every route
general_limit = limiter.shared_limit(
    general_rate_limit, scope="general", error_message=GENERAL_RATE_LIMIT_MESSAGE
)
ai_limit = limiter.limit(ai_rate_limit, error_message=AI_RATE_LIMIT_MESSAGE)


def get_vision_client(request: Request) -> VisionClient:
    return request.app.state.vision


class APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(APIModel):
    status: str
    app: str
    timestamp: str
    uptime: float
    environment: str


class RegisterRequest(APIModel):
    """Request body for registering a tester."""

    username: Optional[str] = None


class RegisteredUser(APIModel):
    id: int
    username: str
    token: str


class RegisterResponse(APIModel):
    """New user with their bearer token and the slots left."""

    success: bool = True
    user: RegisteredUser
    spots_remaining: int = Field(..., alias="spotsRemaining")


class PublicUser(APIModel):
    id: int
    username: str
    created_at: str = Field(..., alias="createdAt")


class ValidateResponse(APIModel):
    success: bool = True
    valid: bool = True
    user: PublicUser


class CoffeeListResponse(APIModel):
    """Saved coffees, newest first, each with ``id`` and ``savedAt``."""

    success: bool = True
    coffees: List[Dict[str, Any]]


class SaveCoffeesRequest(APIModel):
    """Request body replacing the caller's coffee list."""

    token: Optional[str] = None
    coffees: Optional[List[Dict[str, Any]]] = None


class SaveCoffeesResponse(APIModel):
    success: bool = True
    saved: int


class AnalyzeRequest(APIModel):
    """Base64 photo of a coffee bag."""

    image_data: Optional[str] = Field(None, alias="imageData")
    media_type: Optional[str] = Field(None, alias="mediaType")


class CoffeeLabel(APIModel):
    name: str
    origin: str
    process: str
    cultivar: str
    altitude: str
    roaster: str
    tasting_notes: str = Field(..., alias="tastingNotes")
    added_date: str = Field(..., alias="addedDate")


class AnalyzeResponse(APIModel):
    success: bool = True
    data: CoffeeLabel


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
@general_limit
def health(request: Request):
    """Report liveness, uptime and the deployment environment."""

    return HealthResponse(
        status="ok",
        app="brewbuddy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - START_TIME, 3),
        environment=request.app.state.settings.environment,
    )


@router.post("/auth/register", response_model=RegisterResponse)
@general_limit
def register(
    request: Request,
    payload: RegisterRequest,
    store: CoffeeStore = Depends(get_store),
):
    """Register a tester while registration slots remain."""

    result = register_user(
        store, payload.username, request.app.state.settings.max_users
    )
    return RegisterResponse(
        user=RegisteredUser(**result["user"]),
        spots_remaining=result["spots_remaining"],
    )


@router.get("/auth/validate", response_model=ValidateResponse)
@general_limit
def validate(
    request: Request,
    token: Optional[str] = Query(None),
    store: CoffeeStore = Depends(get_store),
):
    """Resolve a token to its user."""

    return ValidateResponse(user=PublicUser(**validate_token(store, token)))


@router.get("/coffees", response_model=CoffeeListResponse)
@general_limit
def get_coffees(
    request: Request,
    token: Optional[str] = Query(None),
    store: CoffeeStore = Depends(get_store),
):
    """Return every coffee saved by the token's owner."""

    return CoffeeListResponse(coffees=list_coffees(store, token))


@router.post("/coffees", response_model=SaveCoffeesResponse)
@general_limit
def save_coffees(
    request: Request,
    payload: SaveCoffeesRequest,
    store: CoffeeStore = Depends(get_store),
):
    """Replace the token owner's coffee list with the submitted one."""

    saved = replace_coffees(store, payload.token, payload.coffees)
    return SaveCoffeesResponse(saved=saved)


@router.post("/analyze-coffee", response_model=AnalyzeResponse)
@general_limit
@ai_limit
def analyze_coffee(
    request: Request,
    payload: AnalyzeRequest,
    client: VisionClient = Depends(get_vision_client),
):
    """Read a coffee bag photo with the vision model."""

    label = analyze_coffee_image(client, payload.image_data, payload.media_type)
    return AnalyzeResponse(data=CoffeeLabel(**label))


async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )


async def reject_foreign_origins(request: Request, call_next):
    """Refuse browser requests from origins outside the allow-list.

    Requests without an ``Origin`` header come from non-browser callers and
    are always served.
    """
    origin = request.headers.get("origin")
    if origin and origin not in request.app.state.settings.cors_origins:
        logger.warning("CORS blocked request from: %s", origin)
        return JSONResponse(
            status_code=403,
            content={"success": False, "error": "Origin not allowed"},
        )
    return await call_next(request)


async def limit_body_size(request: Request, call_next):
    """Reject bodies larger than ``max_body_bytes`` before they are read."""
    length = request.headers.get("content-length")
    limit = request.app.state.settings.max_body_bytes
    if length and length.isdigit() and int(length) > limit:
        return JSONResponse(
            status_code=413,
            content={"success": False, "error": "Request body too large"},
        )
    return await call_next(request)


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": message},
        headers=getattr(exc, "headers", None),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        "rate limit exceeded %s %s: %s", request.method, request.url.path, exc.detail
    )
    return JSONResponse(
        status_code=429, content={"success": False, "error": exc.detail}
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("invalid request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400, content={"success": False, "error": "Invalid request body"}
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500, content={"success": False, "error": "Server error"}
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("server error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500, content={"success": False, "error": "Internal server error"}
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store for the lifetime of the application.

    A store that cannot be reached aborts startup.
    """
    settings: Settings = app.state.settings
    app.state.store = open_store(settings)
    app.state.vision = VisionClient.from_settings(settings)
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set, coffee analysis will fail")
    logger.info(
        "BrewBuddy API ready environment=%s cors=%s",
        settings.environment,
        ", ".join(settings.cors_origins),
    )
    try:
        yield
    finally:
        app.state.store.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.api_title, lifespan=lifespan)
    app.state.settings = settings
    app.state.limiter = limiter
    RateLimits.general = settings.general_rate_limit
    RateLimits.ai = settings.ai_rate_limit

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Added innermost first: CORS wraps logging, the size guard and the origin check
    app.middleware("http")(reject_foreign_origins)
    app.middleware("http")(limit_body_size)
    app.middleware("http")(log_requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(router, prefix="/api")
    return app


app = create_app()
