"""Signage CMS API - Main application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest

from .config import Settings, settings as default_settings
from .models import (
    ConfirmDeviceRequest,
    ContentCreate,
    ContentResponse,
    DeviceResponse,
    ErrorResponse,
    GenerateCodeRequest,
    LoginRequest,
    MessageResponse,
    PlaylistCreate,
    PlaylistResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    SignupRequest,
)
from . import pairing
from .profile import get_or_create_profile, update_profile
from common.auth.keycloak import AuthError, Identity, KeycloakConfig, KeycloakDirectory
from common.auth.session import Unauthenticated, get_directory, optional_identity, require_identity
from common.database.mongodb import MongoRecordStore, NotFoundError, StoreError
from common.health.checks import health_check, readiness_check, liveness_check

# Configure logging
logging.basicConfig(
    level=logging.INFO if not default_settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

router = APIRouter()


def get_store(request: Request) -> MongoRecordStore:
    """Record store client created at startup."""
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    app_settings: Settings = app.state.settings
    logger.info(f"Starting {app_settings.app_name} v{app_settings.app_version}")

    if app.state.directory is None:
        app.state.directory = KeycloakDirectory(
            KeycloakConfig(
                server_url=app_settings.keycloak_server_url,
                realm=app_settings.keycloak_realm,
                client_id=app_settings.keycloak_client_id,
                client_secret=app_settings.keycloak_client_secret,
            ),
            timeout=app_settings.keycloak_timeout_seconds,
        )

    owns_store = app.state.store is None
    if owns_store:
        app.state.store = MongoRecordStore(
            mongo_uri=app_settings.mongodb_uri,
            database_name=app_settings.mongodb_database
        )
        await app.state.store.connect()

    logger.info(f"{app_settings.app_name} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {app_settings.app_name}")
    if owns_store:
        await app.state.store.close()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    # API callers get a status code, browsers get the login page
    if request.url.path.startswith("/api/"):
        return _error(status.HTTP_401_UNAUTHORIZED, exc.message)
    return RedirectResponse(url="/login", status_code=status.HTTP_302_FOUND)


async def auth_error_handler(request: Request, exc: AuthError):
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc.message)


async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc.message}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message)


async def pairing_rejected_handler(request: Request, exc: pairing.PairingRejected):
    return _error(status.HTTP_403_FORBIDDEN, exc.message)


async def pairing_expired_handler(request: Request, exc: pairing.PairingExpired):
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:])
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])
    return _error(status.HTTP_400_BAD_REQUEST, "; ".join(messages) or "Invalid request")


# Custom middleware to handle OPTIONS requests
class CORSPreflightMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, origins: List[str]):
        super().__init__(app)
        self.origins = origins

    async def dispatch(self, request: StarletteRequest, call_next):
        if request.method == "OPTIONS":
            origin = request.headers.get("origin", "")
            if origin in self.origins:
                return JSONResponse(
                    content={},
                    status_code=200,
                    headers={
                        "Access-Control-Allow-Origin": origin,
                        "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
                        "Access-Control-Allow-Headers": "Content-Type, Accept",
                        "Access-Control-Allow-Credentials": "true",
                        "Access-Control-Max-Age": "3600",
                    }
                )
        response = await call_next(request)
        return response


def create_app(
    settings: Optional[Settings] = None,
    directory: Optional[KeycloakDirectory] = None,
    store: Optional[MongoRecordStore] = None,
) -> FastAPI:
    """
    Build the application.

    Clients passed in are used as-is; missing ones are created from
    ``settings`` when the app starts.
    """
    settings = settings or default_settings

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Content management API for paired display devices",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.session_cookie_name = settings.session_cookie_name
    app.state.directory = directory
    app.state.store = store

    app.add_exception_handler(Unauthenticated, unauthenticated_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(pairing.PairingRejected, pairing_rejected_handler)
    app.add_exception_handler(pairing.PairingExpired, pairing_expired_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Configure CORS
    cors_origins = [origin.strip() for origin in settings.cors_origins.split(',')]
    logger.info(f"CORS origins configured: {cors_origins}")

    app.add_middleware(CORSPreflightMiddleware, origins=cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
        max_age=3600,
    )

    app.include_router(router)
    return app


# Health check endpoints
@router.get("/health", include_in_schema=False)
async def health(app_settings: Settings = Depends(get_settings)):
    """Health check endpoint."""
    return await health_check(service_name=app_settings.app_name)


@router.get("/ready", include_in_schema=False)
async def ready(store: MongoRecordStore = Depends(get_store)):
    """Readiness check endpoint."""
    return await readiness_check(store)


@router.get("/live", include_in_schema=False)
async def live():
    """Liveness check endpoint."""
    return await liveness_check()


# Pages
@router.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/dashboard", status_code=status.HTTP_302_FOUND)


@router.get("/login", include_in_schema=False)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html")


@router.get("/signup", include_in_schema=False)
async def signup_page(request: Request):
    return templates.TemplateResponse(request, "signup.html")


@router.get("/logout", include_in_schema=False)
async def logout(app_settings: Settings = Depends(get_settings)):
    response = RedirectResponse(url="/login", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(app_settings.session_cookie_name)
    return response


@router.get("/dashboard", include_in_schema=False)
async def dashboard(
    request: Request,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    """List the caller's devices."""
    devices = await store.select("devices", owner_id=identity.id)
    logger.debug(f"Dashboard for user {identity.id}: {len(devices)} devices")
    return templates.TemplateResponse(request, "dashboard.html", {"user": identity, "devices": devices})


@router.get("/content", include_in_schema=False)
async def content_page(
    request: Request,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    content = await store.select("content", owner_id=identity.id)
    return templates.TemplateResponse(request, "content.html", {"user": identity, "content": content})


@router.get("/playlist/{device_id}", include_in_schema=False)
async def playlist_page(
    request: Request,
    device_id: str,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    """Show a device's playlist and the content that can be added to it."""
    device = await store.select_one("devices", device_id=device_id, owner_id=identity.id)
    entries = await store.select("playlists", device_id=device_id)
    entries.sort(key=lambda entry: (entry.get("order") is None, entry.get("order") or 0))
    content = await store.select("content", owner_id=identity.id)
    return templates.TemplateResponse(
        request,
        "playlist.html",
        {"user": identity, "device": device, "entries": entries, "content": content}
    )


@router.get("/profile", include_in_schema=False)
async def profile_page(
    request: Request,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    profile = await get_or_create_profile(store, identity)
    return templates.TemplateResponse(request, "profile.html", {"user": identity, "profile": profile})


# Authentication
@router.post(
    "/signup",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Create an account",
    tags=["Auth"]
)
async def signup(
    body: SignupRequest,
    directory: KeycloakDirectory = Depends(get_directory),
    store: MongoRecordStore = Depends(get_store)
) -> MessageResponse:
    """Create the user in Keycloak and its profile row."""
    identity = await directory.sign_up(
        body.email,
        body.password,
        {"full_name": body.full_name or "", "avatar_url": body.avatar_url or ""}
    )
    await store.insert("users", {
        "id": identity.id,
        "email": identity.email,
        "full_name": identity.full_name,
        "avatar_url": identity.avatar_url,
    })
    logger.info(f"Signup complete: user={identity.id}")
    return MessageResponse(message="Signup successful, please login.")


@router.post(
    "/login",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Log in and receive a session cookie",
    tags=["Auth"]
)
async def login(
    body: LoginRequest,
    directory: KeycloakDirectory = Depends(get_directory),
    app_settings: Settings = Depends(get_settings)
):
    session = await directory.verify_credentials(body.email, body.password)

    response = JSONResponse(status_code=status.HTTP_200_OK, content={"message": "Login successful"})
    response.set_cookie(
        key=app_settings.session_cookie_name,
        value=session.access_token,
        max_age=app_settings.session_max_age_seconds,
        httponly=True,
        secure=app_settings.cookie_secure,
        samesite="lax"
    )
    logger.info("Login successful")
    return response


# Devices
@router.post(
    "/api/generate-code",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Create a pending device with a pairing code",
    tags=["Device"]
)
async def generate_code(
    body: Optional[GenerateCodeRequest] = None,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store),
    app_settings: Settings = Depends(get_settings)
):
    """
    Issue an 8 character pairing code for a new device.

    The device starts out pending until it is confirmed.
    """
    device_name = body.device_name if body else None
    return await pairing.generate(store, identity, device_name, default_name=app_settings.default_device_name)


@router.post(
    "/api/confirm-device",
    response_model=DeviceResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Activate a pending device",
    tags=["Device"]
)
async def confirm_device(
    body: ConfirmDeviceRequest,
    identity: Optional[Identity] = Depends(optional_identity),
    store: MongoRecordStore = Depends(get_store),
    app_settings: Settings = Depends(get_settings)
):
    """
    Activate a device.

    Requires the device's pairing code, or a session belonging to the
    device owner when only the device id is sent.
    """
    return await pairing.confirm(
        store,
        device_id=body.device_id,
        unique_code=body.unique_code,
        identity=identity,
        ttl_seconds=app_settings.pairing_code_ttl_seconds,
    )


# Content
@router.post(
    "/api/content",
    response_model=ContentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store content metadata",
    tags=["Content"]
)
async def create_content(
    body: ContentCreate,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    # Upload itself happens elsewhere; only metadata is kept here
    return await store.insert("content", {
        "owner_id": identity.id,
        "file_url": body.file_url,
        "content_type": body.content_type,
    })


# Profile
@router.get("/api/user/profile", response_model=ProfileResponse, tags=["Profile"])
async def get_profile(
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    return await get_or_create_profile(store, identity)


@router.put("/api/user/profile", response_model=ProfileResponse, tags=["Profile"])
async def put_profile(
    body: ProfileUpdateRequest,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store),
    directory: KeycloakDirectory = Depends(get_directory)
):
    """Update name and avatar; omitted fields keep their current value."""
    result = await update_profile(store, directory, identity, body.full_name, body.avatar_url)
    return result.row


# Playlists
@router.post(
    "/api/playlist",
    response_model=PlaylistResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add content to a device playlist",
    tags=["Playlist"]
)
async def create_playlist_entry(
    body: PlaylistCreate,
    identity: Identity = Depends(require_identity),
    store: MongoRecordStore = Depends(get_store)
):
    entry = await store.insert("playlists", body.model_dump())
    logger.info(f"Playlist entry created: device={body.device_id}, content={body.content_id}, by={identity.id}")
    return entry


app = create_app()
