from contextlib import asynccontextmanager

import logfire

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from middleware.auth_gate import RequestGateMiddleware
from middleware.rate_limiting import CredentialThrottleMiddleware

from models.users import UserDocument

from routers import auth, data

from security.backends import build_backend
from schema.users import UserRecord
from security.credentials import CredentialValidator, hash_secret
from services.directory import UserDirectory, InMemoryUserDirectory, MongoUserDirectory
from utils.clock import Clock, utc_now
from utils.config import DirectoryBackend, Settings, load_settings
from utils.logger import configure_logging


def build_directory(settings: Settings) -> UserDirectory:
    """Directory named by `settings.directory_backend`."""
    if settings.directory_backend == DirectoryBackend.MONGO:
        return MongoUserDirectory(timeout_seconds=settings.directory_timeout_seconds)

    records = [
        UserRecord(username=username, display_name=display_name, secret_hash=hash_secret(password))
        for username, password, display_name in settings.parse_demo_users()
    ]
    return InMemoryUserDirectory(records, timeout_seconds=settings.directory_timeout_seconds)


def create_app(
    settings: Settings | None = None,
    directory: UserDirectory | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Assemble the application.

    Args:
        settings: Runtime settings, loaded from the environment when omitted.
        directory: User directory, built from settings when omitted.
        clock: Time source shared by every issuer and verifier.
    """
    settings = settings or load_settings()
    directory = directory or build_directory(settings)
    backend = build_backend(settings, directory, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logfire.info(f"Starting token gate in {settings.auth_mode.value} mode...")

        client = None
        if settings.directory_backend == DirectoryBackend.MONGO:
            client = AsyncIOMotorClient(
                settings.database_connection_string,
                serverSelectionTimeoutMS=int(settings.directory_timeout_seconds * 1000),
            )  # * Connect to MongoDB

            await init_beanie(
                database=client[settings.database_name],
                document_models=[UserDocument],
            )
            logfire.info("Database initialized successfully")

        yield

        logfire.info("Shutting down token gate...")
        if client is not None:
            client.close()
        logfire.info("Application shutdown complete")

    app = FastAPI(
        title="Token Gate",
        description="Username/password token issuance with stateful or encrypted stateless tokens.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.directory = directory
    app.state.auth_backend = backend
    app.state.credential_validator = CredentialValidator(directory)

    @app.exception_handler(RequestValidationError)
    async def malformed_body_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Malformed request body"},
        )

    # Last added runs first: proxy headers, throttle, then gate
    app.add_middleware(RequestGateMiddleware, backend=backend)
    app.add_middleware(
        CredentialThrottleMiddleware,
        requests_per_minute=settings.refresh_requests_per_minute,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxy_hosts)

    app.include_router(auth.router)
    app.include_router(data.router)

    return app


def get_app() -> FastAPI:
    """ASGI factory for `uvicorn main:get_app --factory`."""
    settings = load_settings()
    write_token = settings.logfire_write_token
    configure_logging(
        write_token.get_secret_value() if write_token else None,
        instrument_mongo=settings.directory_backend == DirectoryBackend.MONGO,
    )
    return create_app(settings)
