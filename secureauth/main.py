from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from secureauth.config import Settings, settings
from secureauth.database import Database
from secureauth.routers import auth, health, users
from secureauth.services.auth import AuthService, build_auth_service
from secureauth.services.cleanup import ExpirySweeper
from secureauth.services.errors import InternalError

LOGGER = logging.getLogger(__name__)


def create_app(
    app_settings: Settings = settings, auth_service: AuthService | None = None
) -> FastAPI:
    logging.basicConfig(level=app_settings.log_level)

    database = None
    if auth_service is None:
        if app_settings.store_backend == "database":
            database = Database(app_settings.database_url)
        auth_service = build_auth_service(app_settings, database)
    sweeper = ExpirySweeper(auth_service, app_settings.cleanup_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is not None:
            database.init_db()
        sweeper.start()
        try:
            yield
        finally:
            sweeper.stop()
            if database is not None:
                database.dispose()

    app = FastAPI(title="SecureAuth", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.auth_service = auth_service
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(auth.router, prefix="/api")
    app.include_router(users.router, prefix="/api")

    @app.exception_handler(InternalError)
    async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"code": exc.code, "message": str(exc)}},
        )

    @app.get("/")
    def root():
        return {"status": "Backend running"}

    return app


app = create_app()
