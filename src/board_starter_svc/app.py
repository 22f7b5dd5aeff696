import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware

from board_starter_svc.auth.middleware import AuthSessionMiddleware
from board_starter_svc.auth.providers import enabled_providers
from board_starter_svc.auth.service import build_auth_service_factory
from board_starter_svc.auth.sessions import SessionStrategy, build_session_strategy
from board_starter_svc.config import (DatabaseOption, RestfulOption, Settings, SwaggerOption,
                                      get_settings)
from board_starter_svc.exceptions import register_exception_handlers
from board_starter_svc.models.base import build_engine, build_session_factory
from board_starter_svc.models.seed import initialize
from board_starter_svc.notifications import EmailSender, build_email_sender
from board_starter_svc.routers.account import logout as account_logout
from board_starter_svc.routers.account import router as account_router
from board_starter_svc.routers.boards import router as boards_router
from board_starter_svc.routers.external_login import router as external_login_router

OPENAPI_URL = "/swagger/v1/swagger.json"
DOCS_URL = "/swagger"


def create_app(settings: Optional[Settings] = None, email_sender: Optional[EmailSender] = None,
               session_strategy: Optional[SessionStrategy] = None) -> FastAPI:
    """
    Compose the service from settings resolved once at startup.

    Each option picks one collaborator here: the session strategy and matching
    Auth Service, the database engine, CORS and API documentation. Nothing is
    re-decided per request.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings)
        app.state.session_factory = build_session_factory(engine)
        if engine is not None:
            recreate = settings.database_recreate and settings.database in (
                DatabaseOption.MEMORY, DatabaseOption.SQLITE)
            initialize(engine, app.state.session_factory, recreate, settings.seed_sample_data)
        logging.info("Starting with session=%s database=%s restful=%s swagger=%s providers=%s",
                     settings.session.value, settings.database.value, settings.restful.value,
                     settings.swagger.value, ",".join(app.state.external_providers) or "none")
        try:
            yield
        finally:
            if engine is not None:
                engine.dispose()

    app = FastAPI(
        title=settings.swagger_title,
        version=settings.swagger_version,
        description=settings.swagger_description,
        debug=not settings.is_production(),
        openapi_url=None if settings.swagger == SwaggerOption.NONE else OPENAPI_URL,
        docs_url=DOCS_URL if settings.swagger == SwaggerOption.UI else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    strategy = session_strategy or build_session_strategy(settings)
    app.state.settings = settings
    app.state.session_factory = None
    app.state.session_strategy = strategy
    app.state.external_providers = enabled_providers(settings)
    app.state.auth_service_factory = build_auth_service_factory(
        settings, email_sender or build_email_sender(settings))

    app.add_middleware(AuthSessionMiddleware, strategy=strategy)
    if settings.restful == RestfulOption.CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    if settings.is_production():
        app.add_middleware(HTTPSRedirectMiddleware)

    register_exception_handlers(app)

    app.include_router(account_router)
    app.add_api_route(settings.logout_path, account_logout, methods=["GET"], tags=["account"])
    app.include_router(external_login_router)
    if settings.database != DatabaseOption.NONE:
        app.include_router(boards_router)

    @app.get("/", include_in_schema=False)
    async def home():
        return {"name": settings.swagger_title, "version": settings.swagger_version}

    return app


app = create_app()
