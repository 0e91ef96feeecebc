"""ASGI entry point: builds the Inkwell assistant API."""

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from inkwell.agent.generation import GenerationClient
from inkwell.api.router import api_router
from inkwell.core.settings import Settings, get_settings
from inkwell.db.init_db import init_db
from inkwell.services import build_services

# Loggers that stay at INFO regardless of the configured root level
AGENT_LOGGERS = (
    "inkwell.agent.dispatcher",
    "inkwell.agent.recorder",
    "inkwell.api.routes.assistants",
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.ERROR,
    "sqlalchemy.pool": logging.ERROR,
    "httpx": logging.WARNING,
    "anthropic": logging.WARNING,
}


def configure_logging(level: str) -> None:
    """Send application logs to stdout in the uvicorn-like format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(levelname)s:     %(name)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    for name in AGENT_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def create_application(
    settings: Settings | None = None,
    generation_client: GenerationClient | None = None,
    session_factory: sessionmaker | None = None,
) -> FastAPI:
    """Wire the agent services and mount the API under ``settings.api_prefix``."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(api_router, prefix=settings.api_prefix)

    services = build_services(settings, generation_client=generation_client, session_factory=session_factory)
    application.state.settings = settings
    application.state.services = services

    @application.on_event("startup")
    async def create_tables():
        init_db(bind=services.session_factory.kw.get("bind"))
        logging.getLogger(__name__).info(f"✅ {settings.project_name} {settings.version} ready ({settings.environment})")

    @application.on_event("shutdown")
    async def release_resources():
        services.close()

    return application


app = create_application()
