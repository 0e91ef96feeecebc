"""Root API router for the application."""

from fastapi import APIRouter

from inkwell.api.routes import assistants, contexts, health, streams

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(assistants.router, tags=["assistants"])
api_router.include_router(contexts.router, tags=["contexts"])
api_router.include_router(streams.router, tags=["streams"])
