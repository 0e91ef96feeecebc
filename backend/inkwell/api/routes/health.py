"""Readiness probe covering the database the audit trail lives in."""

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    environment: str
    database: str = "ok"


@router.get(
    "/",
    summary="Readiness probe",
    response_model=HealthResponse,
)
def readiness_probe(request: Request) -> HealthResponse:
    """Report ``degraded`` when the database cannot answer a trivial query."""
    settings = request.app.state.settings
    database = "ok"
    try:
        with request.app.state.services.session_factory() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"❌ Database check failed: {e}")
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=settings.version,
        environment=settings.environment,
        database=database,
    )
