"""Request dependencies backed by the services on ``app.state``."""

from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from inkwell.agent.context_manager import ContextManager
from inkwell.agent.dispatcher import AgentDispatcher


def get_db(request: Request) -> Iterator[Session]:
    """Dependency that yields a database session."""
    db = request.app.state.services.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_dispatcher(request: Request) -> AgentDispatcher:
    return request.app.state.services.dispatcher


def get_context_manager(request: Request) -> ContextManager:
    return request.app.state.services.context_manager
