"""Database initialization utilities."""

import logging

from sqlalchemy.engine import Engine

from inkwell.db.base import Base, engine
from inkwell.models import AgentContext, AgentGeneration, AgentMessage, AgentToolCall  # noqa: F401 - ensures models are registered

logger = logging.getLogger(__name__)


def init_db(bind: Engine | None = None) -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ Database tables created successfully")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
