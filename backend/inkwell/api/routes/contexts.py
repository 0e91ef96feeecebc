"""Audit trail endpoints: contexts with their messages, tool calls and generations."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from inkwell.agent.context_manager import ContextManager, OwnerRef
from inkwell.api.deps import get_context_manager, get_db
from inkwell.models import AgentContext
from inkwell.schemas.context import (
    ContextDetailResponse,
    ContextListResponse,
    ContextResponse,
    UsageStatsResponse,
)

router = APIRouter(prefix="/contexts")


@router.get("", response_model=ContextListResponse)
def list_contexts(
    owner_type: str | None = None,
    owner_id: str | None = None,
    agent_name: str | None = None,
    page: int = Query(1, ge=1, description="Page number (1-indexed). Default: 1."),
    limit: int = Query(50, ge=1, le=200, description="Number of contexts per page. Default: 50. Max: 200."),
    db: Session = Depends(get_db),
) -> ContextListResponse:
    """List contexts, newest first, optionally filtered by owner and agent."""
    stmt = select(AgentContext)
    if owner_type:
        stmt = stmt.where(AgentContext.contextable_type == owner_type)
    if owner_id:
        stmt = stmt.where(AgentContext.contextable_id == owner_id)
    if agent_name:
        stmt = stmt.where(AgentContext.agent_name == agent_name)

    offset = (page - 1) * limit
    total_count = db.scalar(select(func.count()).select_from(stmt.subquery()))
    contexts = db.scalars(
        stmt.order_by(AgentContext.created_at.desc(), AgentContext.id.desc()).offset(offset).limit(limit)
    ).all()

    total_pages = (total_count + limit - 1) // limit if total_count > 0 else 1
    return ContextListResponse(
        count=len(contexts),
        total=total_count,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
        contexts=[ContextResponse.model_validate(context) for context in contexts],
    )


@router.get("/usage", response_model=UsageStatsResponse)
def usage_stats(
    owner_type: str,
    owner_id: str,
    manager: ContextManager = Depends(get_context_manager),
) -> UsageStatsResponse:
    """Token usage and outcome counts for everything an owner record triggered."""
    return UsageStatsResponse(**manager.usage_stats_for(OwnerRef(type=owner_type, id=owner_id)))


@router.get("/{context_id}", response_model=ContextDetailResponse)
def get_context(context_id: int, db: Session = Depends(get_db)) -> ContextDetailResponse:
    context = db.scalar(
        select(AgentContext)
        .where(AgentContext.id == context_id)
        .options(
            selectinload(AgentContext.messages),
            selectinload(AgentContext.tool_calls),
            selectinload(AgentContext.generations),
        )
    )
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Context {context_id} not found",
        )
    return ContextDetailResponse.model_validate(context)
