"""Assistant action endpoints: streaming, legacy synchronous actions and file analysis."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse

from inkwell.agent.dispatcher import ActionOutcome, AgentDispatcher, new_stream_id
from inkwell.agent.registry import AgentKind
from inkwell.api.deps import get_dispatcher
from inkwell.core.errors import InvalidParametersError
from inkwell.schemas.assistant import ErrorResponse, ResearchRequest, StreamRequest, StreamResponse, WritingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistants")

# Response key carrying the generated text, per writing action
WRITING_RESULT_KEYS = {
    "improve": "improved_content",
    "grammar": "corrected_content",
    "style": "styled_content",
    "summarize": "summary",
    "expand": "expanded_content",
    "brainstorm": "ideas",
}

ERROR_RESPONSES = {
    422: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}

SESSION_OWNER_REQUIRED = "A session requires contextable_type and contextable_id"


def _error(message: str, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _failure(outcome: ActionOutcome) -> JSONResponse:
    return _error(outcome.error or "Agent action failed", outcome.status_code)


def _start_stream(
    dispatcher: AgentDispatcher,
    background_tasks: BackgroundTasks,
    kind: AgentKind,
    action: str,
    params: dict[str, Any],
    contextable: Any,
    session: bool = False,
) -> StreamResponse | JSONResponse:
    if session and contextable is None:
        return _error(SESSION_OWNER_REQUIRED)
    try:
        dispatcher.prepare(kind, action, params)
    except InvalidParametersError as e:
        logger.warning(f"[Streaming] Rejected {kind.value}.{action}: {e.message}")
        return _error(e.message)

    stream_id = new_stream_id(kind)
    logger.info(f"[Streaming] Action: {action}, stream_id: {stream_id}")
    background_tasks.add_task(
        dispatcher.dispatch, kind, action, params, stream_id=stream_id, contextable=contextable, session=session
    )
    return StreamResponse(stream_id=stream_id)


@router.post("/stream", response_model=StreamResponse, responses=ERROR_RESPONSES)
def stream_action(
    body: StreamRequest,
    background_tasks: BackgroundTasks,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
):
    """Start an action in the background and return the stream id to subscribe to."""
    kind = AgentKind.RESEARCH_ASSISTANT if body.action_type == "research" else AgentKind.WRITING_ASSISTANT
    return _start_stream(
        dispatcher, background_tasks, kind, body.action_type, body.params(), body.owner(), session=body.session
    )


@router.post("/research", response_model=StreamResponse, responses=ERROR_RESPONSES)
def research(
    body: ResearchRequest,
    background_tasks: BackgroundTasks,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
):
    return _start_stream(
        dispatcher,
        background_tasks,
        AgentKind.RESEARCH_ASSISTANT,
        "research",
        body.params(),
        body.owner(),
        session=body.session,
    )


@router.post("/writing/{action}", responses=ERROR_RESPONSES)
def writing_action(
    action: str,
    body: WritingRequest,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
):
    """Run a writing action synchronously and return its result."""
    if action not in WRITING_RESULT_KEYS:
        return _error(f"Unknown action: {action}")
    if body.session and body.owner() is None:
        return _error(SESSION_OWNER_REQUIRED)

    params = body.params()
    try:
        dispatcher.prepare(AgentKind.WRITING_ASSISTANT, action, params)
    except InvalidParametersError as e:
        return _error(e.message)

    outcome = dispatcher.dispatch(
        AgentKind.WRITING_ASSISTANT, action, params, contextable=body.owner(), session=body.session
    )
    if not outcome.ok:
        return _failure(outcome)
    return {WRITING_RESULT_KEYS[action]: outcome.content, "status": "success", "context_id": outcome.context_id}


def _save_upload(upload: UploadFile) -> str:
    """Copy an upload to a temporary file that keeps the original extension."""
    suffix = Path(upload.filename or "").suffix
    with tempfile.NamedTemporaryFile(prefix="upload_", suffix=suffix, delete=False) as handle:
        handle.write(upload.file.read())
        return handle.name


def _run_on_upload(
    dispatcher: AgentDispatcher,
    upload: UploadFile,
    action: str,
    params: dict[str, Any],
) -> ActionOutcome | JSONResponse:
    temp_path = _save_upload(upload)
    try:
        params = {**params, "file_path": temp_path}
        try:
            dispatcher.prepare(AgentKind.FILE_ANALYZER, action, params)
        except InvalidParametersError as e:
            return _error(e.message)
        return dispatcher.dispatch(AgentKind.FILE_ANALYZER, action, params)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


@router.post("/image/caption", responses=ERROR_RESPONSES)
def image_caption(
    file: UploadFile | None = File(None),
    detail_level: str = Form("medium"),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
):
    """Generate a caption for an uploaded image."""
    if file is None or not (file.content_type or "").startswith("image/"):
        return _error("Please provide an image file")

    result = _run_on_upload(
        dispatcher,
        file,
        "analyze_image",
        {"description_detail": detail_level, "media_type": file.content_type},
    )
    if isinstance(result, JSONResponse):
        return result
    if not result.ok:
        return _failure(result)
    return {"caption": result.content, "filename": file.filename, "status": "success", "context_id": result.context_id}


@router.post("/analyze_file", responses=ERROR_RESPONSES)
def analyze_file(
    file: UploadFile = File(...),
    analysis_type: str = Form("general"),
    detail_level: str = Form("medium"),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
):
    """Analyze an uploaded image or text document."""
    content_type = file.content_type or "application/octet-stream"
    if "pdf" in content_type:
        return _error("PDF analysis is not supported; upload the document as text")

    if content_type.startswith("image/"):
        action = "analyze_image"
        params: dict[str, Any] = {"description_detail": detail_level, "media_type": content_type}
    elif analysis_type == "summary":
        action, params = "summarize_document", {}
    else:
        action, params = "extract_text", {}

    result = _run_on_upload(dispatcher, file, action, params)
    if isinstance(result, JSONResponse):
        return result
    if not result.ok:
        return _failure(result)
    return {"analysis": result.content, "file_type": content_type, "status": "success", "context_id": result.context_id}
