"""
REST endpoints.  Each one is a thin wrapper around the parser, the
``WorkbookEditor`` and the ``AssistantBridge``.

    GET  /api/health                          liveness
    POST /api/chat                            stateless assistant call
    POST /api/workbooks                       upload -> new session
    GET  /api/workbooks/{id}                  current snapshot
    PUT  /api/workbooks/{id}/active-sheet     switch sheet
    POST /api/workbooks/{id}/cells            user edit of one cell
    POST /api/workbooks/{id}/changes          apply a change list
    POST /api/workbooks/{id}/chat             assistant call + apply changes
    GET  /api/workbooks/{id}/export           .xlsx download
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import Response

from api.models import (
    ActiveSheetRequest,
    CellEditRequest,
    CellEditResponse,
    ChangesRequest,
    ChangesResponse,
    HealthResponse,
    SessionChatRequest,
    SessionChatResponse,
    WorkbookSessionResponse,
)
from dto.chat import ChatRequest, ChatResponse
from errors import ProviderNotConfiguredError
from grid.editor import WorkbookEditor
from parser import parse_workbook, validate_upload
from utils.references import normalise_cell

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _state():
    from api.server import state
    return state


def _editor(session_id: str) -> WorkbookEditor:
    editor = _state().get_session(session_id)
    if editor is None:
        raise HTTPException(status_code=404, detail=f"Unknown workbook session: {session_id}")
    return editor


def _run_chat(request: ChatRequest) -> ChatResponse:
    try:
        return _state().bridge.chat(request)
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except Exception as exc:
        logger.error("  [API] Chat failed", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Chat error: {exc}")


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())


@router.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest):
    """Run the assistant on a client-held workbook snapshot; nothing is stored."""
    return _run_chat(req)


# -------------------------------------------------------------------
# Workbook sessions
# -------------------------------------------------------------------

@router.post("/workbooks", response_model=WorkbookSessionResponse)
def upload_workbook(file: UploadFile = File(...)):
    raw = file.file.read()
    file_name = file.filename or "workbook.xlsx"
    try:
        validate_upload(file_name, len(raw))
        workbook = parse_workbook(raw, file_name=file_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    editor = WorkbookEditor(workbook, original=raw)
    session_id = _state().open_session(editor)
    logger.info("  [API] Opened session %s for %s", session_id, file_name)
    return WorkbookSessionResponse(session_id=session_id, workbook=editor.snapshot())


@router.get("/workbooks/{session_id}", response_model=WorkbookSessionResponse)
def get_workbook(session_id: str):
    editor = _editor(session_id)
    with editor.lock:
        return WorkbookSessionResponse(session_id=session_id, workbook=editor.snapshot())


@router.put("/workbooks/{session_id}/active-sheet", response_model=WorkbookSessionResponse)
def set_active_sheet(session_id: str, req: ActiveSheetRequest):
    editor = _editor(session_id)
    with editor.lock:
        try:
            editor.activate_sheet(req.index)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return WorkbookSessionResponse(session_id=session_id, workbook=editor.snapshot())


@router.post("/workbooks/{session_id}/cells", response_model=CellEditResponse)
def edit_cell(session_id: str, req: CellEditRequest):
    editor = _editor(session_id)
    with editor.lock:
        try:
            cell = normalise_cell(req.cell)
            value = editor.edit_cell(cell, req.value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return CellEditResponse(cell=cell, value=value, formula=editor.grid.get_formulas().get(cell))


@router.post("/workbooks/{session_id}/changes", response_model=ChangesResponse)
def apply_changes(session_id: str, req: ChangesRequest):
    editor = _editor(session_id)
    with editor.lock:
        report = editor.apply_changes(req.changes)
        return ChangesResponse(report=report, workbook=editor.snapshot())


@router.post("/workbooks/{session_id}/chat", response_model=SessionChatResponse)
def chat_on_workbook(session_id: str, req: SessionChatRequest):
    """Run the assistant on the session's workbook and apply what it changed."""
    editor = _editor(session_id)
    with editor.lock:
        snapshot = editor.snapshot()
    # The model call is slow; other requests may use the session meanwhile.
    result = _run_chat(
        ChatRequest(
            message=req.message,
            spreadsheet_data=snapshot,
            conversation_history=req.conversation_history,
        )
    )
    with editor.lock:
        report = editor.apply_changes(result.changes)
        workbook = editor.snapshot()
    return SessionChatResponse(
        message=result.message,
        tool_calls=result.tool_calls,
        changes=result.changes,
        conversation_history=result.conversation_history,
        report=report,
        workbook=workbook,
    )


@router.get("/workbooks/{session_id}/export")
def export_workbook(session_id: str, fresh: bool = False):
    editor = _editor(session_id)
    with editor.lock:
        content = editor.export(fresh=fresh)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{editor.export_file_name}"'},
    )
