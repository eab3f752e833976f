from io import BytesIO

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from scout_api.api.deps import current_dataset_service, get_assistant_service, get_settings
from scout_api.core.config import Settings
from scout_api.db.schemas import ChatRequest, ChatResponse
from scout_api.db.session import get_db
from scout_api.services.assistant_service import QUICK_INSIGHTS, AssistantService, build_context_digest
from scout_api.services.export_service import transcript_export
from scout_api.services.storage import LocalStore

router = APIRouter()

CHAT_EXPORTS_NAMESPACE = "chat-exports"


def context_digest(cfg: Settings = Depends(get_settings)) -> str:
    """Digest of whatever dataset is already in memory; never triggers a load."""
    if not cfg.features.ai_insights:
        return ""
    svc = current_dataset_service()
    rows = svc.cached_transactions() if svc is not None else None
    return build_context_digest(rows, cfg.display.currency_symbol) if rows else ""


@router.post("/chat", response_model=ChatResponse)
def chat(
    payload: ChatRequest,
    assistant: AssistantService = Depends(get_assistant_service),
    context: str = Depends(context_digest),
) -> ChatResponse:
    sid, turn, failed = assistant.ask(payload.message, payload.session_id, context)
    return ChatResponse(
        session_id=sid,
        answer=turn.content,
        failed=failed,
        messages=[t.out() for t in assistant.messages(sid) or []],
    )


@router.get("/chat/suggestions")
def suggestions() -> dict:
    return {"suggestions": QUICK_INSIGHTS}


@router.get("/sessions")
def sessions(limit: int = 20, assistant: AssistantService = Depends(get_assistant_service)) -> dict:
    return {"sessions": assistant.sessions()[: max(1, limit)]}


@router.get("/sessions/{session_id}")
def session_messages(session_id: str, assistant: AssistantService = Depends(get_assistant_service)) -> dict:
    turns = assistant.messages(session_id)
    if turns is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session_id": session_id, "messages": [t.out().model_dump(mode="json") for t in turns]}


@router.delete("/sessions/{session_id}")
def reset_session(session_id: str, assistant: AssistantService = Depends(get_assistant_service)) -> dict:
    turns = assistant.reset(session_id)
    return {"session_id": session_id, "messages": [t.out().model_dump(mode="json") for t in turns]}


@router.get("/sessions/{session_id}/export")
def export_session(
    session_id: str,
    format: str = "json",
    assistant: AssistantService = Depends(get_assistant_service),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    turns = assistant.messages(session_id)
    if turns is None:
        raise HTTPException(status_code=404, detail="Session not found")
    rows = [t.out().model_dump(mode="json") for t in turns]
    try:
        body, media_type = transcript_export(rows, format)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    LocalStore(db, CHAT_EXPORTS_NAMESPACE).save_json(session_id, {"messages": rows}, stamp="createdAt")
    return StreamingResponse(
        BytesIO(body),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename=scout_chat_{session_id}.{format}"},
    )
