# routers/ai.py — Solis AI assistant proxy and per-user conversation history
import logging
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import assistant
from assistant import AssistantError, ConversationRepository
from auth import CurrentUser, require_permission
from document_store import DocumentStore, get_document_store

router = APIRouter(tags=["AI Assistant"])
logger = logging.getLogger("solis-center.ai")


# --- Request / Response Schemas ---

class ConversationCreate(BaseModel):
    title: str = ""
    mode: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = None
    starred: Optional[bool] = None
    archived: Optional[bool] = None
    mode: Optional[str] = None


class ConversationMessageCreate(BaseModel):
    role: str = Field(..., description="One of: user, assistant, system")
    content: str = Field(..., min_length=1)
    mode: Optional[str] = None
    tokens: int = 0


# --- Helpers ---

def _clean_history(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [turn for turn in raw if isinstance(turn, dict)]


# --- Assistant ---

@router.post("/api/ai")
async def ask_assistant(request: Request):
    """Stateless proxy: {question, mode?, history?} -> {answer, mode, tokens} or {error}"""
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    question = body.get("question")
    if not isinstance(question, str) or not question.strip():
        return JSONResponse(status_code=400, content={"error": "Question required"})

    try:
        return await assistant.answer_question(
            question,
            mode=body.get("mode") if isinstance(body.get("mode"), str) else None,
            history=_clean_history(body.get("history")),
        )
    except AssistantError as e:
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        logger.error(f"AI API error: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "AI processing failed. Verify your Gemini API key in .env"},
        )


# --- Conversations ---

@router.get("/api/v1/ai/conversations")
async def list_conversations(
    include_archived: bool = True,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    """Starred first, then most recently updated"""
    return await ConversationRepository(store).list_conversations(user.id, include_archived=include_archived)


@router.post("/api/v1/ai/conversations", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    return await ConversationRepository(store).create_conversation(
        user.id, user.display_name, title=body.title, mode=body.mode,
    )


@router.patch("/api/v1/ai/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    body: ConversationUpdate,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    return await ConversationRepository(store).update_conversation(
        conversation_id, user.id, body.model_dump(exclude_unset=True),
    )


@router.delete("/api/v1/ai/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    removed = await ConversationRepository(store).delete_conversation(conversation_id, user.id)
    return {"deleted": True, "conversation_id": conversation_id, "messages_removed": removed}


@router.get("/api/v1/ai/conversations/{conversation_id}/messages")
async def list_conversation_messages(
    conversation_id: str,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    return await ConversationRepository(store).get_messages(conversation_id, user.id)


@router.post("/api/v1/ai/conversations/{conversation_id}/messages", status_code=201)
async def add_conversation_message(
    conversation_id: str,
    body: ConversationMessageCreate,
    user: CurrentUser = Depends(require_permission("ai:generate")),
    store: DocumentStore = Depends(get_document_store),
):
    return await ConversationRepository(store).add_message(
        conversation_id, user.id, body.role, body.content, mode=body.mode, tokens=body.tokens,
    )
