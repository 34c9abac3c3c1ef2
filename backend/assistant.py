# assistant.py — Solis AI: prompt assembly, Gemini generateContent call, conversation history
import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from document_store import DocumentStore, DocumentNotFound, Increment
from models import AIMode

logger = logging.getLogger("solis-center.ai")

# ============================================================
# CONFIGURATION
# ============================================================

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))

HISTORY_TURNS = 10
ASSISTANT_TURN_CLIP = 500

SYSTEM_BASE = (
    "You are Solis AI, the assistant for the Law Office of Manuel Solis (Solis Center). "
    "The firm mainly handles immigration cases; its teams are Marketing, Openers, Closers and Direccion.\n"
    "Always answer in the language the user writes in (Spanish or English). "
    "Use markdown. Legal topics are general information, not legal advice. "
    "Say clearly when you do not know something.\n"
)

MODE_PROMPTS = {
    AIMode.CHAT: SYSTEM_BASE + "MODE: Chat. Quick, conversational, concise but complete answers.",
    AIMode.RESEARCH: SYSTEM_BASE + (
        "MODE: Research. Start with an overview, organise findings by subtopic, "
        "cite sources conceptually and end with key takeaways."
    ),
    AIMode.DEEP: SYSTEM_BASE + (
        "MODE: Deep Search. Write a publication-quality report with an executive summary, "
        "detailed analysis, key findings, recommendations and a conclusion."
    ),
}

GENERATION_CONFIG = {
    AIMode.CHAT: {"temperature": 0.7, "topP": 0.9, "maxOutputTokens": 2048},
    AIMode.RESEARCH: {"temperature": 0.4, "topP": 0.95, "maxOutputTokens": 4096},
    AIMode.DEEP: {"temperature": 0.3, "topP": 0.95, "maxOutputTokens": 8192},
}


class AssistantError(Exception):
    """The language model could not produce an answer"""


def resolve_mode(mode: Optional[str]) -> AIMode:
    """Unknown or missing modes fall back to chat"""
    try:
        return AIMode(mode or AIMode.CHAT.value)
    except ValueError:
        return AIMode.CHAT


def build_prompt(question: str, mode: AIMode, history: Optional[List[Dict[str, Any]]] = None) -> str:
    prompt = MODE_PROMPTS[mode] + "\n\n"

    recent = (history or [])[-HISTORY_TURNS:]
    if recent:
        prompt += "--- CONVERSATION HISTORY ---\n"
        for turn in recent:
            content = str(turn.get("content") or "")
            if turn.get("role") == "user":
                prompt += f"USER: {content}\n"
            else:
                prompt += f"ASSISTANT: {content[:ASSISTANT_TURN_CLIP]}...\n"
        prompt += "--- END HISTORY ---\n\n"

    if mode == AIMode.RESEARCH:
        prompt += f"RESEARCH REQUEST: {question}\n\nPlease provide a thorough, well-structured research response:"
    elif mode == AIMode.DEEP:
        prompt += (
            f"DEEP RESEARCH REPORT REQUEST: {question}\n\n"
            "Generate a comprehensive, publication-quality research report following the structure specified above:"
        )
    else:
        prompt += f"USER: {question}"
    return prompt


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        reason = (data.get("promptFeedback") or {}).get("blockReason")
        raise AssistantError(f"Model returned no candidates{f' ({reason})' if reason else ''}")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts)


async def generate_content(prompt: str, mode: AIMode) -> str:
    """Single generateContent call against the Gemini REST API"""
    if not GEMINI_API_KEY:
        raise AssistantError("Gemini API key not configured. Add GEMINI_API_KEY to your .env file.")

    url = f"{GEMINI_API_BASE}/models/{GEMINI_MODEL}:generateContent"
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": GENERATION_CONFIG[mode],
    }
    try:
        async with httpx.AsyncClient(timeout=GEMINI_TIMEOUT_SECONDS) as client:
            resp = await client.post(url, params={"key": GEMINI_API_KEY}, json=payload)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as e:
        logger.warning(f"Gemini call failed ({GEMINI_MODEL}): HTTP {e.response.status_code}")
        raise AssistantError(f"AI provider returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.warning(f"Gemini call failed ({GEMINI_MODEL}): {e}")
        raise AssistantError("AI provider unreachable") from e
    return _extract_text(data)


async def answer_question(question: str, mode: Optional[str] = None,
                          history: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    resolved = resolve_mode(mode)
    answer = await generate_content(build_prompt(question, resolved, history), resolved)
    logger.info(f"AI answer: mode={resolved.value} chars={len(answer)}")
    # tokens is approximated by character count
    return {"answer": answer, "mode": resolved.value, "tokens": len(answer)}


# ============================================================
# CONVERSATIONS
# ============================================================

AI_CONVERSATIONS = "ai_conversations"
TITLE_LENGTH = 60
LAST_MESSAGE_LENGTH = 100
CONVERSATION_FIELDS = frozenset({"title", "starred", "archived", "mode"})


def auto_title(first_message: str) -> str:
    title = first_message[:TITLE_LENGTH].replace("\n", " ").strip()
    if len(first_message) > TITLE_LENGTH:
        title += "..."
    return title


class ConversationRepository:
    """Per-user assistant conversations and their message history"""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def messages_path(conversation_id: str) -> str:
        return f"{AI_CONVERSATIONS}/{conversation_id}/messages"

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        convo = await self.store.get(AI_CONVERSATIONS, conversation_id)
        if convo is None or convo.get("user_id") != user_id:
            raise DocumentNotFound(AI_CONVERSATIONS, conversation_id)
        return convo

    async def list_conversations(self, user_id: str, include_archived: bool = True) -> List[Dict[str, Any]]:
        """Starred first, then most recently updated"""
        convos = await self.store.query(AI_CONVERSATIONS, where={"user_id": user_id})
        if not include_archived:
            convos = [c for c in convos if not c.get("archived")]
        convos.sort(key=lambda c: c["updated_at"], reverse=True)
        convos.sort(key=lambda c: not c.get("starred"))
        return convos

    async def create_conversation(self, user_id: str, user_name: str, title: str = "",
                                  mode: Optional[str] = None) -> Dict[str, Any]:
        convo_id = await self.store.add(AI_CONVERSATIONS, {
            "user_id": user_id,
            "user_name": user_name,
            "title": title.strip() or "New conversation",
            "mode": resolve_mode(mode).value,
            "message_count": 0,
            "last_message": "",
            "starred": False,
            "archived": False,
        })
        return await self.store.get(AI_CONVERSATIONS, convo_id)

    async def update_conversation(self, conversation_id: str, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self.get_conversation(conversation_id, user_id)
        changes = {k: v for k, v in patch.items() if k in CONVERSATION_FIELDS and v is not None}
        if "title" in changes:
            changes["title"] = str(changes["title"]).strip()
            if not changes["title"]:
                raise HTTPException(status_code=400, detail="Title is required")
        if "mode" in changes:
            changes["mode"] = resolve_mode(changes["mode"]).value
        if not changes:
            return await self.get_conversation(conversation_id, user_id)
        return await self.store.update(AI_CONVERSATIONS, conversation_id, changes)

    async def delete_conversation(self, conversation_id: str, user_id: str) -> int:
        async with self.store.transaction():
            await self.get_conversation(conversation_id, user_id)
            removed = await self.store.delete_collection(self.messages_path(conversation_id))
            await self.store.delete(AI_CONVERSATIONS, conversation_id)
        return removed

    async def get_messages(self, conversation_id: str, user_id: str) -> List[Dict[str, Any]]:
        await self.get_conversation(conversation_id, user_id)
        return await self.store.query(self.messages_path(conversation_id))

    async def add_message(self, conversation_id: str, user_id: str, role: str, content: str,
                          mode: Optional[str] = None, tokens: int = 0) -> Dict[str, Any]:
        if role not in ("user", "assistant", "system"):
            raise HTTPException(status_code=400, detail=f"Invalid role: {role}")
        async with self.store.transaction():
            convo = await self.get_conversation(conversation_id, user_id)
            message_id = await self.store.add(self.messages_path(conversation_id), {
                "role": role,
                "content": content,
                "mode": resolve_mode(mode or convo.get("mode")).value,
                "tokens": tokens or 0,
            })
            patch: Dict[str, Any] = {
                "message_count": Increment(1),
                "last_message": content[:LAST_MESSAGE_LENGTH],
            }
            if role == "user" and not convo.get("message_count"):
                patch["title"] = auto_title(content)
            await self.store.update(AI_CONVERSATIONS, conversation_id, patch)
        return await self.store.get(self.messages_path(conversation_id), message_id)
