"""Chat consultant: conversation persistence around the LLM call."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from pathway.models import ChatConversation, ChatMessage
from pathway.services import gemini

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
TITLE_LENGTH = 60

SYSTEM_INSTRUCTION = (
    "You are an AI university consultant named Pathway AI. Your role is to help "
    "students find the right universities and programs and to guide them through "
    "the application process: choosing schools, understanding requirements, test "
    "preparation, essays, scholarships and financial aid. Be warm, concrete and "
    "concise, and ask a clarifying question when the student's goal is unclear."
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _title_from(message: str) -> str:
    title = " ".join(message.split())
    if len(title) > TITLE_LENGTH:
        title = title[: TITLE_LENGTH - 3].rstrip() + "..."
    return title


def get_conversation(db: Session, *, user_id: str, conversation_id: str) -> ChatConversation | None:
    return (
        db.query(ChatConversation)
        .filter(ChatConversation.id == conversation_id, ChatConversation.user_id == user_id)
        .one_or_none()
    )


def create_conversation(db: Session, *, user_id: str, title: str | None = None) -> ChatConversation:
    conversation = ChatConversation(user_id=user_id, title=title)
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def list_conversations(db: Session, *, user_id: str) -> list[ChatConversation]:
    return (
        db.query(ChatConversation)
        .filter(ChatConversation.user_id == user_id)
        .order_by(ChatConversation.updated_at.desc())
        .all()
    )


def load_history(db: Session, *, user_id: str, conversation_id: str) -> list[ChatMessage] | None:
    """Messages oldest first, ``None`` when the conversation is not the user's."""
    if get_conversation(db, user_id=user_id, conversation_id=conversation_id) is None:
        return None
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        .all()
    )


def delete_conversation(db: Session, *, user_id: str, conversation_id: str) -> bool:
    conversation = get_conversation(db, user_id=user_id, conversation_id=conversation_id)
    if conversation is None:
        return False
    db.delete(conversation)
    db.commit()
    return True


def to_history(messages: list[ChatMessage]) -> list[dict[str, str]]:
    return [
        {"role": "model" if msg.sender == "ai" else "user", "text": msg.content}
        for msg in messages[-HISTORY_LIMIT:]
    ]


def ask_consultant(
    message: str,
    history: list[dict[str, str]] | None = None,
    *,
    generate: Callable[..., str] | None = None,
) -> str:
    generate = generate or gemini.generate_content
    reply = generate(message, history=history, system_instruction=SYSTEM_INSTRUCTION)
    return reply.strip()


class ConversationNotFound(LookupError):
    pass


def send_message(
    db: Session,
    *,
    user_id: str,
    message: str,
    conversation_id: str | None = None,
    generate: Callable[..., str] | None = None,
) -> tuple[ChatConversation, ChatMessage]:
    """Store the user's message, ask the consultant and store the reply.

    The user message is committed before the LLM call so it survives an LLM
    failure; the caller sees the LLM exception.
    """
    if conversation_id:
        conversation = get_conversation(db, user_id=user_id, conversation_id=conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
    else:
        conversation = ChatConversation(user_id=user_id, title=_title_from(message))
        db.add(conversation)
        db.flush()
    if not conversation.title:
        conversation.title = _title_from(message)

    previous = (
        db.query(ChatMessage)
        .filter(ChatMessage.conversation_id == conversation.id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        .all()
    )
    db.add(ChatMessage(conversation_id=conversation.id, content=message, sender="user"))
    conversation.updated_at = _now()
    db.commit()

    reply_text = ask_consultant(message, to_history(previous), generate=generate)

    reply = ChatMessage(conversation_id=conversation.id, content=reply_text, sender="ai")
    db.add(reply)
    conversation.updated_at = _now()
    db.commit()
    db.refresh(reply)
    logger.info("consultant reply stored conversation=%s", conversation.id)
    return conversation, reply


__all__ = [
    "ConversationNotFound",
    "SYSTEM_INSTRUCTION",
    "ask_consultant",
    "create_conversation",
    "delete_conversation",
    "get_conversation",
    "list_conversations",
    "load_history",
    "send_message",
    "to_history",
]
