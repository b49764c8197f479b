from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from pathway import db as db_module
from pathway.controllers.limits import UsageResponse, limit_reached_response, usage_response
from pathway.dependencies import ErrorResponse, Identity, rate_limit, require_user
from pathway.models import ErrorCode
from pathway.services import consultant as consultant_service
from pathway.services.consultant import ConversationNotFound
from pathway.services.events import track_event_sync
from pathway.services.usage_limits import Feature, check_and_update_limits

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consultant", tags=["consultant"])


class HistoryItem(BaseModel):
    sender: str = Field(..., pattern="^(user|ai)$")
    content: str = Field(..., max_length=8000)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    conversation_id: str | None = None
    # Anonymous callers keep their own history client-side.
    history: list[HistoryItem] = Field(default_factory=list, max_length=40)


class ChatMessageResponse(BaseModel):
    id: str | None = None
    content: str
    sender: str
    created_at: datetime | None = None


class ChatResponse(BaseModel):
    conversation_id: str | None = None
    title: str | None = None
    reply: ChatMessageResponse
    usage: UsageResponse | None = None


class ConversationCreateRequest(BaseModel):
    title: str | None = Field(None, max_length=120)


class ConversationResponse(BaseModel):
    id: str
    title: str | None = None
    created_at: datetime
    updated_at: datetime


def _not_found() -> HTTPException:
    err = ErrorResponse(code=ErrorCode.NOT_FOUND, message="Conversation not found")
    return HTTPException(status_code=404, detail=err.model_dump())


def _llm_failure(exc: Exception) -> HTTPException:
    if isinstance(exc, TimeoutError):
        err = ErrorResponse(code=ErrorCode.LLM_TIMEOUT, message="Consultant timed out")
    else:
        err = ErrorResponse(code=ErrorCode.LLM_ERROR, message="Consultant is unavailable")
    return HTTPException(status_code=502, detail=err.model_dump())


def _conversation(row) -> ConversationResponse:
    return ConversationResponse(
        id=row.id, title=row.title, created_at=row.created_at, updated_at=row.updated_at
    )


def _send(user_id: str, body: ChatRequest):
    with db_module.SessionLocal() as db:
        conversation, reply = consultant_service.send_message(
            db,
            user_id=user_id,
            message=body.message,
            conversation_id=body.conversation_id,
        )
        return conversation.id, conversation.title, reply


def _owns_conversation(user_id: str, conversation_id: str) -> bool:
    with db_module.SessionLocal() as db:
        found = consultant_service.get_conversation(
            db, user_id=user_id, conversation_id=conversation_id
        )
        return found is not None


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        401: {"model": ErrorResponse},
        402: {"description": "Chat quota exhausted"},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def chat(body: ChatRequest, identity: Identity = Depends(rate_limit)):
    # Unknown conversations must not cost a chat use.
    if identity.is_authenticated and body.conversation_id:
        owned = await asyncio.to_thread(
            _owns_conversation, identity.user_id, body.conversation_id
        )
        if not owned:
            raise _not_found()

    usage = await check_and_update_limits(
        identity.user_id, Feature.CHAT, client_id=identity.client_id
    )
    if not usage.can_use:
        return limit_reached_response(Feature.CHAT, usage)

    try:
        if identity.is_authenticated:
            conversation_id, title, reply = await asyncio.to_thread(
                _send, identity.user_id, body
            )
            message = ChatMessageResponse(
                id=reply.id,
                content=reply.content,
                sender=reply.sender,
                created_at=reply.created_at,
            )
        else:
            history = [
                {"role": "model" if item.sender == "ai" else "user", "text": item.content}
                for item in body.history[-consultant_service.HISTORY_LIMIT:]
            ]
            text = await asyncio.to_thread(
                consultant_service.ask_consultant, body.message, history
            )
            conversation_id, title = None, None
            message = ChatMessageResponse(content=text, sender="ai")
    except ConversationNotFound as exc:
        raise _not_found() from exc
    except (TimeoutError, RuntimeError, ValueError) as exc:
        logger.error("consultant call failed for %s: %s", identity.subject, exc)
        raise _llm_failure(exc) from exc

    await asyncio.to_thread(track_event_sync, identity.user_id, "consultant_message")
    return ChatResponse(
        conversation_id=conversation_id,
        title=title,
        reply=message,
        usage=usage_response(Feature.CHAT, usage),
    )


@router.get(
    "/conversations",
    response_model=list[ConversationResponse],
    responses={401: {"model": ErrorResponse}},
)
async def list_conversations(identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            rows = consultant_service.list_conversations(db, user_id=identity.user_id)
            return [_conversation(row) for row in rows]

    return await asyncio.to_thread(_db)


@router.post(
    "/conversations",
    status_code=201,
    response_model=ConversationResponse,
    responses={401: {"model": ErrorResponse}},
)
async def create_conversation(
    body: ConversationCreateRequest, identity: Identity = Depends(require_user)
):
    def _db():
        with db_module.SessionLocal() as db:
            row = consultant_service.create_conversation(
                db, user_id=identity.user_id, title=body.title
            )
            return _conversation(row)

    return await asyncio.to_thread(_db)


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[ChatMessageResponse],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_messages(conversation_id: str, identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            rows = consultant_service.load_history(
                db, user_id=identity.user_id, conversation_id=conversation_id
            )
            if rows is None:
                return None
            return [
                ChatMessageResponse(
                    id=row.id, content=row.content, sender=row.sender, created_at=row.created_at
                )
                for row in rows
            ]

    messages = await asyncio.to_thread(_db)
    if messages is None:
        raise _not_found()
    return messages


@router.delete(
    "/conversations/{conversation_id}",
    status_code=204,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_conversation(conversation_id: str, identity: Identity = Depends(require_user)):
    def _db() -> bool:
        with db_module.SessionLocal() as db:
            return consultant_service.delete_conversation(
                db, user_id=identity.user_id, conversation_id=conversation_id
            )

    if not await asyncio.to_thread(_db):
        raise _not_found()
    return Response(status_code=204)
