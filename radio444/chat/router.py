"""Per-user generation chat history routes."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_auth_context
from radio444.auth.jwt import AuthContext
from radio444.schemas.chat import (
    ChatMessageIn,
    ChatMessageItem,
    ChatMessageListResponse,
    ChatMutationResponse,
    ChatReplaceRequest,
)
from radio444.storage.db import get_session
from radio444.storage.models import ChatMessage


router = APIRouter(prefix="/chat", tags=["chat"])


def _result(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _to_row(user_id: str, message: ChatMessageIn) -> ChatMessage:
    if not message.type or not message.content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message type and content are required")
    row = ChatMessage(
        user_id=user_id,
        message_type=message.type,
        content=message.content,
        generation_type=message.generation_type,
        generation_id=message.generation_id,
        result_json=json.dumps(message.result, separators=(",", ":"), default=str) if message.result else None,
    )
    if message.timestamp is not None:
        row.timestamp = message.timestamp
    return row


@router.get("/messages", response_model=ChatMessageListResponse)
def list_messages(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ChatMessageListResponse:
    rows = session.scalars(
        select(ChatMessage)
        .where(ChatMessage.user_id == auth.user_id)
        .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
    ).all()
    return ChatMessageListResponse(
        messages=[
            ChatMessageItem(
                id=row.id,
                type=row.message_type,
                content=row.content,
                generation_type=row.generation_type,
                generation_id=row.generation_id,
                result=_result(row.result_json),
                timestamp=row.timestamp,
            )
            for row in rows
        ]
    )


@router.post("/messages", response_model=ChatMutationResponse)
def add_message(
    payload: ChatMessageIn,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ChatMutationResponse:
    session.add(_to_row(auth.user_id, payload))
    session.commit()
    return ChatMutationResponse(success=True, count=1)


@router.delete("/messages", response_model=ChatMutationResponse)
def clear_messages(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ChatMutationResponse:
    result = session.execute(delete(ChatMessage).where(ChatMessage.user_id == auth.user_id))
    session.commit()
    return ChatMutationResponse(success=True, count=int(result.rowcount or 0))


@router.put("/messages", response_model=ChatMutationResponse)
def replace_messages(
    payload: ChatReplaceRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ChatMutationResponse:
    if not isinstance(payload.messages, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="messages must be a list")

    try:
        incoming = [ChatMessageIn.model_validate(item) for item in payload.messages]
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid message in list") from exc
    rows = [_to_row(auth.user_id, message) for message in incoming]

    session.execute(delete(ChatMessage).where(ChatMessage.user_id == auth.user_id))
    session.add_all(rows)
    session.commit()
    return ChatMutationResponse(success=True, count=len(rows))
