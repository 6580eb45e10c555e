# src/joakey/api/v1/endpoints/chats.py
"""Chat endpoints for the Joakey API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from joakey.api.v1.dependencies import (
    ChangeFeedDep,
    CurrentParticipantDep,
    SessionDep,
    SessionFactoryDep,
    resolve_participant,
)
from joakey.models import Chat, Profile
from joakey.schemas.chat import (
    ChatOpenRequest,
    ChatResponse,
    MessageCreate,
    MessageResponse,
    MessageUpdate,
    ProfileSummary,
)
from joakey.services.chat_sync import ChatSynchronizer, build_snapshot_loader
from joakey.services.codec import codec_for_chat
from joakey.services.conversations import get_chat_for_participant, resolve_conversation
from joakey.services.messages import MessageService, MessageView, to_view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])


def _load_chat(db: Session, chat_id: str, participant: Profile) -> Chat:
    try:
        return get_chat_for_participant(db, chat_id, participant.id)
    except LookupError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    except PermissionError as err:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(err)) from err


def _message_response(view: MessageView) -> MessageResponse:
    return MessageResponse.model_validate(view)


@router.post("/", response_model=ChatResponse)
async def open_chat(
    request: ChatOpenRequest,
    current_participant: CurrentParticipantDep,
    db: SessionDep,
) -> ChatResponse:
    """Find or create the chat between the caller and a peer."""
    try:
        chat = resolve_conversation(db, current_participant.id, request.peer_id)
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except LookupError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Peer not found") from err

    peer = db.get(Profile, chat.peer_of(current_participant.id))
    return ChatResponse(
        id=chat.id,
        user1_id=chat.user1_id,
        user2_id=chat.user2_id,
        created_at=chat.created_at,
        peer=ProfileSummary.model_validate(peer) if peer is not None else None,
    )


@router.get("/{chat_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    chat_id: str,
    current_participant: CurrentParticipantDep,
    db: SessionDep,
    feed: ChangeFeedDep,
) -> list[MessageResponse]:
    """Return the chat's messages, decrypted, oldest first."""
    chat = _load_chat(db, chat_id, current_participant)
    views = MessageService(db, feed=feed).list_views(chat.id, current_participant.id)
    return [_message_response(view) for view in views]


@router.post(
    "/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    chat_id: str,
    message_data: MessageCreate,
    current_participant: CurrentParticipantDep,
    db: SessionDep,
    feed: ChangeFeedDep,
) -> MessageResponse:
    """Encrypt and store a message."""
    chat = _load_chat(db, chat_id, current_participant)
    try:
        message = MessageService(db, feed=feed).send_message(
            chat, current_participant.id, message_data.text, message_data.type
        )
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    return _message_response(to_view(message, codec_for_chat(chat.id), current_participant.id))


@router.patch("/{chat_id}/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    chat_id: str,
    message_id: str,
    message_data: MessageUpdate,
    current_participant: CurrentParticipantDep,
    db: SessionDep,
    feed: ChangeFeedDep,
) -> MessageResponse:
    """Replace the text of one of the caller's messages."""
    chat = _load_chat(db, chat_id, current_participant)
    try:
        message = MessageService(db, feed=feed).edit_message(
            chat, message_id, current_participant.id, message_data.text
        )
    except LookupError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    except PermissionError as err:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(err)) from err
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    return _message_response(to_view(message, codec_for_chat(chat.id), current_participant.id))


@router.delete("/{chat_id}/messages/{message_id}")
async def delete_message(
    chat_id: str,
    message_id: str,
    current_participant: CurrentParticipantDep,
    db: SessionDep,
    feed: ChangeFeedDep,
) -> dict[str, str]:
    """Delete one of the caller's messages."""
    chat = _load_chat(db, chat_id, current_participant)
    try:
        MessageService(db, feed=feed).delete_message(chat, message_id, current_participant.id)
    except LookupError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    except PermissionError as err:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(err)) from err
    return {"status": "deleted"}


@router.websocket("/{chat_id}/ws")
async def chat_updates(
    websocket: WebSocket,
    chat_id: str,
    db: SessionDep,
    feed: ChangeFeedDep,
    session_factory: SessionFactoryDep,
    token: str = Query(...),
) -> None:
    """Push a full message snapshot on connect and after every change.

    Sending the text ``refresh`` forces a re-fetch.
    """
    try:
        participant = resolve_participant(token, db)
        chat = _load_chat(db, chat_id, participant)
    except HTTPException as err:
        logger.info("Rejecting chat socket for %s: %s", chat_id, err.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    snapshots: asyncio.Queue[list[MessageView]] = asyncio.Queue()
    synchronizer = ChatSynchronizer(
        chat.id,
        participant.id,
        loader=build_snapshot_loader(session_factory, chat.id, participant.id),
        feed=feed,
    )
    synchronizer.on_change(snapshots.put_nowait)

    async def push_snapshots() -> None:
        while True:
            snapshot = await snapshots.get()
            await websocket.send_json(
                {
                    "type": "snapshot",
                    "chat_id": chat.id,
                    "messages": [view.to_dict() for view in snapshot],
                }
            )

    async def read_commands() -> None:
        try:
            while True:
                command = await websocket.receive_text()
                if command.strip().lower() == "refresh":
                    await synchronizer.refresh()
        except WebSocketDisconnect:
            return

    await synchronizer.open()
    tasks = {asyncio.create_task(push_snapshots()), asyncio.create_task(read_commands())}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Chat socket for %s ended: %s", chat.id, task.exception())
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await synchronizer.close()
