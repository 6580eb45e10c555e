# tests/v1/test_chat_socket.py
"""Tests for the realtime chat websocket."""

import pytest
from fastapi import WebSocketDisconnect, status

from joakey.core.security import create_access_token


def _socket_url(chat_id: str, participant_id: str) -> str:
    return f"/api/v1/chats/{chat_id}/ws?token={create_access_token(participant_id)}"


def test_socket_pushes_snapshot_on_connect_and_after_writes(
    client, chat, buyer, jockey, jockey_headers
) -> None:
    with client.websocket_connect(_socket_url(chat.id, buyer.id)) as websocket:
        first = websocket.receive_json()
        assert first["type"] == "snapshot"
        assert first["chat_id"] == chat.id
        assert first["messages"] == []

        response = client.post(
            f"/api/v1/chats/{chat.id}/messages", json={"text": "siap bang"}, headers=jockey_headers
        )
        assert response.status_code == status.HTTP_201_CREATED

        update = websocket.receive_json()
        [message] = update["messages"]
        assert message["text"] == "siap bang"
        assert message["sender_id"] == jockey.id
        assert message["is_mine"] is False


def test_refresh_command_resends_snapshot(client, chat, buyer) -> None:
    with client.websocket_connect(_socket_url(chat.id, buyer.id)) as websocket:
        websocket.receive_json()
        websocket.send_text("refresh")
        assert websocket.receive_json()["messages"] == []


def test_socket_rejects_bad_token(client, chat) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/api/v1/chats/{chat.id}/ws?token=garbage") as websocket:
            websocket.receive_json()
    assert excinfo.value.code == status.WS_1008_POLICY_VIOLATION


def test_socket_rejects_outsider(client, chat, outsider) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(_socket_url(chat.id, outsider.id)) as websocket:
            websocket.receive_json()
    assert excinfo.value.code == status.WS_1008_POLICY_VIOLATION
