# tests/v1/test_chats.py
"""Tests for chat and message endpoints."""

from fastapi import status

from joakey.models import Message
from joakey.services.codec import CIPHERTEXT_PREFIX


def test_open_chat_creates_and_reuses(client, buyer, jockey, buyer_headers, jockey_headers) -> None:
    """Both participants opening the chat land on the same row."""
    response = client.post("/api/v1/chats/", json={"peer_id": jockey.id}, headers=buyer_headers)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["peer"]["id"] == jockey.id
    assert data["peer"]["initial"] == "R"

    response = client.post("/api/v1/chats/", json={"peer_id": buyer.id}, headers=jockey_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["id"] == data["id"]
    assert response.json()["peer"]["id"] == buyer.id


def test_open_chat_with_unknown_peer(client, buyer_headers) -> None:
    response = client.post("/api/v1/chats/", json={"peer_id": "nobody"}, headers=buyer_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Peer not found"


def test_open_chat_with_self(client, buyer, buyer_headers) -> None:
    response = client.post("/api/v1/chats/", json={"peer_id": buyer.id}, headers=buyer_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_requires_authentication(client, chat) -> None:
    response = client.get(f"/api/v1/chats/{chat.id}/messages")
    assert response.status_code in {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}


def test_invalid_token_is_rejected(client, chat) -> None:
    response = client.get(
        f"/api/v1/chats/{chat.id}/messages",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Could not validate credentials"


def test_send_and_list_messages(client, db_session, chat, buyer_headers, jockey_headers) -> None:
    response = client.post(
        f"/api/v1/chats/{chat.id}/messages",
        json={"text": "Mau push ke Mythic"},
        headers=buyer_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    sent = response.json()
    assert sent["text"] == "Mau push ke Mythic"
    assert sent["is_mine"] is True

    stored = db_session.get(Message, sent["id"])
    assert stored.text.startswith(CIPHERTEXT_PREFIX)

    response = client.get(f"/api/v1/chats/{chat.id}/messages", headers=jockey_headers)
    assert response.status_code == status.HTTP_200_OK
    [message] = response.json()
    assert message["text"] == "Mau push ke Mythic"
    assert message["is_mine"] is False


def test_send_empty_message(client, chat, buyer_headers) -> None:
    response = client.post(
        f"/api/v1/chats/{chat.id}/messages", json={"text": "  "}, headers=buyer_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_outsider_cannot_read_or_write(client, chat, outsider_headers) -> None:
    response = client.get(f"/api/v1/chats/{chat.id}/messages", headers=outsider_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.post(
        f"/api/v1/chats/{chat.id}/messages", json={"text": "hi"}, headers=outsider_headers
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_unknown_chat(client, buyer_headers) -> None:
    response = client.get("/api/v1/chats/missing/messages", headers=buyer_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_edit_message(client, chat, buyer_headers, jockey_headers) -> None:
    sent = client.post(
        f"/api/v1/chats/{chat.id}/messages", json={"text": "100rb"}, headers=buyer_headers
    ).json()

    response = client.patch(
        f"/api/v1/chats/{chat.id}/messages/{sent['id']}",
        json={"text": "150rb"},
        headers=jockey_headers,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.patch(
        f"/api/v1/chats/{chat.id}/messages/{sent['id']}",
        json={"text": "150rb"},
        headers=buyer_headers,
    )
    assert response.status_code == status.HTTP_200_OK
    edited = response.json()
    assert edited["id"] == sent["id"]
    assert edited["text"] == "150rb"
    assert edited["edited"] is True


def test_edit_missing_message(client, chat, buyer_headers) -> None:
    response = client.patch(
        f"/api/v1/chats/{chat.id}/messages/missing",
        json={"text": "x"},
        headers=buyer_headers,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_delete_message(client, chat, buyer_headers, jockey_headers) -> None:
    sent = client.post(
        f"/api/v1/chats/{chat.id}/messages", json={"text": "salah kirim"}, headers=buyer_headers
    ).json()

    response = client.delete(
        f"/api/v1/chats/{chat.id}/messages/{sent['id']}", headers=jockey_headers
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.delete(f"/api/v1/chats/{chat.id}/messages/{sent['id']}", headers=buyer_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "deleted"}

    response = client.get(f"/api/v1/chats/{chat.id}/messages", headers=buyer_headers)
    assert response.json() == []
