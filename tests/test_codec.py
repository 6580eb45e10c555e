"""Tests for message encryption and decryption."""
from __future__ import annotations

import base64

import pytest

from joakey.services.codec import (
    CIPHERTEXT_PREFIX,
    LEGACY_PREFIX,
    PLACEHOLDER,
    ConversationCodec,
    LegacyPassphraseCodec,
    MessageCodec,
    MessageDecryptionError,
    agree_conversation_key,
    codec_for_chat,
    derive_conversation_key,
    generate_exchange_key_pair,
)

MASTER_SECRET = "unit-test-master-secret"


@pytest.fixture()
def codec() -> MessageCodec:
    key = derive_conversation_key(MASTER_SECRET, "chat-1")
    return MessageCodec(key, associated_data=b"chat-1")


@pytest.mark.parametrize(
    "plaintext",
    ["hello", "Halo bang, jadi push rank dari Epic ke Legend ya?", "emoji 🎮🔥", "a" * 4000],
)
def test_round_trip(codec: MessageCodec, plaintext: str) -> None:
    ciphertext = codec.encode(plaintext)

    assert ciphertext.startswith(CIPHERTEXT_PREFIX)
    assert plaintext not in ciphertext
    assert codec.decode(ciphertext) == plaintext


def test_encoding_is_not_deterministic(codec: MessageCodec) -> None:
    assert codec.encode("same text") != codec.encode("same text")


@pytest.mark.parametrize("garbage", ["", "not encrypted", "v1.", "v1.!!!!", "v1.QUJD"])
def test_decode_returns_placeholder_for_garbage(codec: MessageCodec, garbage: str) -> None:
    assert codec.decode(garbage) == PLACEHOLDER


def test_decrypt_raises_for_garbage(codec: MessageCodec) -> None:
    with pytest.raises(MessageDecryptionError):
        codec.decrypt("v1.QUJD")


def test_decode_logs_failure(codec: MessageCodec, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="joakey.services.codec"):
        assert codec.decode("junk") == PLACEHOLDER
    assert "Could not decrypt message" in caplog.text


def test_tampered_ciphertext_is_rejected(codec: MessageCodec) -> None:
    ciphertext = codec.encode("transfer to my account")
    body = ciphertext[len(CIPHERTEXT_PREFIX):]
    raw = bytearray(base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)))
    raw[-1] ^= 0x01
    tampered = CIPHERTEXT_PREFIX + base64.urlsafe_b64encode(bytes(raw)).decode().rstrip("=")

    assert codec.decode(tampered) == PLACEHOLDER


def test_ciphertext_is_bound_to_its_chat() -> None:
    key = derive_conversation_key(MASTER_SECRET, "chat-1")
    ciphertext = MessageCodec(key, associated_data=b"chat-1").encode("hi")

    assert MessageCodec(key, associated_data=b"chat-2").decode(ciphertext) == PLACEHOLDER


def test_keys_differ_per_chat() -> None:
    first = derive_conversation_key(MASTER_SECRET, "chat-1")
    second = derive_conversation_key(MASTER_SECRET, "chat-2")

    assert len(first) == 32
    assert first != second
    assert derive_conversation_key(MASTER_SECRET, "chat-1") == first


def test_wrong_key_cannot_read(codec: MessageCodec) -> None:
    ciphertext = codec.encode("secret")
    other = MessageCodec(derive_conversation_key("another-secret", "chat-1"), b"chat-1")

    assert other.decode(ciphertext) == PLACEHOLDER


@pytest.mark.parametrize(
    ("secret", "chat_id"),
    [("", "chat-1"), (b"", "chat-1"), (MASTER_SECRET, "")],
)
def test_derive_requires_secret_and_chat(secret: str | bytes, chat_id: str) -> None:
    with pytest.raises(ValueError):
        derive_conversation_key(secret, chat_id)


def test_codec_rejects_short_keys() -> None:
    with pytest.raises(ValueError):
        MessageCodec(b"too short")


def test_x25519_agreement_gives_both_sides_the_same_key() -> None:
    buyer_private, buyer_public = generate_exchange_key_pair()
    jockey_private, jockey_public = generate_exchange_key_pair()

    buyer_key = agree_conversation_key(buyer_private, jockey_public, "chat-1")
    jockey_key = agree_conversation_key(jockey_private, buyer_public, "chat-1")

    assert buyer_key == jockey_key
    ciphertext = MessageCodec(buyer_key).encode("deal")
    assert MessageCodec(jockey_key).decrypt(ciphertext) == "deal"


def test_agreement_rejects_bad_public_key() -> None:
    private_key, _ = generate_exchange_key_pair()
    with pytest.raises(ValueError):
        agree_conversation_key(private_key, b"short", "chat-1")


def test_legacy_round_trip() -> None:
    legacy = LegacyPassphraseCodec("shared-passphrase")
    ciphertext = legacy.encode("pesan lama")

    assert ciphertext.startswith(LEGACY_PREFIX)
    assert legacy.decrypt(ciphertext) == "pesan lama"


def test_legacy_wrong_passphrase_gives_placeholder() -> None:
    ciphertext = LegacyPassphraseCodec("shared-passphrase").encode("pesan lama")

    assert LegacyPassphraseCodec("other").decode(ciphertext) == PLACEHOLDER


def test_legacy_requires_passphrase() -> None:
    with pytest.raises(ValueError):
        LegacyPassphraseCodec("")


def test_conversation_codec_reads_both_formats(codec: MessageCodec) -> None:
    legacy = LegacyPassphraseCodec("shared-passphrase")
    conversation = ConversationCodec(codec, legacy)

    assert conversation.decode(legacy.encode("old")) == "old"
    assert conversation.decode(conversation.encode("new")) == "new"
    assert conversation.encode("new").startswith(CIPHERTEXT_PREFIX)


def test_conversation_codec_without_legacy_uses_placeholder(codec: MessageCodec) -> None:
    old = LegacyPassphraseCodec("shared-passphrase").encode("old")

    assert ConversationCodec(codec).decode(old) == PLACEHOLDER


def test_codec_for_chat_uses_configured_secret() -> None:
    first = codec_for_chat("chat-1", master_secret=MASTER_SECRET)
    second = codec_for_chat("chat-1", master_secret=MASTER_SECRET)
    other_chat = codec_for_chat("chat-2", master_secret=MASTER_SECRET)

    ciphertext = first.encode("hello")
    assert second.decode(ciphertext) == "hello"
    assert other_chat.decode(ciphertext) == PLACEHOLDER
