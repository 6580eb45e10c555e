# src/joakey/services/codec.py
"""Symmetric encryption of chat message text.

Every conversation gets its own 256-bit key. Keys are either derived from the
configured master secret (HKDF over the chat id) or agreed between the two
participants with X25519. Ciphertext is AES-256-GCM with a random nonce,
serialized as ``v1.<urlsafe base64(nonce || ciphertext || tag)>`` so it can be
stored in a plain text column.

The browser clients used to encrypt with one passphrase shared by everybody,
in the OpenSSL ``Salted__`` format. ``LegacyPassphraseCodec`` can still read
those rows when a passphrase is configured.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from joakey.core.settings import settings

logger = logging.getLogger(__name__)

PLACEHOLDER = "[Cannot decrypt]"
KEY_LENGTH_BYTES = 32
NONCE_LENGTH_BYTES = 12
TAG_LENGTH_BYTES = 16
CIPHERTEXT_PREFIX = "v1."
KDF_SALT = b"joakey.chat.v1"

LEGACY_MAGIC = b"Salted__"
LEGACY_PREFIX = "U2FsdGVkX1"  # base64 of the OpenSSL magic header
LEGACY_SALT_BYTES = 8


class MessageDecryptionError(ValueError):
    """Raised when a ciphertext cannot be turned back into text."""


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _b64decode(data: str) -> bytes:
    padding_chars = "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(data + padding_chars)
    except (binascii.Error, ValueError) as err:
        raise MessageDecryptionError(f"Invalid base64 encoding: {err}") from err


def _hkdf(secret: bytes, chat_id: str) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH_BYTES,
        salt=KDF_SALT,
        info=chat_id.encode("utf-8"),
    ).derive(secret)


def derive_conversation_key(master_secret: str | bytes, chat_id: str) -> bytes:
    """Derive the key for one conversation from the service master secret.

    Args:
        master_secret: Secret injected through configuration.
        chat_id: Conversation identifier, used as the HKDF ``info`` field.

    Returns:
        32 bytes of key material unique to the conversation.
    """
    if not chat_id:
        raise ValueError("A chat id is required to derive a conversation key")
    secret = master_secret.encode("utf-8") if isinstance(master_secret, str) else master_secret
    if not secret:
        raise ValueError("Master secret must not be empty")
    return _hkdf(secret, chat_id)


def agree_conversation_key(
    private_key: X25519PrivateKey,
    peer_public_key: bytes,
    chat_id: str,
) -> bytes:
    """Agree on a conversation key with the peer's X25519 public key.

    Both participants arrive at the same key by combining their own private
    key with the other side's public key.
    """
    try:
        peer = X25519PublicKey.from_public_bytes(peer_public_key)
    except ValueError as err:
        raise ValueError(f"Invalid peer public key: {err}") from err
    shared = private_key.exchange(peer)
    return _hkdf(shared, chat_id)


def generate_exchange_key_pair() -> tuple[X25519PrivateKey, bytes]:
    """Generate an X25519 key pair, returning the private key and raw public bytes."""
    private_key = X25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return private_key, public_bytes


class MessageCodec:
    """AES-256-GCM codec bound to one conversation key."""

    def __init__(self, key: bytes, associated_data: bytes | None = None) -> None:
        if len(key) != KEY_LENGTH_BYTES:
            raise ValueError("Message keys must be 32 bytes")
        self._aead = AESGCM(key)
        self._associated_data = associated_data

    def encode(self, plaintext: str) -> str:
        """Encrypt text; two calls on the same input give different output."""
        nonce = secrets.token_bytes(NONCE_LENGTH_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), self._associated_data)
        return CIPHERTEXT_PREFIX + _b64encode(nonce + sealed)

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt text, raising ``MessageDecryptionError`` on any failure."""
        if not ciphertext or not ciphertext.startswith(CIPHERTEXT_PREFIX):
            raise MessageDecryptionError("Unrecognized ciphertext format")
        raw = _b64decode(ciphertext[len(CIPHERTEXT_PREFIX):])
        if len(raw) < NONCE_LENGTH_BYTES + TAG_LENGTH_BYTES:
            raise MessageDecryptionError("Ciphertext is truncated")
        nonce, sealed = raw[:NONCE_LENGTH_BYTES], raw[NONCE_LENGTH_BYTES:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, self._associated_data)
        except InvalidTag as err:
            raise MessageDecryptionError("Authentication tag mismatch") from err
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise MessageDecryptionError("Plaintext is not valid UTF-8") from err

    def decode(self, ciphertext: str) -> str:
        """Decrypt text, returning ``PLACEHOLDER`` instead of raising."""
        try:
            return self.decrypt(ciphertext)
        except MessageDecryptionError as err:
            logger.warning("Could not decrypt message: %s", err)
            return PLACEHOLDER


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """Return the AES-256 key and IV the OpenSSL ``enc`` KDF derives (MD5, one round)."""
    derived = b""
    block = b""
    while len(derived) < KEY_LENGTH_BYTES + 16:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:KEY_LENGTH_BYTES], derived[KEY_LENGTH_BYTES:KEY_LENGTH_BYTES + 16]


class LegacyPassphraseCodec:
    """Codec for the OpenSSL ``Salted__`` format (AES-256-CBC, passphrase KDF)."""

    def __init__(self, passphrase: str) -> None:
        if not passphrase:
            raise ValueError("Passphrase must not be empty")
        self._passphrase = passphrase.encode("utf-8")

    def encode(self, plaintext: str) -> str:
        """Encrypt text in the legacy format."""
        salt = secrets.token_bytes(LEGACY_SALT_BYTES)
        key, iv = _evp_bytes_to_key(self._passphrase, salt)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        body = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(LEGACY_MAGIC + salt + body).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt legacy text, raising ``MessageDecryptionError`` on failure."""
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as err:
            raise MessageDecryptionError(f"Invalid base64 encoding: {err}") from err
        header_len = len(LEGACY_MAGIC) + LEGACY_SALT_BYTES
        if not raw.startswith(LEGACY_MAGIC) or len(raw) <= header_len:
            raise MessageDecryptionError("Missing legacy header")
        body = raw[header_len:]
        if len(body) % 16:
            raise MessageDecryptionError("Ciphertext is not block aligned")
        key, iv = _evp_bytes_to_key(self._passphrase, raw[len(LEGACY_MAGIC):header_len])
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as err:
            raise MessageDecryptionError("Wrong passphrase or corrupted ciphertext") from err

    def decode(self, ciphertext: str) -> str:
        """Decrypt legacy text, returning ``PLACEHOLDER`` instead of raising."""
        try:
            return self.decrypt(ciphertext)
        except MessageDecryptionError as err:
            logger.warning("Could not decrypt legacy message: %s", err)
            return PLACEHOLDER


class ConversationCodec:
    """Codec used for one chat: writes v1, reads v1 and (optionally) legacy rows."""

    def __init__(
        self,
        primary: MessageCodec,
        legacy: LegacyPassphraseCodec | None = None,
    ) -> None:
        self.primary = primary
        self.legacy = legacy

    def encode(self, plaintext: str) -> str:
        return self.primary.encode(plaintext)

    def decrypt(self, ciphertext: str) -> str:
        if self.legacy is not None and ciphertext.startswith(LEGACY_PREFIX):
            return self.legacy.decrypt(ciphertext)
        return self.primary.decrypt(ciphertext)

    def decode(self, ciphertext: str) -> str:
        try:
            return self.decrypt(ciphertext)
        except MessageDecryptionError as err:
            logger.warning("Could not decrypt message: %s", err)
            return PLACEHOLDER


def codec_for_chat(chat_id: str, *, master_secret: str | None = None) -> ConversationCodec:
    """Build the codec for a chat from configuration."""
    key = derive_conversation_key(master_secret or settings.message_master_secret, chat_id)
    legacy = (
        LegacyPassphraseCodec(settings.legacy_message_passphrase)
        if settings.legacy_message_passphrase
        else None
    )
    return ConversationCodec(MessageCodec(key, associated_data=chat_id.encode("utf-8")), legacy)
