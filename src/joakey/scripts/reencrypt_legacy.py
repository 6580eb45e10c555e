"""Rewrite messages stored in the shared-passphrase format with per-chat keys.

Rows written by the old browser clients all share one passphrase. This job
decrypts them with that passphrase and re-encrypts them with the chat's own
key, leaving message ids and timestamps untouched.
"""
from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from joakey.core.settings import settings
from joakey.db.session import SessionLocal
from joakey.models import Message
from joakey.services.codec import (
    LEGACY_PREFIX,
    ConversationCodec,
    LegacyPassphraseCodec,
    MessageDecryptionError,
    codec_for_chat,
)

logger = logging.getLogger(__name__)


def reencrypt_legacy_messages(
    db: Session,
    passphrase: str,
    *,
    codec_factory: Callable[[str], ConversationCodec] = codec_for_chat,
    batch_size: int = 500,
) -> tuple[int, int]:
    """Re-encrypt legacy rows in place, committing one page of ``batch_size`` rows at a time.

    Returns:
        ``(converted, failed)`` counts. Rows that cannot be decrypted are left
        as they are and counted as failed.
    """
    legacy = LegacyPassphraseCodec(passphrase)
    codecs: dict[str, ConversationCodec] = {}
    converted = failed = 0
    last_id = ""
    while True:
        # Keyset paging; failed rows keep the legacy prefix and must not be re-read.
        page = db.execute(
            select(Message)
            .where(Message.text.startswith(LEGACY_PREFIX), Message.id > last_id)
            .order_by(Message.id.asc())
            .limit(batch_size)
        ).scalars().all()
        if not page:
            break
        for message in page:
            try:
                plaintext = legacy.decrypt(message.text)
            except MessageDecryptionError as err:
                logger.warning("Leaving message %s unconverted: %s", message.id, err)
                failed += 1
                continue
            codec = codecs.get(message.chat_id)
            if codec is None:
                codec = codecs[message.chat_id] = codec_factory(message.chat_id)
            message.text = codec.encode(plaintext)
            converted += 1
        last_id = page[-1].id
        db.commit()
    logger.info("Re-encrypted %d legacy messages (%d failed)", converted, failed)
    return converted, failed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--passphrase",
        default=settings.legacy_message_passphrase,
        help="Legacy shared passphrase (defaults to LEGACY_MESSAGE_PASSPHRASE)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="[reencrypt] %(message)s")
    if not args.passphrase:
        logger.error("No legacy passphrase configured")
        return 1
    with SessionLocal() as db:
        _, failed = reencrypt_legacy_messages(db, args.passphrase)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
