"""At-rest encryption of message bodies.

Two cipher generations coexist in storage and are told apart by the
``cipher_version`` column:

* version 2: AES-256-GCM with a random 96-bit IV and a 128-bit tag;
* version 1: AES-128-ECB with PKCS#7 padding, kept for legacy web clients
  which still read the ``text_ecb`` column.

Key material is derived from the message creation timestamp, so edits must
re-encrypt with the original ``time`` of the message and never the edit time.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Final, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.services.errors import DataIntegrityError

logger = logging.getLogger(__name__)

CIPHER_VERSION_ECB: Final[int] = 1
CIPHER_VERSION_GCM: Final[int] = 2

PREVIEW_LENGTH: Final[int] = 100

_GCM_KEY_LENGTH: Final[int] = 32
_ECB_KEY_LENGTH: Final[int] = 16
_IV_LENGTH: Final[int] = 12
_TAG_LENGTH: Final[int] = 16


class StoredBody(Protocol):
    """Attributes of a persisted message needed to recover its plaintext."""

    text: str
    time: int
    iv: str | None
    tag: str | None
    cipher_version: int


@dataclass(frozen=True, slots=True)
class EncodedBody:
    """Ciphertext columns produced for a message body."""

    text: str
    text_ecb: str
    text_preview: str
    iv: str | None
    tag: str | None
    cipher_version: int

    def as_columns(self) -> dict[str, str | int | None]:
        return {
            "text": self.text,
            "text_ecb": self.text_ecb,
            "text_preview": self.text_preview,
            "iv": self.iv,
            "tag": self.tag,
            "cipher_version": self.cipher_version,
        }


def _gcm_key(timestamp: int) -> bytes:
    seed = str(timestamp).encode("utf-8")
    repeats = _GCM_KEY_LENGTH // len(seed) + 1
    return (seed * repeats)[:_GCM_KEY_LENGTH]


def _ecb_key(timestamp: int) -> bytes:
    seed = str(timestamp).encode("utf-8")[:_ECB_KEY_LENGTH]
    return seed.ljust(_ECB_KEY_LENGTH, b"\0")


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


def make_preview(plaintext: str) -> str:
    return plaintext[:PREVIEW_LENGTH]


def encrypt_gcm(plaintext: str, timestamp: int) -> tuple[str, str, str]:
    """Encrypt with AES-256-GCM and return ``(ciphertext, iv, tag)`` in base64."""

    iv = os.urandom(_IV_LENGTH)
    sealed = AESGCM(_gcm_key(timestamp)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
    return _b64encode(ciphertext), _b64encode(iv), _b64encode(tag)


def decrypt_gcm(ciphertext: str, timestamp: int, iv: str, tag: str) -> str:
    """Reverse :func:`encrypt_gcm`.

    Raises:
        DataIntegrityError: if the stored parameters are malformed or the tag does not verify.
    """

    try:
        nonce = _b64decode(iv)
        sealed = _b64decode(ciphertext) + _b64decode(tag)
        plain = AESGCM(_gcm_key(timestamp)).decrypt(nonce, sealed, None)
        return plain.decode("utf-8")
    except (InvalidTag, ValueError, binascii.Error) as exc:
        raise DataIntegrityError("Stored GCM body failed verification") from exc


def encrypt_ecb(plaintext: str, timestamp: int) -> str:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_ecb_key(timestamp)), modes.ECB()).encryptor()
    return _b64encode(encryptor.update(padded) + encryptor.finalize())


def decrypt_ecb(ciphertext: str, timestamp: int) -> str:
    """Reverse :func:`encrypt_ecb`; raises ``ValueError`` for anything that is not ECB ciphertext."""

    raw = _b64decode(ciphertext)
    if not raw or len(raw) % (algorithms.AES.block_size // 8):
        raise ValueError("Ciphertext is not block aligned")
    decryptor = Cipher(algorithms.AES(_ecb_key(timestamp)), modes.ECB()).decryptor()
    padded = decryptor.update(raw) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plain = unpadder.update(padded) + unpadder.finalize()
    return plain.decode("utf-8")


def encrypt_for_storage(plaintext: str, timestamp: int) -> EncodedBody:
    """Produce every ciphertext column for ``plaintext`` keyed by ``timestamp``.

    GCM is the primary body; the ECB copy is always written for legacy readers
    and becomes the primary body when GCM encryption is unavailable.
    """

    if not plaintext:
        return EncodedBody(
            text="",
            text_ecb="",
            text_preview="",
            iv=None,
            tag=None,
            cipher_version=CIPHER_VERSION_ECB,
        )

    text_ecb = encrypt_ecb(plaintext, timestamp)
    preview = make_preview(plaintext)
    try:
        ciphertext, iv, tag = encrypt_gcm(plaintext, timestamp)
    except (ValueError, OverflowError):
        logger.exception("GCM encryption failed; storing legacy ECB body only")
        return EncodedBody(
            text=text_ecb,
            text_ecb=text_ecb,
            text_preview=preview,
            iv=None,
            tag=None,
            cipher_version=CIPHER_VERSION_ECB,
        )
    return EncodedBody(
        text=ciphertext,
        text_ecb=text_ecb,
        text_preview=preview,
        iv=iv,
        tag=tag,
        cipher_version=CIPHER_VERSION_GCM,
    )


def decrypt_message(record: StoredBody) -> str:
    """Recover the plaintext body of a stored message.

    Version 2 records must carry both IV and tag. Anything else goes through the
    legacy ECB path, and rows written before encryption existed come back as stored.

    Raises:
        DataIntegrityError: for a version 2 record missing its parameters or failing verification.
    """

    if not record.text:
        return ""

    if record.cipher_version == CIPHER_VERSION_GCM:
        if not record.iv or not record.tag:
            raise DataIntegrityError("GCM body stored without iv/tag")
        return decrypt_gcm(record.text, record.time, record.iv, record.tag)

    try:
        return decrypt_ecb(record.text, record.time)
    except (ValueError, UnicodeDecodeError, binascii.Error):
        return record.text


def safe_decrypt_message(record: StoredBody) -> str:
    """Decrypt for display, logging integrity failures instead of raising."""

    try:
        return decrypt_message(record)
    except DataIntegrityError as exc:
        logger.error(
            "Unable to decrypt message %s: %s", getattr(record, "id", None), exc
        )
        return ""


__all__ = [
    "CIPHER_VERSION_ECB",
    "CIPHER_VERSION_GCM",
    "PREVIEW_LENGTH",
    "EncodedBody",
    "StoredBody",
    "decrypt_ecb",
    "decrypt_gcm",
    "decrypt_message",
    "encrypt_ecb",
    "encrypt_for_storage",
    "encrypt_gcm",
    "make_preview",
    "safe_decrypt_message",
]
