"""Tests for at-rest message encryption."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from app.core.crypto import (
    CIPHER_VERSION_ECB,
    CIPHER_VERSION_GCM,
    PREVIEW_LENGTH,
    decrypt_ecb,
    decrypt_gcm,
    decrypt_message,
    encrypt_ecb,
    encrypt_for_storage,
    safe_decrypt_message,
)
from app.services.errors import DataIntegrityError

TIMESTAMP = 1_700_000_123


def _record(body, *, time=TIMESTAMP, **overrides):
    values = {"id": 1, "time": time, **body.as_columns(), **overrides}
    return SimpleNamespace(**values)


@pytest.mark.parametrize("plaintext", ["hello", "Привет, мир 👋", "x" * 4000])
def test_storage_body_decrypts_to_original_text(plaintext):
    body = encrypt_for_storage(plaintext, TIMESTAMP)

    assert body.cipher_version == CIPHER_VERSION_GCM
    assert body.iv and body.tag
    assert body.text != plaintext
    assert decrypt_message(_record(body)) == plaintext
    assert decrypt_ecb(body.text_ecb, TIMESTAMP) == plaintext


def test_preview_is_bounded_plaintext_prefix():
    plaintext = "a" * 50 + "b" * 200

    body = encrypt_for_storage(plaintext, TIMESTAMP)

    assert body.text_preview == plaintext[:PREVIEW_LENGTH]
    assert len(body.text_preview) == PREVIEW_LENGTH


def test_empty_text_produces_empty_columns():
    body = encrypt_for_storage("", TIMESTAMP)

    assert body.text == "" and body.text_ecb == "" and body.text_preview == ""
    assert body.iv is None and body.tag is None
    assert body.cipher_version == CIPHER_VERSION_ECB
    assert decrypt_message(_record(body)) == ""


def test_fresh_iv_per_encryption():
    first = encrypt_for_storage("same text", TIMESTAMP)
    second = encrypt_for_storage("same text", TIMESTAMP)

    assert first.iv != second.iv
    assert first.text != second.text


def test_key_depends_on_creation_time():
    body = encrypt_for_storage("secret", TIMESTAMP)

    with pytest.raises(DataIntegrityError):
        decrypt_gcm(body.text, TIMESTAMP + 1, body.iv, body.tag)


def test_tampered_tag_is_reported_as_integrity_error():
    body = encrypt_for_storage("secret", TIMESTAMP)
    other = encrypt_for_storage("secret", TIMESTAMP)

    with pytest.raises(DataIntegrityError):
        decrypt_message(_record(body, tag=other.tag))


def test_gcm_record_without_iv_is_rejected():
    body = encrypt_for_storage("secret", TIMESTAMP)

    with pytest.raises(DataIntegrityError):
        decrypt_message(_record(body, iv=None))


def test_legacy_ecb_record_is_readable():
    record = SimpleNamespace(
        id=3,
        text=encrypt_ecb("legacy body", TIMESTAMP),
        time=TIMESTAMP,
        iv=None,
        tag=None,
        cipher_version=CIPHER_VERSION_ECB,
    )

    assert decrypt_message(record) == "legacy body"


def test_unencrypted_legacy_row_is_returned_as_stored():
    record = SimpleNamespace(
        id=4, text="plain old text", time=TIMESTAMP, iv=None, tag=None, cipher_version=0
    )

    assert decrypt_message(record) == "plain old text"


def test_safe_decrypt_logs_and_hides_corrupted_body(caplog):
    body = encrypt_for_storage("secret", TIMESTAMP)
    record = _record(body, tag=None)

    with caplog.at_level(logging.ERROR):
        assert safe_decrypt_message(record) == ""

    assert any("Unable to decrypt message" in entry.getMessage() for entry in caplog.records)
