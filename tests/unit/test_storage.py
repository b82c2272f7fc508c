"""
Unit tests for memo attachment validation and keys in ar_api/services/storage.py
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from ar_api.config import settings
from ar_api.services.storage import attachment_key, memo_storage, validate_attachment


def test_accepts_supported_image():
    validate_attachment("image/png", 1024)


def test_rejects_unsupported_type():
    with pytest.raises(HTTPException) as exc:
        validate_attachment("application/pdf", 1024)
    assert exc.value.status_code == 400


def test_rejects_empty_file():
    with pytest.raises(HTTPException) as exc:
        validate_attachment("audio/webm", 0)
    assert exc.value.status_code == 400


def test_rejects_oversized_file():
    with pytest.raises(HTTPException) as exc:
        validate_attachment("image/jpeg", settings.MEMO_ATTACHMENT_MAX_BYTES + 1)
    assert exc.value.status_code == 413


def test_attachment_key_uses_known_extension():
    key = attachment_key("inv-1", "audio/mpeg", "note.bin")
    assert key.startswith("inv-1/")
    assert key.endswith(".mp3")


def test_attachment_key_falls_back_to_filename():
    assert attachment_key("inv-1", "image/heic", "photo.HEIC").endswith(".heic")


def test_upload_puts_object():
    s3 = MagicMock()
    with patch.object(memo_storage, "s3", s3):
        key = memo_storage.upload(b"abc", "inv-1/x.png", "image/png")

    assert key == "inv-1/x.png"
    kwargs = s3.put_object.call_args.kwargs
    assert kwargs["Key"] == "inv-1/x.png"
    assert kwargs["ContentType"] == "image/png"
