# ar_api/services/storage.py
import mimetypes
import uuid
from typing import Optional

import boto3
from botocore.config import Config
from fastapi import HTTPException, status
import structlog

from ar_api.config import settings

logger = structlog.get_logger()

ALLOWED_ATTACHMENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "audio/webm",
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/mp4",
}

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
}


def validate_attachment(content_type: Optional[str], size: int) -> None:
    """Reject anything the memo-attachments bucket would refuse."""
    if content_type not in ALLOWED_ATTACHMENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: {content_type}. "
            f"Allowed: {', '.join(sorted(ALLOWED_ATTACHMENT_TYPES))}",
        )
    if size <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if size > settings.MEMO_ATTACHMENT_MAX_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Max size: "
            f"{settings.MEMO_ATTACHMENT_MAX_BYTES // (1024 * 1024)} MB",
        )


def attachment_key(invoice_id, content_type: str, filename: Optional[str] = None) -> str:
    ext = _EXTENSIONS.get(content_type)
    if ext is None and filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
    if ext is None:
        ext = (mimetypes.guess_extension(content_type) or ".bin").lstrip(".")
    return f"{invoice_id}/{uuid.uuid4()}.{ext}"


class MemoAttachmentStorage:
    def __init__(self):
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.STORAGE_ENDPOINT_URL or None,
            aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY or None,
            config=Config(signature_version="s3v4"),
            region_name=settings.STORAGE_REGION,
        )
        self.bucket = settings.MEMO_ATTACHMENTS_BUCKET

    def upload(self, file_bytes: bytes, key: str, content_type: str) -> str:
        self.s3.put_object(
            Bucket=self.bucket, Key=key, Body=file_bytes, ContentType=content_type
        )
        logger.info("memo_attachment_uploaded", key=key, size=len(file_bytes))
        return key

    def get_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def delete(self, key: str):
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("memo_attachment_deleted", key=key)


memo_storage = MemoAttachmentStorage()
