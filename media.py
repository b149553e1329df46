"""
Image hosting on S3

Order items may carry an inline image (data URI, bare base64, or a path to a
file under UPLOAD_DIR). ImageStore writes it to the bucket and returns a
public URL. Only JPEG, PNG and WebP content is accepted; the type is taken
from the bytes, not from what the client declares.
"""
import base64
import binascii
import logging
import os
import uuid
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings
from exceptions import InvalidImageError, UploadError

logger = logging.getLogger(__name__)

URL_PREFIXES = ("http://", "https://")
EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
# declared types that say nothing about the content
GENERIC_TYPES = ("application/octet-stream", "binary/octet-stream")


def is_resolved_url(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower().startswith(URL_PREFIXES)


def sniff_image_type(data: bytes) -> Optional[str]:
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def checked_image(data: bytes, declared: Optional[str] = None) -> Tuple[bytes, str]:
    """Return (bytes, content type), refusing anything but jpeg/png/webp."""
    if not data:
        raise InvalidImageError("Image payload is empty")
    if declared and declared.lower() not in EXTENSIONS and declared.lower() not in GENERIC_TYPES:
        raise InvalidImageError(f"Unsupported image type {declared}")
    content_type = sniff_image_type(data)
    if content_type is None:
        raise InvalidImageError("Only jpg, png and webp images are accepted")
    return data, content_type


def local_image_path(payload: str, upload_dir: Optional[str]) -> Optional[str]:
    """Resolve payload to a file inside upload_dir, or None when it is not one.

    Raises InvalidImageError for an existing file outside upload_dir.
    """
    if not os.path.isfile(payload):
        return None
    real = os.path.realpath(payload)
    if upload_dir:
        root = os.path.realpath(upload_dir)
        if os.path.commonpath([root, real]) == root:
            return real
    raise InvalidImageError("Local files outside the upload directory are not accepted")


def decode_image_payload(payload: str, upload_dir: Optional[str] = None) -> Tuple[bytes, str]:
    """Return (bytes, content type) for an inline image payload."""
    payload = payload.strip()
    if payload.startswith("data:"):
        header, sep, data = payload.partition(",")
        if not sep or ";base64" not in header:
            raise InvalidImageError("Unsupported data URI")
        declared = header[len("data:"):].split(";", 1)[0]
        return checked_image(_b64decode(data), declared or None)

    path = local_image_path(payload, upload_dir)
    if path is not None:
        try:
            with open(path, "rb") as fh:
                return checked_image(fh.read())
        except OSError as e:
            raise UploadError(f"Cannot read {path}: {e}") from e

    return checked_image(_b64decode(payload))


def _b64decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("Image payload is not valid base64") from e


class ImageStore:
    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        timeout: float = 5.0,
        upload_dir: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url
        self.upload_dir = upload_dir
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            config=Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 2}),
        )

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            base = self.public_base_url
            if not base.startswith(URL_PREFIXES):
                base = f"https://{base}"
            return f"{base.rstrip('/')}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def upload_bytes(self, data: bytes, folder: str, declared: Optional[str] = None) -> str:
        body, content_type = checked_image(data, declared)
        key = f"{folder.strip('/')}/{uuid.uuid4().hex}{EXTENSIONS[content_type]}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"S3 upload failed: {e}") from e
        url = self.public_url(key)
        logger.info("Uploaded image to %s", url)
        return url

    def upload(self, payload: str, folder: str) -> str:
        body, content_type = decode_image_payload(payload, self.upload_dir)
        return self.upload_bytes(body, folder, content_type)


def build_image_store(settings: Settings) -> Optional[ImageStore]:
    if not settings.s3_bucket:
        logger.info("S3_BUCKET not set, image uploads disabled")
        return None
    return ImageStore(
        settings.s3_bucket,
        region=settings.aws_region,
        public_base_url=settings.s3_public_base_url,
        timeout=settings.external_timeout,
        upload_dir=settings.upload_dir,
    )
