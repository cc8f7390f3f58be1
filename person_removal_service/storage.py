"""
Cloudflare R2 / S3-compatible storage for result images.

Used by the HTTP layer to persist inpainted results under a stable public
URL; the pipeline itself never touches storage.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional
from urllib.parse import urljoin
import uuid

import boto3
from botocore.client import Config as BotoConfig

from . import image_io
from .config import Settings

logger = logging.getLogger(__name__)


class ObjectStorage:
    def __init__(self, settings: Settings, client=None) -> None:
        self.settings = settings
        self._client = client

    @property
    def is_configured(self) -> bool:
        required = [
            self.settings.r2_endpoint,
            self.settings.r2_access_key_id,
            self.settings.r2_secret_access_key,
            self.settings.r2_bucket_name,
        ]
        return all(v is not None for v in required)

    def _get_s3_client(self):
        if self._client is not None:
            return self._client
        if not self.is_configured:
            raise RuntimeError("R2 configuration is incomplete; check env vars.")
        session = boto3.session.Session()
        self._client = session.client(
            service_name="s3",
            aws_access_key_id=self.settings.r2_access_key_id,
            aws_secret_access_key=self.settings.r2_secret_access_key,
            endpoint_url=self.settings.r2_endpoint,
            region_name="auto",
            config=BotoConfig(signature_version="s3v4"),
        )
        return self._client

    def public_url(self, key: str) -> str:
        if self.settings.r2_public_base_url:
            return urljoin(self.settings.r2_public_base_url.rstrip("/") + "/", key)
        # Without a public bucket domain, hand out a presigned URL instead.
        client = self._get_s3_client()
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.settings.r2_bucket_name, "Key": key},
            ExpiresIn=3600,
        )

    def upload_bytes(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        """Store `data` under `key` and return its public URL."""
        client = self._get_s3_client()
        # Keys must not repeat the bucket name as a prefix.
        bucket_prefix = f"{self.settings.r2_bucket_name}/"
        if key.startswith(bucket_prefix):
            key = key[len(bucket_prefix):]
        client.put_object(
            Bucket=self.settings.r2_bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        url = self.public_url(key)
        logger.info("Uploaded %d bytes to %s", len(data), key)
        return url

    def upload_from_url(self, url: str, key: Optional[str] = None) -> str:
        """Copy a remote or inline image into storage and return its public URL."""
        timeout = (self.settings.connect_timeout_seconds, self.settings.request_timeout_seconds)
        data = image_io.load_image_bytes(url, timeout=timeout)
        content_type = _guess_content_type(url)
        if key is None:
            extension = mimetypes.guess_extension(content_type) or ".png"
            key = f"person-removal/{uuid.uuid4()}{extension}"
        return self.upload_bytes(data, key, content_type=content_type)


def _guess_content_type(url: str) -> str:
    if image_io.is_data_url(url):
        header = url.split(",", 1)[0]
        return header[len("data:"):].split(";", 1)[0] or "image/png"
    guessed, _ = mimetypes.guess_type(url.split("?", 1)[0])
    return guessed or "image/png"
