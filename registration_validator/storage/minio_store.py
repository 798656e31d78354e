from __future__ import annotations

import io
import logging

from minio import Minio
from minio.error import S3Error

from ..config import settings
from .base import StorageBackend
from .local_store import LocalStorage


class MinioStorage(StorageBackend):
    def __init__(self, client: Minio, bucket: str) -> None:
        self.client = client
        self.bucket = bucket
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_checked = True

    def save_bytes(self, key: str, data: bytes) -> str:
        self._ensure_bucket()
        self.client.put_object(
            self.bucket,
            key,
            io.BytesIO(data),
            length=len(data),
            content_type="image/png" if key.endswith(".png") else "application/octet-stream",
        )
        return f"s3://{self.bucket}/{key}"

    def get_bytes(self, key: str) -> bytes:
        try:
            response = self.client.get_object(self.bucket, key)
        except S3Error as exc:
            if exc.code in {"NoSuchKey", "NoSuchBucket"}:
                raise KeyError(key) from exc
            raise
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()


def get_storage() -> StorageBackend:
    if settings.screenshot_backend == "minio":
        client = Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        return MinioStorage(client, settings.minio_bucket)
    if settings.screenshot_backend != "local":
        logging.warning("unknown_screenshot_backend value=%s using=local", settings.screenshot_backend)
    return LocalStorage(settings.screenshot_dir)
