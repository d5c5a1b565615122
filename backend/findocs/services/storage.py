"""Durable blob storage for uploaded files.

Uploads follow a two-step protocol: ``issue_upload_url`` hands out a
write location for a fresh object, ``put`` writes the bytes there, and
``normalize_path`` turns that location into the stable ``/objects/<name>``
path stored on the document row.
"""
from __future__ import annotations

import pathlib
import uuid
from datetime import timedelta
from typing import Iterator

import httpx
from loguru import logger
from minio import Minio
from minio.error import S3Error

from findocs.core.config import get_settings, Settings
from findocs.core.errors import NotFoundError, UpstreamServiceError

OBJECT_PREFIX = "/objects/"
LOCAL_SCHEME = "local://"
STREAM_CHUNK = 64 * 1024


def _object_name(path: str) -> str:
    if not path.startswith(OBJECT_PREFIX):
        raise NotFoundError(f"Object not found: {path}")
    name = path[len(OBJECT_PREFIX):]
    if not name or "/" in name or name.startswith("."):
        raise NotFoundError(f"Object not found: {path}")
    return name


class LocalObjectStore:
    """Filesystem store under ``upload_dir``; used for development and tests."""

    def __init__(self, root: str):
        self.root = pathlib.Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def issue_upload_url(self) -> str:
        return f"{LOCAL_SCHEME}{uuid.uuid4()}"

    def normalize_path(self, url: str) -> str:
        if not url.startswith(LOCAL_SCHEME):
            return url
        return OBJECT_PREFIX + url[len(LOCAL_SCHEME):]

    def put(self, url: str, data: bytes, content_type: str) -> None:
        target = self.root / _object_name(self.normalize_path(url))
        target.write_bytes(data)

    def _file(self, path: str) -> pathlib.Path:
        target = self.root / _object_name(path)
        if not target.is_file():
            raise NotFoundError(f"Object not found: {path}")
        return target

    def open_for_read(self, path: str) -> bytes:
        return self._file(path).read_bytes()

    def iter_chunks(self, path: str) -> Iterator[bytes]:
        target = self._file(path)

        def _gen():
            with target.open("rb") as f:
                while True:
                    chunk = f.read(STREAM_CHUNK)
                    if not chunk:
                        break
                    yield chunk
        return _gen()

    def delete(self, path: str) -> None:
        try:
            self._file(path).unlink()
        except NotFoundError:
            pass

    def ping(self) -> None:
        if not self.root.is_dir():
            raise UpstreamServiceError(f"Upload directory missing: {self.root}")


class MinioObjectStore:
    def __init__(self, settings: Settings):
        self.bucket = settings.minio_bucket
        self.expiry = timedelta(seconds=settings.upload_url_expiry_seconds)
        self._client = Minio(
            settings.minio_endpoint.replace("http://", "").replace("https://", ""),
            access_key=settings.minio_root_user,
            secret_key=settings.minio_root_password,
            secure=settings.minio_endpoint.startswith("https"),
        )
        self._bucket_checked = False

    def ensure_bucket(self):
        if self._bucket_checked:
            return
        if not self._client.bucket_exists(self.bucket):
            self._client.make_bucket(self.bucket)
        self._bucket_checked = True

    def issue_upload_url(self) -> str:
        self.ensure_bucket()
        return self._client.presigned_put_object(self.bucket, str(uuid.uuid4()), expires=self.expiry)

    def normalize_path(self, url: str) -> str:
        if url.startswith(OBJECT_PREFIX):
            return url
        # presigned URL: scheme://host/<bucket>/<object>?X-Amz-...
        raw_path = httpx.URL(url).path
        bucket_prefix = f"/{self.bucket}/"
        if not raw_path.startswith(bucket_prefix):
            return url
        return OBJECT_PREFIX + raw_path[len(bucket_prefix):]

    def put(self, url: str, data: bytes, content_type: str) -> None:
        try:
            r = httpx.put(url, content=data, headers={"Content-Type": content_type}, timeout=300)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamServiceError(f"Object upload failed: {e}") from e

    def _get(self, path: str):
        try:
            return self._client.get_object(self.bucket, _object_name(path))
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject"):
                raise NotFoundError(f"Object not found: {path}") from e
            raise UpstreamServiceError(f"Object read failed: {e}") from e

    def open_for_read(self, path: str) -> bytes:
        response = self._get(path)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def iter_chunks(self, path: str) -> Iterator[bytes]:
        response = self._get(path)

        def _gen():
            try:
                for chunk in response.stream(STREAM_CHUNK):
                    yield chunk
            finally:
                response.close()
                response.release_conn()
        return _gen()

    def delete(self, path: str) -> None:
        self._client.remove_object(self.bucket, _object_name(path))

    def ping(self) -> None:
        # list_objects is lazy; advance at most one item to validate access
        iterator = self._client.list_objects(self.bucket, recursive=False)
        next(iterator, None)


_store = None


def get_object_store():
    global _store
    if _store is None:
        settings = get_settings()
        if settings.storage_backend == "minio":
            _store = MinioObjectStore(settings)
        else:
            _store = LocalObjectStore(settings.upload_dir)
        logger.info(f"Object store backend={settings.storage_backend}")
    return _store


def set_object_store(store) -> None:
    """Replace the process-wide store (tests, alternative backends)."""
    global _store
    _store = store


def store_file(data: bytes, content_type: str, store=None) -> str:
    """Write ``data`` through an issued upload URL and return its normalized path."""
    store = store or get_object_store()
    upload_url = store.issue_upload_url()
    object_path = store.normalize_path(upload_url)
    store.put(upload_url, data, content_type)
    return object_path
