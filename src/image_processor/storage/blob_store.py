"""Blob store implementations: local filesystem and S3."""

import os
import posixpath
import shutil
import tempfile
from typing import BinaryIO

from ..core.error_handling import is_not_found_error, with_store_errors
from ..core.exceptions import BlobNotFoundError, InvalidPathError
from ..core.image_utils import EXTENSION_FORMATS, CONTENT_TYPES, split_extension
from ..core.logging_config import get_logger
from ..core.protocols import S3ClientProtocol


def normalize_path(path: str) -> str:
    """
    Normalize a relative blob path.

    Raises InvalidPathError for empty, absolute or root-escaping paths.
    """
    if not path:
        raise InvalidPathError("blob path is empty")
    normalized = posixpath.normpath(path.replace("\\", "/"))
    if normalized.startswith("/") or normalized == ".." or normalized.startswith("../"):
        raise InvalidPathError(f"blob path escapes the store root: {path}")
    return normalized


def content_type_for(path: str) -> str:
    image_format = EXTENSION_FORMATS.get(split_extension(path))
    if image_format is None:
        return "application/octet-stream"
    return CONTENT_TYPES[image_format]


class LocalBlobStore:
    """Blob store rooted at a local directory."""

    def __init__(self, base_path: str):
        self._base_path = os.path.abspath(base_path)
        self._logger = get_logger("image-processor.storage")

    @property
    def base_path(self) -> str:
        return self._base_path

    def _full_path(self, path: str) -> str:
        return os.path.join(self._base_path, *normalize_path(path).split("/"))

    @with_store_errors("save blob")
    def save(self, path: str, stream: BinaryIO) -> None:
        """
        Write ``stream`` to ``path``.

        The data goes to a temporary file next to the target and is renamed
        into place, so readers never observe a truncated blob.
        """
        full_path = self._full_path(path)
        directory = os.path.dirname(full_path)
        os.makedirs(directory, mode=0o755, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as tmp_file:
                shutil.copyfileobj(stream, tmp_file)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, full_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._logger.debug(f"Saved blob {path}")

    @with_store_errors("read blob")
    def read(self, path: str) -> bytes:
        full_path = self._full_path(path)
        try:
            with open(full_path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise BlobNotFoundError(path) from e

    @with_store_errors("delete blob")
    def delete(self, path: str) -> None:
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            self._logger.debug(f"Blob {path} already deleted")

    @with_store_errors("check blob")
    def exists(self, path: str) -> bool:
        return os.path.isfile(self._full_path(path))


class S3BlobStore:
    """Blob store backed by an S3 bucket, paths appended to a key prefix."""

    def __init__(self, s3_client: S3ClientProtocol, bucket: str, prefix: str = ""):
        self._s3_client = s3_client
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._logger = get_logger("image-processor.storage")

    def _key(self, path: str) -> str:
        normalized = normalize_path(path)
        if self._prefix:
            return f"{self._prefix}/{normalized}"
        return normalized

    @with_store_errors("save blob")
    def save(self, path: str, stream: BinaryIO) -> None:
        key = self._key(path)
        self._logger.debug(f"Uploading to s3://{self._bucket}/{key}")
        self._s3_client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=stream.read(),
            ContentType=content_type_for(path),
        )

    @with_store_errors("read blob")
    def read(self, path: str) -> bytes:
        key = self._key(path)
        self._logger.debug(f"Downloading from s3://{self._bucket}/{key}")
        try:
            response = self._s3_client.get_object(Bucket=self._bucket, Key=key)
        except Exception as e:
            if is_not_found_error(e):
                raise BlobNotFoundError(path) from e
            raise
        return response["Body"].read()

    @with_store_errors("delete blob")
    def delete(self, path: str) -> None:
        # S3 DeleteObject succeeds for missing keys.
        self._s3_client.delete_object(Bucket=self._bucket, Key=self._key(path))

    @with_store_errors("check blob")
    def exists(self, path: str) -> bool:
        try:
            self._s3_client.head_object(Bucket=self._bucket, Key=self._key(path))
        except Exception as e:
            if is_not_found_error(e):
                return False
            raise
        return True
