"""Tests for the local and S3 blob stores."""

import io
import os
from unittest.mock import patch

import pytest

from image_processor.core.exceptions import (
    BlobNotFoundError,
    InvalidPathError,
    StoreIOError,
)
from image_processor.storage.blob_store import (
    LocalBlobStore,
    S3BlobStore,
    content_type_for,
    normalize_path,
)
from image_processor.testing.fakes import FakeS3Client


class TestNormalizePath:
    """Tests for normalize_path."""

    def test_keeps_relative_paths(self):
        assert normalize_path("original/abc.jpg") == "original/abc.jpg"
        assert normalize_path("original/./abc.jpg") == "original/abc.jpg"

    @pytest.mark.parametrize("path", ["", "/etc/passwd", "../outside.jpg", "a/../../b.jpg"])
    def test_rejects_unsafe_paths(self, path):
        with pytest.raises(InvalidPathError):
            normalize_path(path)


def test_content_type_for():
    assert content_type_for("processed/a.JPG") == "image/jpeg"
    assert content_type_for("processed/a.png") == "image/png"
    assert content_type_for("processed/a.gif") == "image/gif"
    assert content_type_for("processed/a.bin") == "application/octet-stream"


class TestLocalBlobStore:
    """Tests for LocalBlobStore."""

    def test_save_and_read(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))

        store.save("original/abc.jpg", io.BytesIO(b"jpeg bytes"))

        assert store.read("original/abc.jpg") == b"jpeg bytes"
        assert (tmp_path / "original" / "abc.jpg").read_bytes() == b"jpeg bytes"

    def test_save_overwrites(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        store.save("a/b.png", io.BytesIO(b"one"))

        store.save("a/b.png", io.BytesIO(b"two"))

        assert store.read("a/b.png") == b"two"

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))

        store.save("original/abc.jpg", io.BytesIO(b"data"))

        assert os.listdir(tmp_path / "original") == ["abc.jpg"]

    def test_failed_rename_keeps_previous_content(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        store.save("original/abc.jpg", io.BytesIO(b"old"))

        with patch("image_processor.storage.blob_store.os.replace", side_effect=OSError("no space")):
            with pytest.raises(StoreIOError, match="save blob failed"):
                store.save("original/abc.jpg", io.BytesIO(b"new"))

        assert store.read("original/abc.jpg") == b"old"
        assert os.listdir(tmp_path / "original") == ["abc.jpg"]

    def test_read_missing_raises_not_found(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))

        with pytest.raises(BlobNotFoundError) as exc_info:
            store.read("original/missing.jpg")

        assert exc_info.value.path == "original/missing.jpg"

    def test_delete_is_idempotent(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        store.save("thumbnail/abc.gif", io.BytesIO(b"gif"))

        store.delete("thumbnail/abc.gif")
        store.delete("thumbnail/abc.gif")

        assert not store.exists("thumbnail/abc.gif")

    def test_exists(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        store.save("original/abc.png", io.BytesIO(b"png"))

        assert store.exists("original/abc.png")
        assert not store.exists("original/other.png")

    def test_rejects_escaping_paths(self, tmp_path):
        store = LocalBlobStore(str(tmp_path / "root"))

        with pytest.raises(InvalidPathError):
            store.save("../escape.jpg", io.BytesIO(b"x"))

        assert not (tmp_path / "escape.jpg").exists()


class TestS3BlobStore:
    """Tests for S3BlobStore against the fake S3 client."""

    @pytest.fixture
    def s3_client(self):
        client = FakeS3Client()
        client.create_bucket("images")
        return client

    def test_save_uses_prefix_and_content_type(self, s3_client):
        store = S3BlobStore(s3_client, "images", prefix="/prod/")

        store.save("processed/abc.png", io.BytesIO(b"png"))

        obj = s3_client.get_bucket("images").get_object("prod/processed/abc.png")
        assert obj.body == b"png"
        assert obj.content_type == "image/png"

    def test_read(self, s3_client):
        store = S3BlobStore(s3_client, "images")
        store.save("original/abc.jpg", io.BytesIO(b"jpeg"))

        assert store.read("original/abc.jpg") == b"jpeg"

    def test_read_missing_raises_not_found(self, s3_client):
        store = S3BlobStore(s3_client, "images")

        with pytest.raises(BlobNotFoundError):
            store.read("original/missing.jpg")

    def test_delete_is_idempotent(self, s3_client):
        store = S3BlobStore(s3_client, "images")
        store.save("original/abc.jpg", io.BytesIO(b"jpeg"))

        store.delete("original/abc.jpg")
        store.delete("original/abc.jpg")

        assert not store.exists("original/abc.jpg")

    def test_exists(self, s3_client):
        store = S3BlobStore(s3_client, "images")
        store.save("original/abc.jpg", io.BytesIO(b"jpeg"))

        assert store.exists("original/abc.jpg")
        assert not store.exists("original/nope.jpg")

    def test_client_failure_becomes_store_error(self, s3_client):
        store = S3BlobStore(s3_client, "images")
        s3_client.set_failure_mode(True, "service unavailable")

        with pytest.raises(StoreIOError, match="service unavailable"):
            store.save("original/abc.jpg", io.BytesIO(b"jpeg"))

    def test_missing_bucket_becomes_store_error(self, s3_client):
        store = S3BlobStore(s3_client, "other-bucket")

        with pytest.raises(StoreIOError):
            store.exists("original/abc.jpg")
