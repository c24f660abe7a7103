# tests/core/test_error_handling.py

import logging

import pytest
from botocore.exceptions import ClientError as BotocoreClientError
from botocore.exceptions import EndpointConnectionError
from PIL import UnidentifiedImageError as PILUnidentifiedImageError
from PIL.Image import DecompressionBombError
from sqlalchemy.exc import OperationalError

from image_processor.core.error_handling import (
    BestEffortContextManager,
    is_not_found_error,
    translate_errors,
    with_decode_errors,
    with_queue_errors,
    with_registry_errors,
    with_store_errors,
)
from image_processor.core.exceptions import (
    BlobNotFoundError,
    DecodeFailureError,
    ImageNotFoundError,
    QueueIOError,
    RegistryError,
    StoreIOError,
)


def client_error(code: str) -> BotocoreClientError:
    return BotocoreClientError({"Error": {"Code": code, "Message": code}}, "GetObject")


# --- Tests for is_not_found_error ---

@pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
def test_is_not_found_error_codes(code):
    assert is_not_found_error(client_error(code))


def test_is_not_found_error_other_codes():
    assert not is_not_found_error(client_error("AccessDenied"))
    assert not is_not_found_error(FileNotFoundError("x"))


# --- Tests for the translating decorators ---

class TestTranslateErrors:
    """Tests for translate_errors and its specialisations."""

    def test_success_passes_return_value(self):
        @with_store_errors("read")
        def read():
            return b"data"

        assert read() == b"data"

    def test_source_error_is_translated_and_chained(self):
        original = client_error("InternalError")

        @with_store_errors("save blob")
        def save():
            raise original

        with pytest.raises(StoreIOError, match="save blob failed") as exc_info:
            save()
        assert exc_info.value.__cause__ is original

    def test_domain_errors_pass_through(self):
        @with_store_errors("read blob")
        def read():
            raise BlobNotFoundError("x.jpg")

        with pytest.raises(BlobNotFoundError):
            read()

    def test_unrelated_errors_are_not_translated(self):
        @with_store_errors("read blob")
        def read():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            read()

    def test_os_error_becomes_store_error(self):
        @with_store_errors("save blob")
        def save():
            raise PermissionError("read-only file system")

        with pytest.raises(StoreIOError):
            save()

    def test_botocore_connection_error_becomes_queue_error(self):
        @with_queue_errors("send message")
        def send():
            raise EndpointConnectionError(endpoint_url="https://sqs.example")

        with pytest.raises(QueueIOError):
            send()

    def test_sqlalchemy_error_becomes_registry_error(self):
        @with_registry_errors("get image")
        def get():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(RegistryError, match="get image failed"):
            get()

    def test_registry_not_found_passes_through(self):
        @with_registry_errors("get image")
        def get():
            raise ImageNotFoundError("abc")

        with pytest.raises(ImageNotFoundError):
            get()

    @pytest.mark.parametrize(
        "error",
        [
            PILUnidentifiedImageError("bad"),
            DecompressionBombError("too many pixels"),
            OSError("truncated"),
            SyntaxError("broken PNG"),
        ],
    )
    def test_decode_errors(self, error):
        @with_decode_errors("decode image")
        def decode():
            raise error

        with pytest.raises(DecodeFailureError):
            decode()

    def test_translation_is_logged(self, caplog):
        @translate_errors("custom op", (ValueError,), StoreIOError)
        def op():
            raise ValueError("bad value")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(StoreIOError):
                op()

        assert "Error in 'custom op': bad value" in caplog.text

    def test_preserves_function_metadata(self):
        @with_store_errors("documented")
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."


# --- Tests for BestEffortContextManager ---

class TestBestEffortContextManager:
    """Tests for BestEffortContextManager."""

    def test_attempt_success(self):
        calls = []
        with BestEffortContextManager("cleanup") as cleanup:
            assert cleanup.attempt("a", lambda: calls.append("a")) is True

        assert calls == ["a"]
        assert cleanup.errors == []

    def test_attempt_records_domain_errors(self):
        def fail():
            raise StoreIOError("delete failed")

        with BestEffortContextManager("cleanup") as cleanup:
            assert cleanup.attempt("original/a.jpg", fail) is False
            assert cleanup.attempt("processed/a.jpg", lambda: None) is True

        assert cleanup.errors == [{"item": "original/a.jpg", "error": "delete failed"}]

    def test_unexpected_errors_propagate(self):
        def fail():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            with BestEffortContextManager("cleanup") as cleanup:
                cleanup.attempt("a", fail)

    def test_errors_are_logged_as_warnings(self, caplog):
        with caplog.at_level(logging.WARNING):
            with BestEffortContextManager("blob cleanup") as cleanup:
                cleanup.add_error("gone", "item-1")

        assert "blob cleanup completed with 1 error(s)." in caplog.text
        assert "item-1" in caplog.text

    def test_exit_does_not_suppress_exceptions(self):
        with pytest.raises(ValueError):
            with BestEffortContextManager("cleanup"):
                raise ValueError("escape")
