"""
Multipart upload coordinator tests against an in-memory store

Covers the protocol order, part numbering, abort-on-failure and
cancellation without any network.
"""

import io

import pytest

from s3repro.cancellation import CancellationToken
from s3repro.errors import (
    AbortFailure,
    SourceReadError,
    StoreCallError,
    UploadCancelled,
)
from s3repro.uploader import MultipartUploader

MiB = 1024 * 1024
CHUNK = 8 * 1024


class FlakySource(io.BytesIO):
    """BytesIO that raises once fail_at bytes have been read"""

    def __init__(self, data: bytes, fail_at: int):
        super().__init__(data)
        self.fail_at = fail_at

    def read(self, size=-1):
        if self.tell() >= self.fail_at:
            raise OSError("disk read error")
        return super().read(size)


class CancellingStore:
    """Wraps a store and cancels the token once part cancel_after is uploaded"""

    def __init__(self, store, token, cancel_after):
        self.store = store
        self.token = token
        self.cancel_after = cancel_after

    def __getattr__(self, name):
        return getattr(self.store, name)

    def upload_part(self, bucket_name, key, part_number, upload_id, body):
        etag = self.store.upload_part(bucket_name, key, part_number, upload_id, body)
        if part_number == self.cancel_after:
            self.token.cancel("user pressed stop")
        return etag


def test_protocol_order(fake_store):
    uploader = MultipartUploader(fake_store, chunk_size=CHUNK)

    uploader.upload("bucket", "key", io.BytesIO(b"x" * (2 * CHUNK)))

    assert fake_store.operations == [
        "create_bucket",
        "create_multipart_upload",
        "upload_part",
        "upload_part",
        "complete_multipart_upload",
    ]


def test_25_mib_source_uses_three_parts(fake_store):
    data = bytes(range(256)) * (25 * MiB // 256)

    result = MultipartUploader(fake_store).upload("bucket-name", "random.json", io.BytesIO(data))

    part_calls = fake_store.calls_to("upload_part")
    assert [c[1][2] for c in part_calls] == [1, 2, 3]
    assert [c[1][4] for c in part_calls] == [10 * MiB, 10 * MiB, 5 * MiB]

    assert len(fake_store.calls_to("complete_multipart_upload")) == 1
    completed = fake_store.completed_parts[0]
    assert [p["PartNumber"] for p in completed] == [1, 2, 3]
    assert fake_store.objects[("bucket-name", "random.json")] == data
    assert result.part_count == 3
    assert result.bytes_uploaded == len(data)


def test_all_parts_share_upload_id(fake_store):
    MultipartUploader(fake_store, chunk_size=CHUNK).upload(
        "bucket", "key", io.BytesIO(b"y" * (3 * CHUNK + 1))
    )

    upload_ids = {c[1][3] for c in fake_store.calls_to("upload_part")}
    assert upload_ids == {"upload-1"}


@pytest.mark.parametrize("multiple", [1, 2, 5])
def test_exact_multiple_uploads_no_empty_part(fake_store, multiple):
    MultipartUploader(fake_store, chunk_size=CHUNK).upload(
        "bucket", "key", io.BytesIO(b"z" * (multiple * CHUNK))
    )

    sizes = [c[1][4] for c in fake_store.calls_to("upload_part")]
    assert sizes == [CHUNK] * multiple


def test_content_type_passed_on_initiation(fake_store):
    MultipartUploader(fake_store).upload(
        "bucket", "key", io.BytesIO(b"{}"), content_type="text/plain"
    )

    assert fake_store.calls_to("create_multipart_upload")[0][1][2] == "text/plain"


@pytest.mark.parametrize("content_type", [None, "", "   "])
def test_blank_content_type_not_sent(fake_store, content_type):
    MultipartUploader(fake_store).upload(
        "bucket", "key", io.BytesIO(b"{}"), content_type=content_type
    )

    assert fake_store.calls_to("create_multipart_upload")[0][1][2] is None


def test_empty_source_uses_put_object(fake_store):
    result = MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b""))

    assert fake_store.operations == ["create_bucket", "put_object"]
    assert fake_store.objects[("bucket", "key")] == b""
    assert result.part_count == 0
    assert result.upload_id is None


def test_existing_bucket_is_not_an_error(fake_store):
    fake_store.buckets.add("bucket")

    result = MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert result.part_count == 1


@pytest.mark.parametrize("failing_part", [1, 2, 3])
def test_part_failure_aborts_once(fake_store, failing_part):
    error = StoreCallError("upload_part", "InternalError", code="InternalError")
    fake_store.failures[("upload_part", failing_part)] = error

    with pytest.raises(StoreCallError) as exc_info:
        MultipartUploader(fake_store, chunk_size=CHUNK).upload(
            "bucket", "key", io.BytesIO(b"p" * (3 * CHUNK))
        )

    assert exc_info.value is error
    aborts = fake_store.calls_to("abort_multipart_upload")
    assert len(aborts) == 1
    assert aborts[0][1] == ("bucket", "key", "upload-1")
    assert fake_store.calls_to("complete_multipart_upload") == []
    assert len(fake_store.calls_to("upload_part")) == failing_part


def test_source_read_failure_aborts(fake_store):
    source = FlakySource(b"r" * (3 * CHUNK), fail_at=CHUNK)

    with pytest.raises(SourceReadError):
        MultipartUploader(fake_store, chunk_size=CHUNK).upload("bucket", "key", source)

    assert len(fake_store.calls_to("upload_part")) == 1
    assert len(fake_store.calls_to("abort_multipart_upload")) == 1


def test_read_failure_before_initiation_does_not_abort(fake_store):
    source = FlakySource(b"r" * CHUNK, fail_at=0)

    with pytest.raises(SourceReadError):
        MultipartUploader(fake_store, chunk_size=CHUNK).upload("bucket", "key", source)

    assert fake_store.operations == ["create_bucket"]


def test_initiation_failure_does_not_abort(fake_store):
    fake_store.failures["create_multipart_upload"] = StoreCallError(
        "create_multipart_upload", "AccessDenied", code="AccessDenied"
    )

    with pytest.raises(StoreCallError):
        MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert fake_store.calls_to("abort_multipart_upload") == []


def test_bucket_failure_stops_before_initiation(fake_store):
    fake_store.failures["create_bucket"] = StoreCallError(
        "create_bucket", "AccessDenied", code="AccessDenied"
    )

    with pytest.raises(StoreCallError):
        MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert fake_store.operations == ["create_bucket"]


def test_complete_failure_aborts(fake_store):
    error = StoreCallError("complete_multipart_upload", "InvalidPart", code="InvalidPart")
    fake_store.failures["complete_multipart_upload"] = error

    with pytest.raises(StoreCallError) as exc_info:
        MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert exc_info.value is error
    assert len(fake_store.calls_to("abort_multipart_upload")) == 1


def test_abort_failure_keeps_original_error(fake_store):
    original = StoreCallError("upload_part", "SlowDown", code="SlowDown")
    fake_store.failures[("upload_part", 2)] = original
    fake_store.failures["abort_multipart_upload"] = StoreCallError(
        "abort_multipart_upload", "NoSuchUpload", code="NoSuchUpload"
    )

    with pytest.raises(StoreCallError) as exc_info:
        MultipartUploader(fake_store, chunk_size=CHUNK).upload(
            "bucket", "key", io.BytesIO(b"q" * (2 * CHUNK))
        )

    error = exc_info.value
    assert error is original
    assert isinstance(error.abort_error, AbortFailure)
    assert error.abort_error.code == "NoSuchUpload"
    assert error.abort_error.upload_id == "upload-1"
    assert "abort also failed" in str(error)


def test_abort_failure_is_logged(fake_store, caplog):
    fake_store.failures[("upload_part", 1)] = StoreCallError("upload_part", "boom")
    fake_store.failures["abort_multipart_upload"] = RuntimeError("connection reset")

    with pytest.raises(StoreCallError):
        MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert "Abort failed" in caplog.text
    assert "connection reset" in caplog.text


def test_unexpected_error_still_aborts(fake_store):
    fake_store.failures[("upload_part", 1)] = RuntimeError("bug in transport")

    with pytest.raises(RuntimeError):
        MultipartUploader(fake_store).upload("bucket", "key", io.BytesIO(b"data"))

    assert len(fake_store.calls_to("abort_multipart_upload")) == 1


def test_cancelled_before_start_makes_no_calls(fake_store):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(UploadCancelled):
        MultipartUploader(fake_store).upload(
            "bucket", "key", io.BytesIO(b"data"), cancellation_token=token
        )

    assert fake_store.operations == []


def test_cancelled_mid_upload_aborts(fake_store):
    token = CancellationToken()
    store = CancellingStore(fake_store, token, cancel_after=2)

    with pytest.raises(UploadCancelled) as exc_info:
        MultipartUploader(store, chunk_size=CHUNK).upload(
            "bucket", "key", io.BytesIO(b"c" * (4 * CHUNK)), cancellation_token=token
        )

    assert "user pressed stop" in str(exc_info.value)
    assert len(fake_store.calls_to("upload_part")) == 2
    assert len(fake_store.calls_to("abort_multipart_upload")) == 1
    assert fake_store.calls_to("complete_multipart_upload") == []


def test_cancelled_after_last_part_aborts_before_complete(fake_store):
    token = CancellationToken()
    store = CancellingStore(fake_store, token, cancel_after=1)

    with pytest.raises(UploadCancelled):
        MultipartUploader(store).upload(
            "bucket", "key", io.BytesIO(b"data"), cancellation_token=token
        )

    assert fake_store.calls_to("complete_multipart_upload") == []
    assert len(fake_store.calls_to("abort_multipart_upload")) == 1


@pytest.mark.parametrize("bucket,key", [("", "key"), ("bucket", "")])
def test_empty_names_rejected(fake_store, bucket, key):
    with pytest.raises(ValueError):
        MultipartUploader(fake_store).upload(bucket, key, io.BytesIO(b"data"))

    assert fake_store.operations == []


@pytest.mark.parametrize("kwargs", [{"chunk_size": 0}, {"max_concurrency": 0}])
def test_invalid_uploader_settings(fake_store, kwargs):
    with pytest.raises(ValueError):
        MultipartUploader(fake_store, **kwargs)
