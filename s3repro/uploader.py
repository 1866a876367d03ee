"""
Multipart upload coordinator

Drives the multipart protocol against an S3Client:

- Ensure the bucket exists
- Initiate the upload
- Upload one part per chunk read from the source
- Complete with the parts ordered by part number

Any failure after initiation aborts the upload before the failure propagates,
so no orphaned multipart session is left on the store.
"""

import enum
import io
import itertools
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional, Set

from s3repro.cancellation import CancellationToken
from s3repro.chunking import DEFAULT_CHUNK_SIZE, READ_SIZE, chunk_length, iter_chunks
from s3repro.errors import AbortFailure, InvalidStateTransition, StoreCallError

logger = logging.getLogger(__name__)


class UploadState(enum.Enum):
    NOT_STARTED = "not_started"
    INITIATED = "initiated"
    UPLOADING_PARTS = "uploading_parts"
    COMPLETED = "completed"
    ABORTED = "aborted"


ALLOWED_TRANSITIONS: Dict[UploadState, Set[UploadState]] = {
    UploadState.NOT_STARTED: {UploadState.INITIATED},
    UploadState.INITIATED: {UploadState.UPLOADING_PARTS, UploadState.ABORTED},
    UploadState.UPLOADING_PARTS: {UploadState.COMPLETED, UploadState.ABORTED},
    UploadState.COMPLETED: set(),
    UploadState.ABORTED: set(),
}


@dataclass(frozen=True)
class PartDescriptor:
    """Part number and ETag of one uploaded part"""

    part_number: int
    etag: str
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"PartNumber": self.part_number, "ETag": self.etag}


@dataclass
class UploadSession:
    """
    State of one multipart upload

    Parts are kept in arrival order, which is not necessarily part order
    when parts are uploaded concurrently. Use order_parts() before completing.
    """

    bucket: str
    key: str
    content_type: Optional[str] = None
    upload_id: Optional[str] = None
    parts: List[PartDescriptor] = field(default_factory=list)
    state: UploadState = UploadState.NOT_STARTED

    def transition(self, new_state: UploadState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"cannot move upload of {self.bucket}/{self.key} "
                f"from {self.state.value} to {new_state.value}"
            )
        logger.debug(
            "Upload %s: %s -> %s", self.upload_id, self.state.value, new_state.value
        )
        self.state = new_state

    def add_part(self, part: PartDescriptor) -> None:
        if self.state is not UploadState.UPLOADING_PARTS:
            raise InvalidStateTransition(
                f"cannot add part {part.part_number} in state {self.state.value}"
            )
        self.parts.append(part)

    @property
    def bytes_uploaded(self) -> int:
        return sum(p.size for p in self.parts)


@dataclass
class UploadResult:
    """Outcome of a successful upload"""

    bucket: str
    key: str
    upload_id: Optional[str]
    etag: Optional[str]
    part_count: int
    bytes_uploaded: int


def order_parts(parts: Iterable[PartDescriptor]) -> List[PartDescriptor]:
    """
    Sort parts ascending by part number for completion

    The store rejects out-of-order, duplicated or gapped part lists, so the
    sorted numbers must run 1, 2, ..., n.
    """
    ordered = sorted(parts, key=lambda p: p.part_number)
    for expected, part in enumerate(ordered, start=1):
        if part.part_number != expected:
            numbers = [p.part_number for p in ordered]
            raise ValueError(f"part numbers must be contiguous from 1, got {numbers}")
    return ordered


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class MultipartUploader:
    """
    Uploads a byte source to S3 as a multipart upload

    With max_concurrency=1 parts are read and uploaded strictly one after
    another. Larger values upload up to that many parts at once; part numbers
    still follow read order.
    """

    def __init__(
        self,
        client,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_concurrency: int = 1,
        read_size: int = READ_SIZE,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.client = client
        self.chunk_size = chunk_size
        self.max_concurrency = max_concurrency
        self.read_size = read_size

    def ensure_bucket(
        self, bucket: str, cancellation_token: Optional[CancellationToken] = None
    ) -> bool:
        """Create bucket if needed; an existing bucket is not an error"""
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()
        return self.client.create_bucket(bucket)

    def upload(
        self,
        bucket: str,
        key: str,
        source: BinaryIO,
        content_type: Optional[str] = "application/json",
        cancellation_token: Optional[CancellationToken] = None,
    ) -> UploadResult:
        """
        Upload source to bucket/key

        The source must be positioned at the start of the data. An empty
        source is stored with a single put_object, since completing a
        multipart upload without parts is rejected by S3.
        """
        if not bucket:
            raise ValueError("bucket name must not be empty")
        if not key:
            raise ValueError("object key must not be empty")

        token = cancellation_token or CancellationToken()
        content_type = None if _is_blank(content_type) else content_type

        self.ensure_bucket(bucket, token)

        chunks = iter_chunks(source, self.chunk_size, self.read_size)
        first = next(chunks, None)
        if first is None:
            return self._put_empty(bucket, key, content_type, token)

        session = UploadSession(bucket=bucket, key=key, content_type=content_type)
        token.raise_if_cancelled()
        session.upload_id = self.client.create_multipart_upload(
            session.bucket, session.key, session.content_type
        )
        session.transition(UploadState.INITIATED)
        logger.info("Initiated multipart upload %s for %s/%s", session.upload_id, bucket, key)

        # BaseException: KeyboardInterrupt aborts the session too
        try:
            session.transition(UploadState.UPLOADING_PARTS)
            remaining = itertools.chain([first], chunks)
            if self.max_concurrency > 1:
                self._upload_parts_concurrently(session, remaining, token)
            else:
                self._upload_parts(session, remaining, token)
            response = self._complete(session, token)
        except BaseException as e:
            self._abort(session, e)
            raise

        session.transition(UploadState.COMPLETED)
        logger.info(
            "Completed multipart upload %s: %d parts, %d bytes",
            session.upload_id,
            len(session.parts),
            session.bytes_uploaded,
        )
        return UploadResult(
            bucket=bucket,
            key=key,
            upload_id=session.upload_id,
            etag=response.get("ETag"),
            part_count=len(session.parts),
            bytes_uploaded=session.bytes_uploaded,
        )

    def _put_empty(
        self,
        bucket: str,
        key: str,
        content_type: Optional[str],
        token: CancellationToken,
    ) -> UploadResult:
        token.raise_if_cancelled()
        logger.info("Source for %s/%s is empty, storing with put_object", bucket, key)
        response = self.client.put_object(bucket, key, b"", content_type)
        return UploadResult(
            bucket=bucket,
            key=key,
            upload_id=None,
            etag=response.get("ETag"),
            part_count=0,
            bytes_uploaded=0,
        )

    def _upload_part(
        self, session: UploadSession, part_number: int, chunk: io.BytesIO
    ) -> PartDescriptor:
        size = chunk_length(chunk)
        etag = self.client.upload_part(
            session.bucket, session.key, part_number, session.upload_id, chunk
        )
        logger.debug("Uploaded part %d (%d bytes) of %s", part_number, size, session.upload_id)
        return PartDescriptor(part_number=part_number, etag=etag, size=size)

    def _upload_parts(
        self,
        session: UploadSession,
        chunks: Iterator[io.BytesIO],
        token: CancellationToken,
    ) -> None:
        for part_number, chunk in enumerate(chunks, start=1):
            token.raise_if_cancelled()
            session.add_part(self._upload_part(session, part_number, chunk))

    def _upload_parts_concurrently(
        self,
        session: UploadSession,
        chunks: Iterator[io.BytesIO],
        token: CancellationToken,
    ) -> None:
        pending: Set[Future] = set()

        def collect(done: Set[Future]) -> None:
            for future in done:
                session.add_part(future.result())

        with ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            try:
                for part_number, chunk in enumerate(chunks, start=1):
                    token.raise_if_cancelled()
                    if len(pending) >= self.max_concurrency:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        collect(done)
                    pending.add(
                        executor.submit(self._upload_part, session, part_number, chunk)
                    )
                done, pending = wait(pending)
                collect(done)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

    def _complete(self, session: UploadSession, token: CancellationToken) -> Dict[str, Any]:
        parts = order_parts(session.parts)
        token.raise_if_cancelled()
        return self.client.complete_multipart_upload(
            session.bucket,
            session.key,
            session.upload_id,
            [p.to_dict() for p in parts],
        )

    def _abort(self, session: UploadSession, error: BaseException) -> None:
        """
        Abort the session after error

        An abort failure never replaces error. It is logged and attached to
        error as abort_error.
        """
        logger.warning(
            "Aborting multipart upload %s for %s/%s after %s: %s",
            session.upload_id,
            session.bucket,
            session.key,
            type(error).__name__,
            error,
        )
        try:
            self.client.abort_multipart_upload(session.bucket, session.key, session.upload_id)
        except StoreCallError as e:
            failure = AbortFailure(session.upload_id, e.detail, code=e.code)
            failure.__cause__ = e
            self._record_abort_failure(error, failure)
        except Exception as e:
            failure = AbortFailure(session.upload_id, str(e))
            failure.__cause__ = e
            self._record_abort_failure(error, failure)
        finally:
            session.transition(UploadState.ABORTED)

    @staticmethod
    def _record_abort_failure(error: BaseException, failure: AbortFailure) -> None:
        logger.warning("Abort failed: %s", failure)
        error.abort_error = failure
