"""
End-to-end reproduction run

Provisions an emulator (unless an endpoint is configured), uploads a payload
with the multipart uploader, reads the object back and reports the outcome.
"""

import contextlib
import hashlib
import io
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, BinaryIO, Dict, Iterator, Optional

from s3repro.cancellation import CancellationToken
from s3repro.config import ReproConfig
from s3repro.errors import ReproError
from s3repro.payload import generate_random_json
from s3repro.provisioner import provision
from s3repro.s3_client import S3Client
from s3repro.uploader import MultipartUploader, UploadResult

logger = logging.getLogger(__name__)


class VerificationError(ReproError):
    """The stored object does not match the uploaded payload"""

    kind = "VerificationError"


@dataclass
class RunOutcome:
    """Result of one reproduction run"""

    image: str
    endpoint_url: Optional[str]
    success: bool
    duration: float
    error_kind: Optional[str] = None
    error: Optional[str] = None
    abort_error: Optional[str] = None
    part_count: int = 0
    bytes_uploaded: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@contextlib.contextmanager
def endpoint_for(config: ReproConfig) -> Iterator[str]:
    """Yield an S3 endpoint, starting an emulator when none is configured"""
    if config.endpoint_url:
        yield config.endpoint_url
        return

    with provision(
        image=config.image,
        internal_port=config.internal_port,
        startup_timeout=config.startup_timeout,
        keep=config.keep_container,
    ) as container:
        yield container.endpoint_url


def verify_object(client: S3Client, bucket: str, key: str, expected_sha256: str, size: int) -> None:
    head = client.head_object(bucket, key)
    if head["ContentLength"] != size:
        raise VerificationError(
            f"expected {size} bytes in {bucket}/{key}, got {head['ContentLength']}"
        )
    body = client.get_object(bucket, key)["Body"].read()
    actual = hashlib.sha256(body).hexdigest()
    if actual != expected_sha256:
        raise VerificationError(f"content of {bucket}/{key} differs from uploaded payload")


def upload_and_verify(
    client: S3Client,
    config: ReproConfig,
    payload: bytes,
    cancellation_token: Optional[CancellationToken] = None,
) -> UploadResult:
    uploader = MultipartUploader(
        client,
        chunk_size=config.chunk_size,
        max_concurrency=config.max_concurrency,
    )
    result = uploader.upload(
        config.bucket,
        config.key,
        io.BytesIO(payload),
        content_type=config.content_type,
        cancellation_token=cancellation_token,
    )
    verify_object(
        client, config.bucket, config.key, hashlib.sha256(payload).hexdigest(), len(payload)
    )
    return result


def run_reproduction(
    config: ReproConfig,
    source: Optional[BinaryIO] = None,
    cancellation_token: Optional[CancellationToken] = None,
) -> RunOutcome:
    """
    Run the reproduction once

    Failures of the ReproError family are reported in the outcome rather
    than raised; anything else is a bug and propagates.
    """
    payload = source.read() if source is not None else generate_random_json(config.payload_size)
    start = time.time()
    endpoint_url = config.endpoint_url

    try:
        with endpoint_for(config) as endpoint_url:
            client = S3Client(
                endpoint_url=endpoint_url,
                access_key=config.access_key,
                secret_key=config.secret_key,
                region=config.region,
                verify_ssl=config.verify_ssl,
            )
            result = upload_and_verify(client, config, payload, cancellation_token)
    except ReproError as e:
        logger.error("Reproduction against %s failed: %s", config.image, e)
        return RunOutcome(
            image=config.image,
            endpoint_url=endpoint_url,
            success=False,
            duration=time.time() - start,
            error_kind=e.kind,
            error=e.message,
            abort_error=str(e.abort_error) if e.abort_error else None,
        )

    return RunOutcome(
        image=config.image,
        endpoint_url=endpoint_url,
        success=True,
        duration=time.time() - start,
        part_count=result.part_count,
        bytes_uploaded=result.bytes_uploaded,
    )
