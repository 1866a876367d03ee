"""
Reproduction harness for multipart uploads against S3 emulators

Starts an emulator container, uploads a payload with a hand-rolled multipart
upload and reports whether the emulator accepted it.
"""

from s3repro.cancellation import CancellationToken
from s3repro.chunking import DEFAULT_CHUNK_SIZE, iter_chunks, read_chunk
from s3repro.s3_client import S3Client
from s3repro.uploader import MultipartUploader, PartDescriptor, UploadResult, order_parts

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "DEFAULT_CHUNK_SIZE",
    "MultipartUploader",
    "PartDescriptor",
    "S3Client",
    "UploadResult",
    "iter_chunks",
    "order_parts",
    "read_chunk",
]
