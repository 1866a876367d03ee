"""
Error taxonomy for the multipart upload reproduction

Every failure raised by the package derives from ReproError so callers can
tell a structured failure kind apart from an unexpected crash.
"""

from typing import Optional


class ReproError(Exception):
    """Base class for all s3repro failures"""

    kind = "ReproError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.abort_error: Optional["AbortFailure"] = None

    def __str__(self) -> str:
        if self.abort_error is not None:
            return f"{self.message} (abort also failed: {self.abort_error.message})"
        return self.message


class SourceReadError(ReproError):
    """Reading the next chunk from the byte source failed"""

    kind = "SourceReadError"


class StoreCallError(ReproError):
    """A call against the object store failed"""

    kind = "StoreCallError"

    def __init__(self, operation: str, detail: str, code: Optional[str] = None):
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
        self.code = code


class AbortFailure(StoreCallError):
    """The cleanup abort of a multipart upload failed"""

    kind = "AbortFailure"

    def __init__(self, upload_id: str, detail: str, code: Optional[str] = None):
        super().__init__("abort_multipart_upload", f"{detail} (upload {upload_id})", code=code)
        self.upload_id = upload_id


class ProvisioningError(ReproError):
    """The emulator environment failed to start or expose an endpoint"""

    kind = "ProvisioningError"


class UploadCancelled(ReproError):
    """The upload was cancelled at a network call boundary"""

    kind = "UploadCancelled"


class InvalidStateTransition(ReproError):
    """An upload session was driven through an illegal state change"""

    kind = "InvalidStateTransition"


class ConfigError(ReproError):
    """Configuration file or values are invalid"""

    kind = "ConfigError"
