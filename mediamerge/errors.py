"""Error taxonomy shared by the request handlers.

Every error carries the HTTP status it maps to and a public message that is safe to show
to clients. Diagnostic detail (engine stderr, paths) stays in ``detail`` and is only logged.
"""

from typing import Optional


class MediaServiceError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None, detail: str = "", stage: str = ""):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.detail = detail
        self.stage = stage


class ValidationError(MediaServiceError):
    status_code = 400
    message = "Invalid request"


class UploadTooLarge(MediaServiceError):
    status_code = 413
    message = "File too large"


class ProbeError(MediaServiceError):
    message = "Error reading media metadata"


class EngineError(MediaServiceError):
    message = "Error processing media"


class TransferError(MediaServiceError):
    message = "Error sending processed file"
