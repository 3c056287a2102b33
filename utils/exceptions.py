"""Error taxonomy for the ingestion and retrieval pipeline.

Every error carries the HTTP status it maps to so the API layer can render a
uniform `{"success": false, "message": ...}` body without re-classifying.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ImageHostError(Exception):
    """Base class for errors raised by the image pipeline."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ImageHostError):
    """Bad input shape, size or type. Raised before any external call."""

    status_code = status.HTTP_400_BAD_REQUEST


class GatewayError(ImageHostError):
    """The external file API is misconfigured or unreachable.

    Args:
        message: Human readable description.
        retryable: False for operator problems such as missing credentials,
            True when the request itself failed at the transport level.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class UploadError(ImageHostError):
    """The remote upload failed or returned no usable file handle."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(ImageHostError):
    """A metadata store write failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFoundError(ImageHostError):
    """A record or a remote file path does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class FetchError(ImageHostError):
    """A resolved remote path could not be fetched."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def image_host_exception_handler(request: Request, exc: ImageHostError) -> JSONResponse:
    """Render an uncaught pipeline error as the standard failure envelope."""
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})
