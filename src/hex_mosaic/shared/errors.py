"""Exception taxonomy shared by the proxy server and the mosaic client."""

from typing import Optional

from hex_mosaic.shared.schemas import ErrorKind, ErrorResponse


class MosaicError(Exception):
    """Base class for everything raised by hex_mosaic."""


class InvalidDirection(MosaicError, ValueError):
    """Two coordinates passed as neighbors are not adjacent."""


class GenerationRejected(MosaicError):
    """A generation call finished without a usable image."""
    kind = ErrorKind.UPSTREAM
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, kind=self.kind)


class NoCandidate(GenerationRejected):
    kind = ErrorKind.NO_CANDIDATE

    def __init__(self, message: str = "No candidates in response"):
        super().__init__(message)


class NoImage(GenerationRejected):
    kind = ErrorKind.NO_IMAGE

    def __init__(self, message: str = "No image or text in response"):
        super().__init__(message)


class ModelReturnedText(GenerationRejected):
    kind = ErrorKind.MODEL_RETURNED_TEXT
    status_code = 400

    def __init__(self, text: str, message: str = "Model returned text instead of image"):
        super().__init__(message)
        self.text = text

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, kind=self.kind, text=self.text)


class ServiceError(GenerationRejected):
    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, kind=self.kind, details=self.details)


class ImageDecodeError(GenerationRejected):
    kind = ErrorKind.DECODE


def rejection_from_response(body: ErrorResponse) -> GenerationRejected:
    """Rebuilds the typed rejection described by an error body."""
    if body.kind == ErrorKind.NO_CANDIDATE:
        return NoCandidate(body.error)
    if body.kind == ErrorKind.NO_IMAGE:
        return NoImage(body.error)
    if body.kind == ErrorKind.MODEL_RETURNED_TEXT:
        return ModelReturnedText(body.text or "", body.error)
    if body.kind == ErrorKind.DECODE:
        return ImageDecodeError(body.error)
    return ServiceError(body.error, body.details)
