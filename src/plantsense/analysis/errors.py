"""Error taxonomy for the analysis workflow.

Cycle errors carry an :class:`ErrorKind` and a user-facing message. None of
them are retried automatically.
"""

from __future__ import annotations

from plantsense.analysis.models import ErrorInfo, ErrorKind


class AnalysisError(Exception):
    """Base class for errors that end a single capture/analyze cycle."""

    kind: ErrorKind
    default_message: str = "An unknown error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message)


class ReadError(AnalysisError):
    kind = ErrorKind.READ
    default_message = "Could not read the selected file."


class CaptureError(AnalysisError):
    kind = ErrorKind.CAPTURE
    default_message = "Could not capture an image from the live feed."


class EmptyResponseError(AnalysisError):
    kind = ErrorKind.EMPTY_RESPONSE
    default_message = "The AI model returned an empty response."


class MalformedResponseError(AnalysisError):
    kind = ErrorKind.MALFORMED_RESPONSE
    default_message = "The AI model returned an invalid response format. Please try again."


class ProviderError(AnalysisError):
    kind = ErrorKind.PROVIDER
    default_message = (
        "Failed to analyze the image. The AI model could not be reached or failed to process "
        "the request. Please check your connection and try again."
    )


class SessionUsageError(Exception):
    """Raised synchronously when a session operation is not allowed right now."""


class NotAuthenticatedError(SessionUsageError):
    def __init__(self) -> None:
        super().__init__("An authenticated user is required to start an analysis")


class InvalidTransitionError(SessionUsageError):
    pass
