"""Value objects and session state for the analysis workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

INVALID_IMAGE = "Invalid Image"


class Mode(StrEnum):
    UPLOAD = "upload"
    LIVE = "live"


class Phase(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ANALYZING = "analyzing"
    RESULT = "result"
    ERROR = "error"


class ErrorKind(StrEnum):
    READ = "read_error"
    CAPTURE = "capture_error"
    EMPTY_RESPONSE = "empty_response_error"
    MALFORMED_RESPONSE = "malformed_response_error"
    PROVIDER = "provider_error"


@dataclass(frozen=True)
class AnalysisResult:
    """A validated diagnosis returned by the classifier."""

    is_healthy: bool
    issue_name: str
    description: str
    recommendations: tuple[str, ...] = ()

    @property
    def is_invalid_image(self) -> bool:
        """True when the classifier rejected the image as not a real plant photo."""
        return self.issue_name == INVALID_IMAGE


@dataclass(frozen=True)
class CapturedImage:
    """JPEG bytes for the classifier plus a reference the view layer can redisplay."""

    data: bytes = field(repr=False)
    display_ref: str


@dataclass(frozen=True)
class AnalysisEvent:
    """One successful analysis, handed to the history sink on emission."""

    result: AnalysisResult
    image: str
    timestamp: datetime


@dataclass(frozen=True)
class SensorSample:
    """Simulated environment reading taken alongside a live capture."""

    temperature: float
    humidity: int
    light: int


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of an analysis session.

    ``result`` and ``error`` are never both set.
    """

    mode: Mode | None = None
    phase: Phase = Phase.IDLE
    image: str | None = None
    result: AnalysisResult | None = None
    error: ErrorInfo | None = None
    sample: SensorSample | None = None
