"""Pydantic request/response schemas for the PlantSense API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AnalysisResultOut(_FromDomain):
    """A plant diagnosis."""

    is_healthy: bool
    issue_name: str = Field(description='Issue name, "Healthy Plant", or "Invalid Image" for rejected images')
    description: str
    recommendations: list[str]


class AnalysisEventOut(_FromDomain):
    """One recorded analysis."""

    result: AnalysisResultOut
    image: str = Field(description="Data URL or feed URL of the analyzed image")
    timestamp: datetime


class SensorSampleOut(_FromDomain):
    """Simulated environment reading (live mode only)."""

    temperature: float = Field(description="Degrees Celsius (20.0-25.0)")
    humidity: int = Field(description="Relative humidity % (50-70)")
    light: int = Field(description="Illuminance in lux (10000-15000)")


class SessionErrorOut(_FromDomain):
    kind: str
    message: str


class SessionStateResponse(_FromDomain):
    """Snapshot of the caller's analysis session."""

    mode: str | None = Field(description="'upload', 'live', or null while selecting a mode")
    phase: str = Field(description="idle, loading, connecting, connected, analyzing, result, or error")
    image: str | None = None
    result: AnalysisResultOut | None = None
    error: SessionErrorOut | None = None
    sample: SensorSampleOut | None = None
    in_flight: int = 0
    live_armed: bool = False


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserOut(_FromDomain):
    id: str
    name: str
    email: str


class LoginResponse(BaseModel):
    """Bearer token plus the user's stored history, newest first."""

    token: str
    user: UserOut
    history: list[AnalysisEventOut]


class HistoryResponse(BaseModel):
    events: list[AnalysisEventOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    classifier_model: str
    active_sessions: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
