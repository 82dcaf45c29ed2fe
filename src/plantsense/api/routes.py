"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from plantsense.analysis.errors import InvalidTransitionError, NotAuthenticatedError, SessionUsageError
from plantsense.api.middleware import require_token, require_user
from plantsense.api.schemas import (
    AnalysisEventOut,
    AnalysisResultOut,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    SensorSampleOut,
    SessionErrorOut,
    SessionStateResponse,
    UserOut,
)
from plantsense.services.auth import RegistrationError, User

if TYPE_CHECKING:
    from plantsense.analysis.session import AnalysisSession
    from plantsense.config import Settings
    from plantsense.services.auth import AuthService
    from plantsense.services.history import HistoryStore
    from plantsense.services.registry import SessionRegistry

router = APIRouter(prefix="/api/v1")

CurrentUser = Annotated[User, Depends(require_user)]

_SESSION_ERRORS = {
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_auth(request: Request) -> AuthService:
    auth: AuthService = request.app.state.auth
    return auth


def _get_history(request: Request) -> HistoryStore:
    history: HistoryStore = request.app.state.history
    return history


def _get_registry(request: Request) -> SessionRegistry:
    registry: SessionRegistry = request.app.state.sessions
    return registry


def _snapshot(session: AnalysisSession) -> SessionStateResponse:
    state = session.state
    return SessionStateResponse(
        mode=state.mode.value if state.mode is not None else None,
        phase=state.phase.value,
        image=state.image,
        result=AnalysisResultOut.model_validate(state.result) if state.result is not None else None,
        error=SessionErrorOut(kind=state.error.kind.value, message=state.error.message) if state.error else None,
        sample=SensorSampleOut.model_validate(state.sample) if state.sample is not None else None,
        in_flight=session.in_flight,
        live_armed=session.live_armed,
    )


def _usage_error(exc: SessionUsageError) -> HTTPException:
    if isinstance(exc, NotAuthenticatedError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _login_response(request: Request, user: User, token: str) -> LoginResponse:
    history = _get_history(request).get_history(user.id)
    return LoginResponse(
        token=token,
        user=UserOut.model_validate(user),
        history=[AnalysisEventOut.model_validate(event) for event in history],
    )


# -- Auth -------------------------------------------------------------------


@router.post(
    "/auth/register",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Create an account and log in",
)
async def register(request: Request, body: RegisterRequest) -> LoginResponse:
    try:
        user, token = _get_auth(request).register(body.name, body.email, body.password)
    except RegistrationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _login_response(request, user, token)


@router.post(
    "/auth/login",
    response_model=LoginResponse,
    responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}},
    summary="Log in and replay stored history",
)
async def login(request: Request, body: LoginRequest) -> LoginResponse:
    outcome = _get_auth(request).login(body.email, body.password)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password. Please try again.",
        )
    user, token = outcome
    return _login_response(request, user, token)


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT, summary="End the current login")
async def logout(request: Request, user: CurrentUser, token: Annotated[str, Depends(require_token)]) -> None:
    auth = _get_auth(request)
    auth.logout(token)
    if not auth.is_logged_in(user.id):
        session = _get_registry(request).discard(user.id)
        if session is not None:
            await session.aclose()


# -- Session ----------------------------------------------------------------


@router.get("/session", response_model=SessionStateResponse, summary="Current session state")
async def get_session(request: Request, user: CurrentUser) -> SessionStateResponse:
    return _snapshot(_get_registry(request).get(user.id))


@router.post(
    "/session/upload",
    response_model=SessionStateResponse,
    responses=_SESSION_ERRORS,
    summary="Analyze an uploaded plant image",
)
async def upload(request: Request, user: CurrentUser, file: UploadFile) -> SessionStateResponse:
    """Run one upload cycle. Analysis failures are reported in the returned state."""
    session = _get_registry(request).get(user.id)
    data = await file.read()
    try:
        await session.start_upload(data)
    except SessionUsageError as exc:
        raise _usage_error(exc) from exc
    return _snapshot(session)


@router.post(
    "/session/live",
    response_model=SessionStateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_SESSION_ERRORS,
    summary="Connect to the live device feed",
)
async def start_live(request: Request, user: CurrentUser) -> SessionStateResponse:
    session = _get_registry(request).get(user.id)
    try:
        await session.start_live()
    except SessionUsageError as exc:
        raise _usage_error(exc) from exc
    return _snapshot(session)


@router.post(
    "/session/stop",
    response_model=SessionStateResponse,
    responses=_SESSION_ERRORS,
    summary="Disconnect from the live feed",
)
async def stop_live(request: Request, user: CurrentUser) -> SessionStateResponse:
    session = _get_registry(request).get(user.id)
    try:
        session.stop()
    except SessionUsageError as exc:
        raise _usage_error(exc) from exc
    return _snapshot(session)


@router.post("/session/reset", response_model=SessionStateResponse, summary="Return to mode selection")
async def reset(request: Request, user: CurrentUser) -> SessionStateResponse:
    session = _get_registry(request).get(user.id)
    session.reset()
    return _snapshot(session)


# -- History / health -------------------------------------------------------


@router.get("/history", response_model=HistoryResponse, summary="Analysis history, newest first")
async def history(request: Request, user: CurrentUser) -> HistoryResponse:
    events = _get_history(request).get_history(user.id)
    return HistoryResponse(events=[AnalysisEventOut.model_validate(event) for event in events])


@router.delete("/history", status_code=status.HTTP_204_NO_CONTENT, summary="Delete the user's analysis history")
async def clear_history(request: Request, user: CurrentUser) -> None:
    _get_history(request).clear(user.id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    return HealthResponse(
        status="ok",
        classifier_model=settings.gemini_model,
        active_sessions=_get_registry(request).active_count,
    )
