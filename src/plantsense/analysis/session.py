"""Analysis session: the capture/analyze state machine.

Architecture:
    start_upload -> ImageSource -> Classifier -> event -> HistorySink
    start_live   -> handshake -> [tick -> ImageSource -> Classifier -> event] every live_interval

Everything runs on one event loop. Each cycle captures the session epoch
when it starts; ``reset()`` and ``stop()`` bump the epoch and cancel the live
timer, so a cycle that completes afterwards is discarded instead of being
applied. In-flight classifier calls are never cancelled.

Live cycles may overlap. Every completed cycle is recorded, but the displayed
result only moves forward: a cycle that started before the one currently on
display is recorded and then ignored for display purposes.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from plantsense.analysis.errors import (
    AnalysisError,
    CaptureError,
    InvalidTransitionError,
    NotAuthenticatedError,
    ProviderError,
    ReadError,
)
from plantsense.analysis.models import AnalysisEvent, Mode, Phase, SessionState
from plantsense.analysis.sensors import sample_sensors

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from plantsense.analysis.classifier import Classifier
    from plantsense.analysis.image_source import ImageSource
    from plantsense.analysis.models import AnalysisResult, CapturedImage

logger = logging.getLogger(__name__)


class HistorySink(Protocol):
    """Receives every successful analysis. Failures are never surfaced to the session."""

    def record(self, user_id: str, event: AnalysisEvent) -> None: ...


class AuthGate(Protocol):
    """Reports which user, if any, is allowed to run analyses."""

    def current_user_id(self) -> str | None: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AnalysisSession:
    """Owns the session state and drives upload and live analysis cycles."""

    def __init__(
        self,
        source: ImageSource,
        classifier: Classifier,
        sink: HistorySink,
        auth: AuthGate,
        *,
        connect_delay: float = 2.5,
        live_interval: float = 10.0,
        skip_when_busy: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._source = source
        self._classifier = classifier
        self._sink = sink
        self._auth = auth
        self._connect_delay = connect_delay
        self._live_interval = live_interval
        self._skip_when_busy = skip_when_busy
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()  # noqa: S311

        self._state = SessionState()
        self._observers: list[Callable[[SessionState], None]] = []
        self._epoch = 0
        self._last_seq = 0
        self._displayed_seq = 0
        self._last_timestamp: datetime | None = None
        self._live_task: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Task[None]] = set()

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def in_flight(self) -> int:
        """Number of live cycles that have started but not finished."""
        return len(self._cycles)

    @property
    def live_armed(self) -> bool:
        return self._live_task is not None

    def subscribe(self, observer: Callable[[SessionState], None]) -> Callable[[], None]:
        """Register a callback invoked with every new state snapshot.

        Returns a function that removes the callback again.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def start_upload(self, data: bytes) -> SessionState:
        """Run one upload cycle to completion and return the resulting state.

        Raises:
            NotAuthenticatedError: No user is logged in.
            InvalidTransitionError: The session is not idle.
        """
        user_id = self._check_can_start()
        epoch = self._epoch
        seq = self._next_seq()
        self._update(mode=Mode.UPLOAD, phase=Phase.LOADING)

        try:
            image = await self._source.acquire_from_upload(data)
        except AnalysisError as exc:
            self._fail(exc, epoch, seq)
            return self._state
        except Exception:
            logger.exception("Unexpected failure reading upload")
            self._fail(ReadError(), epoch, seq)
            return self._state

        if not self._is_current(epoch):
            return self._state
        self._update(phase=Phase.ANALYZING, image=image.display_ref)
        await self._analyze(image, user_id, epoch, seq)
        return self._state

    async def start_live(self) -> None:
        """Begin the simulated device handshake and arm the recurring capture timer.

        Returns as soon as the live task is scheduled.

        Raises:
            NotAuthenticatedError: No user is logged in.
            InvalidTransitionError: The session is not idle.
        """
        self._check_can_start()
        self._update(mode=Mode.LIVE, phase=Phase.CONNECTING)
        self._live_task = asyncio.create_task(self._run_live(self._epoch), name="plantsense-live")

    def stop(self) -> None:
        """Leave live mode: cancel the timer and drop connection state.

        Raises:
            InvalidTransitionError: The session is not in live mode.
        """
        if self._state.mode is not Mode.LIVE:
            raise InvalidTransitionError("stop() is only valid in live mode")
        self._invalidate()
        self._replace(SessionState(mode=Mode.LIVE))
        logger.info("Live mode stopped")

    def reset(self) -> None:
        """Return to mode selection, discarding any in-flight work. Safe to call repeatedly."""
        self._invalidate()
        self._replace(SessionState())

    async def join(self) -> None:
        """Wait until every live cycle started so far has finished."""
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    async def aclose(self) -> None:
        """Shut down: stop the timer and cancel outstanding cycles."""
        live_task = self._live_task
        self._invalidate()
        pending = list(self._cycles)
        if live_task is not None:
            pending.append(live_task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._observers.clear()

    # -- Live loop ----------------------------------------------------------

    async def _run_live(self, epoch: int) -> None:
        try:
            await self._sleep(self._connect_delay)
            if not self._is_current(epoch):
                return
            logger.info("Live device connected")
            self._update(phase=Phase.CONNECTED)

            while self._is_current(epoch):
                self._tick(epoch)
                await self._sleep(self._live_interval)
        except asyncio.CancelledError:
            logger.debug("Live timer cancelled (epoch %d)", epoch)
            raise

    def _tick(self, epoch: int) -> None:
        user_id = self._auth.current_user_id()
        if user_id is None:
            logger.warning("No authenticated user; skipping live capture")
            return
        if self._skip_when_busy and self._cycles:
            logger.info("Previous live cycle still in flight; skipping capture")
            return

        task = asyncio.create_task(self._live_cycle(user_id, epoch, self._next_seq()))
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _live_cycle(self, user_id: str, epoch: int, seq: int) -> None:
        if not self._is_current(epoch):
            return
        self._update(phase=Phase.ANALYZING, sample=sample_sensors(self._rng))

        try:
            image = await self._source.acquire_from_live_feed()
        except AnalysisError as exc:
            self._fail(exc, epoch, seq)
            return
        except Exception:
            logger.exception("Unexpected failure capturing from live feed")
            self._fail(CaptureError(), epoch, seq)
            return

        if not self._is_current(epoch):
            return
        self._update(image=image.display_ref)
        await self._analyze(image, user_id, epoch, seq)

    # -- Cycle completion ---------------------------------------------------

    async def _analyze(self, image: CapturedImage, user_id: str, epoch: int, seq: int) -> None:
        try:
            result = await self._classifier.analyze(image.data)
        except AnalysisError as exc:
            self._fail(exc, epoch, seq)
            return
        except Exception:
            logger.exception("Unexpected classifier failure")
            self._fail(ProviderError(), epoch, seq)
            return

        if not self._is_current(epoch):
            logger.debug("Discarding result of stale cycle %d", seq)
            return

        event = AnalysisEvent(result=result, image=image.display_ref, timestamp=self._stamp())
        self._record(user_id, event)
        self._show(result, image.display_ref, seq)

    def _show(self, result: AnalysisResult, image: str, seq: int) -> None:
        if seq < self._displayed_seq:
            logger.info("Cycle %d finished after cycle %d; recorded but not displayed", seq, self._displayed_seq)
            return
        self._displayed_seq = seq
        phase = Phase.CONNECTED if self._state.mode is Mode.LIVE else Phase.RESULT
        self._update(phase=phase, image=image, result=result, error=None)

    def _fail(self, exc: AnalysisError, epoch: int, seq: int) -> None:
        if not self._is_current(epoch):
            logger.debug("Discarding %s from stale cycle %d", exc.kind, seq)
            return
        logger.warning("Analysis cycle %d failed: %s", seq, exc.message)
        if seq < self._displayed_seq:
            return
        self._displayed_seq = seq
        self._update(phase=Phase.ERROR, error=exc.to_info(), result=None)

    def _record(self, user_id: str, event: AnalysisEvent) -> None:
        try:
            self._sink.record(user_id, event)
        except Exception:
            logger.exception("History sink failed to record analysis for user %s", user_id)

    # -- Internal -----------------------------------------------------------

    def _check_can_start(self) -> str:
        user_id = self._auth.current_user_id()
        if user_id is None:
            raise NotAuthenticatedError
        if self._state.phase is not Phase.IDLE:
            raise InvalidTransitionError(f"Cannot start a new analysis while {self._state.phase}; reset first")
        return user_id

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def _next_seq(self) -> int:
        self._last_seq += 1
        return self._last_seq

    def _stamp(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _invalidate(self) -> None:
        self._epoch += 1
        self._displayed_seq = self._last_seq
        if self._live_task is not None:
            task, self._live_task = self._live_task, None
            task.cancel()

    def _update(self, **changes: object) -> None:
        self._replace(dataclasses.replace(self._state, **changes))

    def _replace(self, state: SessionState) -> None:
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                logger.exception("Session observer raised")
