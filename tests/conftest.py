"""Shared fakes for the analysis workflow tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from plantsense.analysis.errors import CaptureError, ReadError
from plantsense.analysis.models import AnalysisResult, CapturedImage
from plantsense.analysis.session import AnalysisSession

if TYPE_CHECKING:
    from collections.abc import Callable

    from plantsense.analysis.models import AnalysisEvent

HEALTHY = AnalysisResult(
    is_healthy=True,
    issue_name="Healthy Plant",
    description="No visible issues.",
    recommendations=("Water twice a week",),
)


class StubSource:
    """Image source that never touches disk or network."""

    def __init__(self) -> None:
        self.live_captures = 0
        self.fail_live = False

    async def acquire_from_upload(self, data: bytes) -> CapturedImage:
        if data == b"unreadable":
            raise ReadError()
        return CapturedImage(data=data, display_ref="data:image/jpeg;base64,dXBsb2Fk")

    async def acquire_from_live_feed(self) -> CapturedImage:
        self.live_captures += 1
        if self.fail_live:
            raise CaptureError()
        return CapturedImage(data=b"frame", display_ref=f"frame-{self.live_captures}")


class StubClassifier:
    """Classifier whose replies are scripted per call number (1-based).

    ``hold(n)`` makes call ``n`` wait until the returned event is set.
    """

    def __init__(self) -> None:
        self.calls = 0
        self.default: AnalysisResult = HEALTHY
        self.results: dict[int, AnalysisResult] = {}
        self.errors: dict[int, BaseException] = {}
        self.gates: dict[int, asyncio.Event] = {}
        self.on_call: Callable[[int], None] | None = None

    def hold(self, call: int) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[call] = gate
        return gate

    async def analyze(self, image: bytes) -> AnalysisResult:
        self.calls += 1
        call = self.calls
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        if self.on_call is not None:
            self.on_call(call)
        if call in self.errors:
            raise self.errors[call]
        return self.results.get(call, self.default)


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[tuple[str, AnalysisEvent]] = []
        self.fail = False

    def record(self, user_id: str, event: AnalysisEvent) -> None:
        if self.fail:
            raise OSError("disk full")
        self.records.append((user_id, event))

    @property
    def events(self) -> list[AnalysisEvent]:
        return [event for _, event in self.records]


class StaticGate:
    def __init__(self, user_id: str | None = "user-1") -> None:
        self.user_id = user_id

    def current_user_id(self) -> str | None:
        return self.user_id


class ManualTimer:
    """Replacement for ``asyncio.sleep`` that only returns when fired."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future[None]] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)

    @property
    def armed(self) -> bool:
        return bool(self._waiters)

    async def fire(self) -> None:
        """Release the pending sleep and wait until the loop has ticked and re-armed."""
        await settle(lambda: self.armed)
        fut = self._waiters.pop(0)
        fut.set_result(None)
        await settle(lambda: self.armed)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def __call__(self) -> datetime:
        return self.now


async def settle(predicate: Callable[[], bool], rounds: int = 200) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture()
def source() -> StubSource:
    return StubSource()


@pytest.fixture()
def classifier() -> StubClassifier:
    return StubClassifier()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def gate() -> StaticGate:
    return StaticGate()


@pytest.fixture()
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_session(
    source: StubSource,
    classifier: StubClassifier,
    sink: RecordingSink,
    gate: StaticGate,
    timer: ManualTimer,
) -> Callable[..., AnalysisSession]:
    def factory(**kwargs: object) -> AnalysisSession:
        kwargs.setdefault("connect_delay", 2.5)
        kwargs.setdefault("live_interval", 10.0)
        kwargs.setdefault("sleep", timer.sleep)
        return AnalysisSession(source, classifier, sink, gate, **kwargs)  # type: ignore[arg-type]

    return factory
