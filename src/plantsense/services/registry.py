"""One analysis session per logged-in user."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from plantsense.analysis.session import AnalysisSession
from plantsense.services.auth import UserAuthGate

if TYPE_CHECKING:
    from plantsense.analysis.classifier import Classifier
    from plantsense.analysis.image_source import ImageSource
    from plantsense.config import Settings
    from plantsense.services.auth import AuthService
    from plantsense.services.history import HistoryStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Creates sessions lazily and shuts them all down together."""

    def __init__(
        self,
        settings: Settings,
        source: ImageSource,
        classifier: Classifier,
        history: HistoryStore,
        auth: AuthService,
    ) -> None:
        self._settings = settings
        self._source = source
        self._classifier = classifier
        self._history = history
        self._auth = auth
        self._sessions: dict[str, AnalysisSession] = {}

    def get(self, user_id: str) -> AnalysisSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = AnalysisSession(
                self._source,
                self._classifier,
                self._history,
                UserAuthGate(self._auth, user_id),
                connect_delay=self._settings.connect_delay,
                live_interval=self._settings.live_interval,
                skip_when_busy=self._settings.live_skip_when_busy,
            )
            self._sessions[user_id] = session
            logger.debug("Created analysis session for user %s", user_id)
        return session

    def discard(self, user_id: str) -> AnalysisSession | None:
        """Forget the user's session, resetting it first. Returns it so callers can close it."""
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.reset()
        return session

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def shutdown(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(s.aclose() for s in sessions))
        logger.info("Closed %d analysis sessions", len(sessions))
