"""
In-process registry of live consultation sessions.

A ``LiveSession`` records the timing window of an IN_PROGRESS consultation
that was started over the live channel. The registry is owned by the
application (built in the lifespan, cleared at shutdown) and is local to one
process: nothing is persisted, and a restart forgets every entry.

Idle and maximum-duration limits are tracked for display only. Sessions are
never terminated automatically; ending one is always an explicit command.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Optional

from plenaria_legal.core.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveSession:
    consultation_id: int
    start_time: datetime
    max_end_time: datetime
    last_activity: Optional[datetime] = None

    def remaining(self, now: datetime) -> timedelta:
        """Time left before the duration ceiling, never negative."""
        return max(self.max_end_time - now, timedelta(0))

    def is_past_ceiling(self, now: datetime) -> bool:
        return now >= self.max_end_time

    def idle_for(self, now: datetime) -> timedelta:
        return now - (self.last_activity or self.start_time)

    def to_dict(self) -> dict:
        return {
            "consultation_id": self.consultation_id,
            "start_time": self.start_time.isoformat(),
            "max_end_time": self.max_end_time.isoformat(),
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


class LiveSessionRegistry:
    """Thread-safe map of consultation id to ``LiveSession``."""

    def __init__(
        self,
        max_session_minutes: int = 60,
        idle_timeout_minutes: int = 10,
        auto_expiry_enabled: bool = False,
    ):
        self.max_session = timedelta(minutes=max_session_minutes)
        self.idle_timeout = timedelta(minutes=idle_timeout_minutes)
        self.auto_expiry_enabled = auto_expiry_enabled
        self._sessions: Dict[int, LiveSession] = {}
        self._lock = threading.Lock()

        if auto_expiry_enabled:
            logger.warning(
                "Session auto-expiry is enabled in configuration but not scheduled; "
                "sessions still end only on explicit request"
            )

    def start(self, consultation_id: int, now: Optional[datetime] = None) -> LiveSession:
        """Begin tracking a session, replacing any previous entry for the id."""
        now = now or utcnow()
        session = LiveSession(
            consultation_id=consultation_id,
            start_time=now,
            max_end_time=now + self.max_session,
        )
        with self._lock:
            self._sessions[consultation_id] = session
        logger.info(f"Started session tracking for consultation {consultation_id} (no auto-close)")
        return session

    def touch(self, consultation_id: int, now: Optional[datetime] = None) -> Optional[LiveSession]:
        """Record activity; unknown ids are ignored."""
        now = now or utcnow()
        with self._lock:
            session = self._sessions.get(consultation_id)
            if session is None:
                return None
            session = replace(session, last_activity=now)
            self._sessions[consultation_id] = session
        return session

    def end(self, consultation_id: int) -> Optional[LiveSession]:
        with self._lock:
            session = self._sessions.pop(consultation_id, None)
        if session is not None:
            logger.info(f"Stopped session tracking for consultation {consultation_id}")
        return session

    def get(self, consultation_id: int) -> Optional[LiveSession]:
        with self._lock:
            return self._sessions.get(consultation_id)

    def clear(self) -> int:
        """Drop every entry; returns how many were tracked."""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        if count:
            logger.info(f"Cleared {count} live session(s)")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, consultation_id: object) -> bool:
        with self._lock:
            return consultation_id in self._sessions
