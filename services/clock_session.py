"""
Kiosk clock-in sessions.

A session starts when an employee is identified (face or PIN) and carries
the location and shift they picked. At most one verification flow runs per
session at any time. Sessions expire `ttl_seconds` after they were created.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from core.errors import FlowError
from core.settings import CLOCK_SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


class FlowAlreadyActiveError(Exception):
    error = FlowError.FLOW_ALREADY_ACTIVE


class SessionNotFoundError(Exception):
    """The session was logged out or expired."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClockSession:
    token: str
    company_id: str
    employee_id: str
    location_id: Optional[str] = None
    shift_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    active_flow: Optional[object] = None


class SessionStore:
    def __init__(
        self,
        ttl_seconds: float = CLOCK_SESSION_TTL_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._sessions: Dict[str, ClockSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expired(self, session: ClockSession, now: datetime) -> bool:
        # A session mid clock-in lives until its flow ends
        return session.active_flow is None and now - session.created_at > self.ttl

    def _prune(self) -> None:
        # Caller holds the lock
        now = self.clock()
        stale: List[str] = [t for t, s in self._sessions.items() if self._expired(s, now)]
        for token in stale:
            del self._sessions[token]
        if stale:
            logger.info(f"[SESSION] Expired {len(stale)} session(s)")

    def create(self, company_id: str, employee_id: str) -> ClockSession:
        session = ClockSession(
            token=secrets.token_urlsafe(32),
            company_id=company_id,
            employee_id=employee_id,
            created_at=self.clock(),
        )
        with self._lock:
            self._prune()
            self._sessions[session.token] = session
        logger.info(f"[SESSION] Started session for employee {employee_id}")
        return session

    def get(self, token: str) -> Optional[ClockSession]:
        with self._lock:
            self._prune()
            return self._sessions.get(token)

    def select(self, token: str, location_id: str, shift_id: str) -> Optional[ClockSession]:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            session.location_id = location_id
            session.shift_id = shift_id
            return session

    def begin_flow(self, token: str, flow: object) -> None:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                raise SessionNotFoundError(token)
            if session.active_flow is not None:
                raise FlowAlreadyActiveError(token)
            session.active_flow = flow

    def end_flow(self, token: str, flow: object) -> None:
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.active_flow is flow:
                session.active_flow = None

    def end(self, token: str) -> None:
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is not None and session.active_flow is not None:
            cancel = getattr(session.active_flow, "cancel", None)
            if cancel:
                cancel()


session_store = SessionStore()
