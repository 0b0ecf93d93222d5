import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from threading import Lock
from typing import Callable, Optional

from ..errors import SessionNotFound
from ..models import EvaluationResult, ScheduleCoverage
from .aggregator import summarize_per_employee

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


@dataclass
class EvaluationSession:
    id: str
    last_access: float
    entries: list  # (token key, RawPunchEntry) pairs
    per_day: list
    per_employee: list
    token_employees: dict = field(default_factory=dict)  # token key -> employee id
    covered_employees: set = field(default_factory=set)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def entries_for(self, key: str) -> list:
        return [entry for entry_key, entry in self.entries if entry_key == key]

    def result(self) -> EvaluationResult:
        return EvaluationResult(per_day=list(self.per_day), per_employee=list(self.per_employee))


def _covered(per_employee) -> set:
    return {s.employee_id for s in per_employee
            if s.employee_id and s.coverage is ScheduleCoverage.CONFIGURED}


class SessionCache:
    """Keeps evaluation results around so operators can fix identities in place.

    Sessions live for ttl_seconds after their last access. Expired sessions are
    evicted lazily, on the next access to the cache.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions = {}
        self._lock = Lock()

    def __len__(self):
        with self._lock:
            self._evict_expired()
            return len(self._sessions)

    def _evict_expired(self):
        now = self.clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_access >= self.ttl_seconds]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Evicted %d expired evaluation sessions", len(expired))

    def create(self, entries: list, result: EvaluationResult,
               key_for: Callable[[str], str],
               date_from: Optional[date] = None, date_to: Optional[date] = None) -> str:
        """Open a session; the date window is reapplied when a token is re-evaluated."""
        session = EvaluationSession(
            id=uuid.uuid4().hex,
            last_access=self.clock(),
            entries=[(key_for(e.employee_token), e) for e in entries],
            per_day=list(result.per_day),
            per_employee=list(result.per_employee),
            token_employees={key: r.employee_id for key, r in result.identities.items() if r.employee_id},
            covered_employees=_covered(result.per_employee),
            date_from=date_from,
            date_to=date_to,
        )
        with self._lock:
            self._evict_expired()
            self._sessions[session.id] = session
        return session.id

    def get(self, session_id: str) -> Optional[EvaluationSession]:
        """Session by id, refreshing its TTL; None when unknown or expired."""
        with self._lock:
            self._evict_expired()
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_access = self.clock()
            return session

    def require(self, session_id: str) -> EvaluationSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def touch(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def update_token(self, session_id: str, key: str, result: EvaluationResult,
                     employee_id: Optional[str] = None) -> EvaluationSession:
        """Replace every row of one token with a fresh evaluation.

        Last write wins; the per-employee summaries are refolded from the
        session's updated per-day rows.
        """
        with self._lock:
            self._evict_expired()
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            rows = [r for r in session.per_day if r.normalized_token != key]
            rows.extend(result.per_day)
            rows.sort(key=lambda r: (r.date, r.employee_name, r.normalized_token))
            session.per_day = rows

            session.covered_employees |= _covered(result.per_employee)
            covered = session.covered_employees
            session.per_employee = summarize_per_employee(rows, lambda emp: emp in covered)

            if employee_id:
                session.token_employees[key] = employee_id
            session.last_access = self.clock()
            return session
