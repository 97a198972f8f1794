import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from quizlive.errors import SessionNotFound
from .state import Session


def normalize_code(code) -> str:
    return str(code or '').strip().upper()


class SessionRegistry:
    """Live sessions keyed by quiz code.

    The registry lock only guards creation and eviction. Mutations of one
    session go through ``locked(code)``, which holds that session's own lock,
    so different codes never wait on each other.
    """

    def __init__(self, logger=None):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self.logger = logger

    def get_or_create(self, code: str, **attrs) -> Session:
        code = normalize_code(code)
        with self._lock:
            session = self._sessions.get(code)
            if session is None:
                session = Session(code=code, **attrs)
                self._sessions[code] = session
                if self.logger is not None:
                    self.logger.info(f"[session-create] code={code} creator={session.creator_id}")
            return session

    def get(self, code: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(normalize_code(code))

    def require(self, code: str) -> Session:
        session = self.get(code)
        if session is None:
            raise SessionNotFound(normalize_code(code))
        return session

    def remove(self, code: str, session: Optional[Session] = None) -> Optional[Session]:
        """Evict ``code``. When ``session`` is given, only evict that exact session."""
        code = normalize_code(code)
        with self._lock:
            current = self._sessions.get(code)
            if current is None or (session is not None and current is not session):
                return None
            del self._sessions[code]
            current.closed = True
        current.cancel_timer()
        if self.logger is not None:
            self.logger.info(f"[evict] code={code} status={current.status.value}")
        return current

    @contextmanager
    def locked(self, code: str) -> Iterator[Session]:
        session = self.require(code)
        with session.lock:
            # Evicted between the lookup and acquiring the lock
            if session.closed:
                raise SessionNotFound(session.code)
            yield session

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, code) -> bool:
        with self._lock:
            return normalize_code(code) in self._sessions
