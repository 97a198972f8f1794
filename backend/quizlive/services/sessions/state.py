"""In-memory state of one live quiz session."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from quizlive.services.quizzes.definitions import QuestionDefinition, ScoreEntry
from .scheduler import TimerHandle


class SessionStatus(str, Enum):
    WAITING = 'waiting'
    ACTIVE = 'active'
    COMPLETED = 'completed'


@dataclass
class Participant:
    identity: str
    display_name: str
    score: int = 0
    connected: bool = True

    def to_dict(self) -> dict:
        return {
            'identity': self.identity,
            'display_name': self.display_name,
            'score': self.score,
        }


@dataclass(eq=False)
class Session:
    code: str
    creator_id: str
    creator_name: str = ''
    status: SessionStatus = SessionStatus.WAITING
    # Insertion order is join order; ties in the ranking fall back to it
    participants: Dict[str, Participant] = field(default_factory=dict)
    host_connected: bool = False
    questions: Tuple[QuestionDefinition, ...] = ()
    current_index: int = -1
    submissions: Dict[int, Set[str]] = field(default_factory=dict)
    timer: Optional[TimerHandle] = None
    timer_generation: int = 0
    # Audit records the store rejected; retried when the session completes
    pending_records: List[ScoreEntry] = field(default_factory=list)
    closed: bool = False
    created_at: float = field(default_factory=time.time)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[QuestionDefinition]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    def is_creator(self, identity: Optional[str]) -> bool:
        return identity is not None and identity == self.creator_id

    def connected_players(self) -> List[Participant]:
        return [p for p in self.participants.values() if p.connected]

    def is_empty(self) -> bool:
        return not self.host_connected and not self.connected_players()

    def has_submitted(self, identity: str, index: int) -> bool:
        return identity in self.submissions.get(index, set())

    def mark_submitted(self, identity: str, index: int) -> None:
        self.submissions.setdefault(index, set()).add(identity)

    def arm_timer(self, handle: TimerHandle) -> None:
        self.cancel_timer()
        self.timer = handle

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def score_entries(self) -> List[Tuple[str, str, int]]:
        return [(p.identity, p.display_name, p.score) for p in self.participants.values()]

    def roster(self) -> dict:
        return {
            'code': self.code,
            'status': self.status.value,
            'host': {'identity': self.creator_id, 'display_name': self.creator_name} if self.host_connected else None,
            'players': [p.to_dict() for p in self.connected_players()],
        }

    def snapshot(self) -> dict:
        question = self.current_question
        data = self.roster()
        data.update({
            'question_count': self.question_count,
            'current_index': self.current_index,
            'current_question': question.sanitized() if question else None,
            'submitted': sorted(self.submissions.get(self.current_index, set())),
            'time_remaining': round(self.timer.remaining(), 1) if self.timer is not None else None,
        })
        return data
