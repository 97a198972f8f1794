"""Commands clients send and events the coordinator publishes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Command(str, Enum):
    JOIN = 'join'
    START = 'start'
    SUBMIT_ANSWER = 'submit_answer'
    END = 'end'
    LEAVE = 'leave'


class EventName(str, Enum):
    ROSTER = 'roster'
    STARTED = 'started'
    NEXT_QUESTION = 'next_question'
    ANSWER_RESULT = 'answer_result'
    PARTICIPANT_SUBMITTED = 'participant_submitted'
    ENDED = 'ended'
    ERROR = 'error'


@dataclass(frozen=True)
class Event:
    """One outbound message.

    ``to`` targets a single identity; otherwise the event goes to the whole
    session room, minus ``skip`` when set.
    """
    name: EventName
    data: dict = field(default_factory=dict)
    to: Optional[str] = None
    skip: Optional[str] = None

    @classmethod
    def broadcast(cls, name: EventName, data: dict, skip: Optional[str] = None) -> 'Event':
        return cls(name=name, data=data, skip=skip)

    @classmethod
    def direct(cls, name: EventName, identity: str, data: dict) -> 'Event':
        return cls(name=name, data=data, to=identity)

    @property
    def is_broadcast(self) -> bool:
        return self.to is None
