"""Live session domain: registry, coordinator, timers, scoring and ranking.

Transport code (Socket.IO handlers, HTTP routes) talks to the coordinator only;
nothing in this package emits or reads requests directly.
"""

from .coordinator import SessionCoordinator
from .events import Command, Event, EventName
from .leaderboard import Standing, project, summarize
from .registry import SessionRegistry, normalize_code
from .state import Participant, Session, SessionStatus
