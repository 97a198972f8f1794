"""Live quiz session coordinator.

Drives each session through waiting -> active -> completed:

- join/leave maintain the roster (the creator connects as host, not as a player)
- start loads the questions once and arms the first question timer
- submit_answer is the single scoring entry point for HTTP and Socket.IO
- timer expiry advances to the next question or completes the quiz
- end (creator only) completes early

Every mutation of a session runs under that session's lock, so answer
submissions and timer expiry never interleave. Events are handed to the
publisher (the Socket.IO gateway) while the lock is held, which keeps their
order identical to the order of the mutations.
"""

from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

from flask import has_app_context

from quizlive.errors import (
    BadRequest, Conflict, InvalidTransition, NotFound, SessionNotFound, StoreUnavailable, Unauthorized,
)
from quizlive.services.quizzes.definitions import ScoreEntry
from .events import Event, EventName
from .leaderboard import project
from .registry import SessionRegistry, normalize_code
from .scheduler import BackgroundScheduler, ManualScheduler
from .scoring import normalize_answer, score_answer
from .state import Participant, Session, SessionStatus

Publisher = Callable[[str, Event], None]


def _parse_index(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        raise BadRequest('question_index is required')
    if isinstance(value, float) and not value.is_integer():
        raise BadRequest('question_index must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequest('question_index must be an integer')


class SessionCoordinator:

    def __init__(self):
        self.app = None
        self.store = None
        self.publisher: Optional[Publisher] = None
        self.registry: Optional[SessionRegistry] = None
        self.scheduler = None

    def init_app(self, app, store, publisher: Optional[Publisher] = None, socketio=None,
                 scheduler=None, registry: Optional[SessionRegistry] = None) -> None:
        self.app = app
        self.store = store
        self.publisher = publisher
        self.registry = registry or SessionRegistry(logger=app.logger)
        if scheduler is None:
            if (app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS')) or socketio is None:
                scheduler = ManualScheduler()
            else:
                scheduler = BackgroundScheduler(
                    socketio, logger=app.logger, heartbeat_sec=int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
                )
        self.scheduler = scheduler
        app.extensions['quizlive.coordinator'] = self

    # ---- settings ----

    @property
    def logger(self):
        return self.app.logger

    @property
    def min_players(self) -> int:
        return int(self.app.config.get('MIN_PLAYERS', 2))

    @property
    def points_per_correct(self) -> int:
        return int(self.app.config.get('POINTS_PER_CORRECT', 10))

    # ---- commands ----

    def join(self, code: str, identity: str, display_name: Optional[str] = None) -> dict:
        """Add ``identity`` to the session for ``code``, creating the session on first join."""
        code = normalize_code(code)
        if not code:
            raise BadRequest('code is required')
        if not identity:
            raise BadRequest('identity is required')
        identity = str(identity)
        display_name = (display_name or '').strip() or identity

        # The session can be evicted between lookup and locking; one retry covers it
        for _ in range(2):
            session = self._session_for_join(code)
            with session.lock:
                if session.closed:
                    continue
                return self._join_locked(session, identity, display_name)
        raise SessionNotFound(code)

    def start(self, code: str, identity: str) -> dict:
        with self.registry.locked(code) as session:
            if not session.is_creator(identity):
                raise Unauthorized('Only the quiz creator can start the quiz')
            if session.status is not SessionStatus.WAITING:
                raise InvalidTransition(f'Quiz is already {session.status.value}')
            players = session.connected_players()
            if len(players) < self.min_players:
                raise InvalidTransition(f'At least {self.min_players} players are required to start')

            # A store failure here propagates and leaves the session waiting
            quiz = self.store.find_by_code(session.code)
            if quiz is None:
                raise NotFound(f'Quiz {session.code} not found')
            if not quiz.questions:
                raise InvalidTransition('Quiz has no questions')

            session.questions = quiz.questions
            session.current_index = 0
            session.status = SessionStatus.ACTIVE
            self._persist(session, 'set_status', session.code, 'active')
            self.logger.info(
                f"[start] code={session.code} players={len(players)} questions={session.question_count}"
            )

            payload = self._started_payload(session, reveal=False)
            self._publish(session, Event.broadcast(EventName.STARTED, payload, skip=session.creator_id))
            if session.host_connected:
                self._publish(session, Event.direct(
                    EventName.STARTED, session.creator_id, self._started_payload(session, reveal=True)
                ))
            self._arm(session)
            return payload

    def submit_answer(self, code: str, identity: str, question_index: Any, answer: Any) -> dict:
        """Score one answer. Accepted at most once per identity per question."""
        if not identity:
            raise BadRequest('identity is required')
        identity = str(identity)
        index = _parse_index(question_index)

        with self.registry.locked(code) as session:
            if session.status is not SessionStatus.ACTIVE:
                raise InvalidTransition('Quiz is not active')
            if not 0 <= index < session.question_count:
                raise BadRequest('question_index is out of range')
            question = session.questions[index]
            normalize_answer(question, answer)
            if session.is_creator(identity):
                raise Unauthorized('The quiz host cannot submit answers')
            participant = session.participants.get(identity)
            if participant is None:
                raise Unauthorized('Not a participant in this quiz')
            if index < session.current_index:
                raise Conflict(f'Question {index + 1} is closed')
            if index > session.current_index:
                raise Conflict(f'Question {index + 1} is not open yet')
            if session.has_submitted(identity, index):
                raise Conflict('Answer already submitted for this question')

            correct, points = score_answer(question, answer, self.points_per_correct)
            participant.score += points
            session.mark_submitted(identity, index)
            self._record_score(session, participant, points)
            self.logger.info(
                f"[score] code={session.code} question={index} identity={identity} "
                f"correct={correct} points={points} total={participant.score}"
            )

            result = {
                'question_index': index,
                'correct': correct,
                'points': points,
                'score': participant.score,
            }
            self._publish(session, Event.direct(EventName.ANSWER_RESULT, identity, result))
            self._publish(session, Event.broadcast(EventName.PARTICIPANT_SUBMITTED, {
                'identity': identity,
                'display_name': participant.display_name,
                'question_index': index,
                'submitted_count': len(session.submissions.get(index, ())),
            }, skip=identity))
            return result

    def end(self, code: str, identity: str) -> dict:
        with self.registry.locked(code) as session:
            if not session.is_creator(identity):
                raise Unauthorized('Only the quiz creator can end the quiz')
            if session.status is not SessionStatus.ACTIVE:
                raise InvalidTransition(f'Quiz is {session.status.value}, not active')
            return self._complete(session, reason='ended')

    def leave(self, code: str, identity: str) -> Optional[dict]:
        """Remove ``identity`` from future broadcasts. Safe to call repeatedly.

        Scores already recorded stay; a player leaving an active quiz is still
        ranked at the end.
        """
        session = self.registry.get(code)
        if session is None or not identity:
            return None
        identity = str(identity)
        with session.lock:
            if session.closed:
                return None
            if session.is_creator(identity):
                if not session.host_connected:
                    return None
                session.host_connected = False
            else:
                participant = session.participants.get(identity)
                if participant is None or not participant.connected:
                    return None
                if session.status is SessionStatus.WAITING:
                    # Keep the stored roster in step so a rejoin lands at the end of both
                    del session.participants[identity]
                    self._persist(session, 'remove_participant', session.code, identity)
                else:
                    participant.connected = False
            self.logger.info(f"[leave] code={session.code} identity={identity}")

            if session.is_empty():
                if session.status is SessionStatus.ACTIVE:
                    self._complete(session, reason='abandoned')
                else:
                    self.registry.remove(session.code, session)
                return None
            roster = session.roster()
            self._publish(session, Event.broadcast(EventName.ROSTER, roster))
            return roster

    def expire(self, code: str, index: int, generation: int) -> None:
        """Timer callback for question ``index``; stale firings are ignored."""
        context = nullcontext() if has_app_context() else self.app.app_context()
        with context:
            try:
                with self.registry.locked(code) as session:
                    if (session.status is not SessionStatus.ACTIVE or session.current_index != index
                            or session.timer_generation != generation):
                        self.logger.info(
                            f"[timer-abort] code={session.code} question={index} "
                            f"status={session.status.value} current={session.current_index}"
                        )
                        return
                    self.logger.info(f"[timer-fire] code={session.code} question={index}")
                    session.timer = None
                    if session.is_last_question:
                        self._complete(session, reason='finished')
                    else:
                        self._advance(session)
            except SessionNotFound:
                self.logger.info(f"[timer-abort] code={code} question={index} session gone")

    # ---- queries ----

    def live_leaderboard(self, code: str) -> dict:
        with self.registry.locked(code) as session:
            standings = project(session.score_entries(), session.question_count, self.points_per_correct)
            return {
                'code': session.code,
                'status': session.status.value,
                'current_index': session.current_index,
                'question_count': session.question_count,
                'leaderboard': [s.to_dict() for s in standings],
            }

    def snapshot(self, code: str) -> dict:
        with self.registry.locked(code) as session:
            return session.snapshot()

    # ---- transitions ----

    def _session_for_join(self, code: str) -> Session:
        session = self.registry.get(code)
        if session is not None:
            return session
        quiz = self.store.find_by_code(code)
        if quiz is None:
            raise NotFound(f'Quiz {code} not found')
        if quiz.status == 'completed':
            raise InvalidTransition('Quiz has already been completed')
        return self.registry.get_or_create(code, creator_id=quiz.created_by, creator_name=quiz.creator_name)

    def _join_locked(self, session: Session, identity: str, display_name: str) -> dict:
        changed = False
        if session.is_creator(identity):
            changed = not session.host_connected
            session.host_connected = True
        else:
            participant = session.participants.get(identity)
            if participant is None:
                if session.status is not SessionStatus.WAITING:
                    raise InvalidTransition('Quiz is already in progress')
                session.participants[identity] = Participant(identity=identity, display_name=display_name)
                self._persist(session, 'add_participant', session.code, identity, display_name)
                changed = True
            elif not participant.connected:
                participant.connected = True
                changed = True

        roster = session.roster()
        if changed:
            self.logger.info(f"[join] code={session.code} identity={identity} players={len(roster['players'])}")
            self._publish(session, Event.broadcast(EventName.ROSTER, roster))
        else:
            # Rejoining is a no-op; only the rejoining client gets the roster again
            self._publish(session, Event.direct(EventName.ROSTER, identity, roster))
        return roster

    def _started_payload(self, session: Session, reveal: bool) -> dict:
        question = session.current_question
        return {
            'code': session.code,
            'questions': [q.to_dict() if reveal else q.sanitized() for q in session.questions],
            'question_count': session.question_count,
            'current_index': session.current_index,
            'question': question.to_dict() if reveal else question.sanitized(),
            'number': session.current_index + 1,
            'time_limit': question.time_limit,
        }

    def _advance(self, session: Session) -> None:
        session.current_index += 1
        question = session.current_question
        payload = {
            'code': session.code,
            'index': session.current_index,
            'number': session.current_index + 1,
            'question_count': session.question_count,
            'question': question.sanitized(),
            'time_limit': question.time_limit,
        }
        self.logger.info(f"[next_question] code={session.code} question={session.current_index}")
        self._publish(session, Event.broadcast(EventName.NEXT_QUESTION, payload, skip=session.creator_id))
        if session.host_connected:
            self._publish(session, Event.direct(
                EventName.NEXT_QUESTION, session.creator_id, dict(payload, question=question.to_dict())
            ))
        self._arm(session)

    def _arm(self, session: Session) -> None:
        question = session.current_question
        index = session.current_index
        session.cancel_timer()
        session.timer_generation += 1
        handle = self.scheduler.call_later(
            question.time_limit, self.expire, session.code, index, session.timer_generation,
            label=f"code={session.code} question={index}",
        )
        session.arm_timer(handle)
        self.logger.info(f"[timer-set] code={session.code} question={index} duration={question.time_limit}s")

    def _complete(self, session: Session, reason: str) -> dict:
        session.cancel_timer()
        session.status = SessionStatus.COMPLETED
        standings = project(session.score_entries(), session.question_count, self.points_per_correct)

        for record in list(session.pending_records):
            ok, _ = self._persist(session, 'append_score_record', session.code, record)
            if ok:
                session.pending_records.remove(record)
        entries = [ScoreEntry(s.identity, s.display_name, s.score) for s in standings]
        ok, _ = self._persist(session, 'record_final_scores', session.code, entries)
        if not ok or session.pending_records:
            self.logger.error(
                f"[reconcile] code={session.code} final_scores_saved={ok} "
                f"unsaved_records={len(session.pending_records)}"
            )

        payload = {
            'code': session.code,
            'reason': reason,
            'question_count': session.question_count,
            'final_scores': [s.to_dict() for s in standings],
        }
        self._publish(session, Event.broadcast(EventName.ENDED, payload))
        self.registry.remove(session.code, session)
        self.logger.info(f"[finish] code={session.code} reason={reason} players={len(standings)}")
        return payload

    # ---- persistence and delivery ----

    def _record_score(self, session: Session, participant: Participant, points: int) -> None:
        if points:
            ok, new_score = self._persist(session, 'increment_score', session.code, participant.identity, points)
            if ok and new_score is None:
                self.logger.warning(
                    f"[reconcile] code={session.code} identity={participant.identity} not in stored roster"
                )
        record = ScoreEntry(
            identity=participant.identity,
            display_name=participant.display_name,
            score=participant.score,
            submitted_at=datetime.now(timezone.utc),
        )
        ok, _ = self._persist(session, 'append_score_record', session.code, record)
        if not ok:
            session.pending_records.append(record)

    def _persist(self, session: Session, op: str, *args) -> Tuple[bool, Any]:
        """Run a store call, retrying once. In-memory state is authoritative either way."""
        method = getattr(self.store, op)
        for attempt in (1, 2):
            try:
                return True, method(*args)
            except StoreUnavailable as exc:
                self.logger.warning(f"[store-retry] code={session.code} op={op} attempt={attempt} error={exc}")
        self.logger.error(f"[reconcile] code={session.code} op={op} deferred after retry")
        return False, None

    def _publish(self, session: Session, event: Event) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher(session.code, event)
        except Exception:
            # Delivery is at-most-once; a failed emit never rolls back session state
            self.logger.exception(f"[publish-error] code={session.code} event={event.name.value}")
