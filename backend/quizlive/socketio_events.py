"""Realtime gateway on the ``/ws`` Socket.IO namespace.

Each connection is bound to one quiz code and identity by ``join``. Inbound
commands are routed to the session coordinator; the coordinator's events come
back through ``Gateway.publish`` and fan out to the room ``quiz:<CODE>`` or to a
single identity's connection. Every command handler returns an ack dict and
reports failures with an ``error`` event to the sender only.
"""

import functools
import threading
from typing import Dict, Optional, Tuple

from flask import current_app, request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from quizlive import coordinator, socketio
from quizlive.errors import BadRequest, QuizError, Unauthorized
from quizlive.models import User
from quizlive.services.sessions import Command, Event, EventName, normalize_code

NAMESPACE = '/ws'


def room_for(code: str) -> str:
    return f"quiz:{code}"


class Gateway:
    """Connection bookkeeping: sid -> (code, identity) and code -> identity -> sid."""

    def __init__(self):
        self._lock = threading.Lock()
        self._bindings: Dict[str, Tuple[str, str]] = {}
        self._members: Dict[str, Dict[str, str]] = {}

    def reset(self) -> None:
        with self._lock:
            self._bindings.clear()
            self._members.clear()

    def bind(self, sid: str, code: str, identity: str) -> Optional[str]:
        """Bind ``sid``; returns the connection it displaced for this identity, if any."""
        with self._lock:
            self._bindings[sid] = (code, identity)
            # Latest connection wins when the same identity opens a second tab
            members = self._members.setdefault(code, {})
            previous = members.get(identity)
            members[identity] = sid
            return previous

    def restore(self, sid: str, code: str, identity: str, previous: Optional[str]) -> None:
        """Undo ``bind`` after a failed join, handing the identity back to ``previous``."""
        with self._lock:
            if previous == sid:
                return
            self._bindings.pop(sid, None)
            members = self._members.get(code, {})
            if previous is not None and self._bindings.get(previous) == (code, identity):
                members[identity] = previous
            elif members.get(identity) == sid:
                del members[identity]
            if not members:
                self._members.pop(code, None)

    def unbind(self, sid: str) -> Optional[Tuple[str, str, bool]]:
        """Forget ``sid``. Returns (code, identity, was_current_connection)."""
        with self._lock:
            binding = self._bindings.pop(sid, None)
            if binding is None:
                return None
            code, identity = binding
            members = self._members.get(code, {})
            current = members.get(identity) == sid
            if current:
                del members[identity]
                if not members:
                    self._members.pop(code, None)
            return code, identity, current

    def binding(self, sid: str) -> Optional[Tuple[str, str]]:
        with self._lock:
            return self._bindings.get(sid)

    def sid_for(self, code: str, identity: Optional[str]) -> Optional[str]:
        if identity is None:
            return None
        with self._lock:
            return self._members.get(code, {}).get(identity)

    def publish(self, code: str, event: Event) -> None:
        # socketio.emit rather than emit(): timer expiry publishes from a background task
        if not event.is_broadcast:
            sid = self.sid_for(code, event.to)
            if sid is not None:
                socketio.emit(event.name.value, event.data, to=sid, namespace=NAMESPACE)
            return
        socketio.emit(
            event.name.value, event.data, to=room_for(code),
            skip_sid=self.sid_for(code, event.skip), namespace=NAMESPACE,
        )


gateway = Gateway()


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _payload_identity(data: dict) -> Tuple[Optional[str], Optional[str]]:
    identity = data.get('identity') or data.get('user_id') or data.get('userId')
    display_name = data.get('display_name') or data.get('username')
    if identity is not None and User.by_identity(identity) is not None:
        # Registered identities can only be used through their login session
        raise Unauthorized('Log in to act as this user')
    return (str(identity) if identity is not None else None), display_name


def _acting_identity(code: str) -> str:
    """Identity for privileged commands: the join binding, then the login session."""
    binding = gateway.binding(_get_sid())
    if binding and binding[0] == code:
        return binding[1]
    if current_user and current_user.is_authenticated:
        return current_user.identity
    raise Unauthorized('Join the quiz before sending commands')


def _command_code(data: dict) -> str:
    code = normalize_code(data.get('code'))
    if not code:
        binding = gateway.binding(_get_sid())
        code = binding[0] if binding else ''
    if not code:
        raise BadRequest('code is required')
    return code


def _reported(fn):
    """Turn coordinator errors into an ack plus an ``error`` event for the sender."""
    @functools.wraps(fn)
    def wrapper(data=None):
        try:
            result = fn(data if isinstance(data, dict) else {})
        except QuizError as exc:
            emit(EventName.ERROR.value, {'kind': exc.kind, 'message': exc.message})
            return {'ok': False, 'kind': exc.kind, 'error': exc.message}
        except Exception:
            current_app.logger.exception(f"[ws-error] handler={fn.__name__} sid={_get_sid()}")
            emit(EventName.ERROR.value, {'kind': 'internal', 'message': 'Internal server error'})
            return {'ok': False, 'kind': 'internal', 'error': 'Internal server error'}
        response = {'ok': True}
        response.update(result or {})
        return response
    return wrapper


def _release(sid: str) -> Optional[Tuple[str, str]]:
    """Unbind ``sid`` and synthesize a leave when it was the identity's live connection."""
    released = gateway.unbind(sid)
    if released is None:
        return None
    code, identity, current = released
    if current:
        coordinator.leave(code, identity)
    return code, identity


def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(reason=None):
    released = _release(_get_sid())
    if released:
        current_app.logger.info(f"[disconnect] code={released[0]} identity={released[1]} reason={reason}")


@_reported
def handle_join(data):
    code = normalize_code(data.get('code'))
    if not code:
        raise BadRequest('code is required')
    if current_user and current_user.is_authenticated:
        identity, display_name = current_user.identity, current_user.username
    else:
        identity, display_name = _payload_identity(data)
    if not identity:
        raise BadRequest('identity is required')

    sid = _get_sid()
    previous = gateway.binding(sid)
    if previous and previous != (code, identity):
        _release(sid)
        leave_room(room_for(previous[0]))

    # Bind before joining so the roster broadcast reaches this connection too
    join_room(room_for(code))
    displaced = gateway.bind(sid, code, identity)
    try:
        roster = coordinator.join(code, identity, display_name)
    except QuizError:
        gateway.restore(sid, code, identity, displaced)
        if displaced != sid:
            leave_room(room_for(code))
        raise
    emit('joined', {'room': room_for(code), 'code': code, 'identity': identity})
    return {'code': code, 'identity': identity, 'roster': roster}


@_reported
def handle_start(data):
    code = _command_code(data)
    return coordinator.start(code, _acting_identity(code))


@_reported
def handle_submit_answer(data):
    code = _command_code(data)
    question_index = data.get('question_index', data.get('questionIndex'))
    return coordinator.submit_answer(code, _acting_identity(code), question_index, data.get('answer'))


@_reported
def handle_end(data):
    code = _command_code(data)
    return coordinator.end(code, _acting_identity(code))


@_reported
def handle_leave(data):
    released = _release(_get_sid())
    if released is None:
        return {'left': None}
    code, identity = released
    leave_room(room_for(code))
    emit('left', {'room': room_for(code), 'code': code})
    return {'left': code}


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the ``/ws`` namespace."""
    gateway.reset()
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event(Command.JOIN.value, handle_join, namespace=NAMESPACE)
    socketio.on_event(Command.START.value, handle_start, namespace=NAMESPACE)
    socketio.on_event(Command.SUBMIT_ANSWER.value, handle_submit_answer, namespace=NAMESPACE)
    socketio.on_event(Command.END.value, handle_end, namespace=NAMESPACE)
    socketio.on_event(Command.LEAVE.value, handle_leave, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
