from quizlive import coordinator, db
from quizlive.errors import InvalidTransition
from quizlive.models import User
from quizlive.socketio_events import Gateway
from conftest import HOST_ID, HOST_NAME

NS = '/ws'


def _drain(client):
    """Group received packets by event name; each entry is the event payload."""
    received = {}
    for packet in client.get_received(NS):
        received.setdefault(packet['name'], []).append(packet['args'][0] if packet['args'] else None)
    return received


def _join(client, code, identity, name):
    ack = client.emit('join', {'code': code, 'identity': identity, 'display_name': name},
                      namespace=NS, callback=True)
    assert ack['ok'] is True, ack
    return ack


def _lobby(sio_factory, code):
    host, p1, p2 = sio_factory(), sio_factory(), sio_factory()
    _join(host, code, HOST_ID, HOST_NAME)
    _join(p1, code, 'p1', 'Pat')
    _join(p2, code, 'p2', 'Sam')
    for c in (host, p1, p2):
        _drain(c)
    return host, p1, p2


def test_connect_and_join(sio_client, make_quiz):
    code = make_quiz()
    ack = sio_client.emit('join', {'code': code.lower(), 'user_id': 'p1', 'username': 'Pat'},
                          namespace=NS, callback=True)
    assert ack['ok'] is True
    assert ack['code'] == code
    assert ack['identity'] == 'p1'
    assert [p['display_name'] for p in ack['roster']['players']] == ['Pat']

    received = _drain(sio_client)
    assert received['joined'][0]['room'] == f'quiz:{code}'
    assert received['roster'][-1]['players'][0]['identity'] == 'p1'


def test_join_unknown_quiz_reports_error(sio_client):
    ack = sio_client.emit('join', {'code': 'ZZZZZZ', 'identity': 'p1'}, namespace=NS, callback=True)
    assert ack == {'ok': False, 'kind': 'not_found', 'error': 'Quiz ZZZZZZ not found'}
    received = _drain(sio_client)
    assert received['error'] == [{'kind': 'not_found', 'message': 'Quiz ZZZZZZ not found'}]
    assert 'joined' not in received

    # Nothing is bound, so a follow-up command without a code is a bad request
    ack = sio_client.emit('start', {}, namespace=NS, callback=True)
    assert ack['kind'] == 'bad_request'


def test_roster_broadcast_to_room(sio_factory, make_quiz):
    code = make_quiz()
    host = sio_factory()
    _join(host, code, HOST_ID, HOST_NAME)
    _drain(host)
    p1 = sio_factory()
    _join(p1, code, 'p1', 'Pat')
    roster = _drain(host)['roster'][-1]
    assert roster['host']['identity'] == HOST_ID
    assert [p['identity'] for p in roster['players']] == ['p1']


def test_full_game_over_socket(sio_factory, make_quiz, scheduler):
    code = make_quiz()
    host, p1, p2 = _lobby(sio_factory, code)

    ack = host.emit('start', {'code': code}, namespace=NS, callback=True)
    assert ack['ok'] is True
    assert ack['current_index'] == 0

    host_started = _drain(host)['started']
    assert len(host_started) == 1
    assert host_started[0]['question']['correct_answer'] == 'A'
    for player in (p1, p2):
        started = _drain(player)['started']
        assert len(started) == 1
        assert started[0]['number'] == 1
        assert all('correct_answer' not in q for q in started[0]['questions'])

    # Code falls back to the connection's binding
    ack = p1.emit('submit_answer', {'question_index': 0, 'answer': 'A'}, namespace=NS, callback=True)
    assert ack == {'ok': True, 'question_index': 0, 'correct': True, 'points': 10, 'score': 10}
    assert _drain(p1)['answer_result'] == [{'question_index': 0, 'correct': True, 'points': 10, 'score': 10}]
    others = _drain(p2)
    assert 'answer_result' not in others
    assert others['participant_submitted'][0]['identity'] == 'p1'
    assert _drain(host)['participant_submitted'][0]['submitted_count'] == 1

    scheduler.fire_next()
    nxt = _drain(p2)['next_question']
    assert len(nxt) == 1
    assert nxt[0]['number'] == 2
    assert 'correct_answer' not in nxt[0]['question']
    assert _drain(host)['next_question'][0]['question']['correct_answer'] == 'B'
    _drain(p1)

    ack = p2.emit('submit_answer', {'questionIndex': 1, 'answer': 'B'}, namespace=NS, callback=True)
    assert ack['score'] == 10

    ack = host.emit('end', {}, namespace=NS, callback=True)
    assert ack['ok'] is True
    assert ack['reason'] == 'ended'
    for c in (host, p1, p2):
        ended = _drain(c)['ended']
        assert [(s['identity'], s['score']) for s in ended[0]['final_scores']] == [('p1', 10), ('p2', 10)]
    assert scheduler.armed() == []


def test_commands_are_checked_against_join_binding(sio_factory, make_quiz):
    code = make_quiz()
    host, p1, p2 = _lobby(sio_factory, code)

    # A player cannot start by claiming the creator's identity in the payload
    ack = p1.emit('start', {'code': code, 'identity': HOST_ID}, namespace=NS, callback=True)
    assert ack['ok'] is False
    assert ack['kind'] == 'unauthorized'
    assert _drain(p1)['error'] == [{'kind': 'unauthorized', 'message': ack['error']}]
    # Errors go to the sender only
    assert 'error' not in _drain(p2)
    assert 'error' not in _drain(host)


def test_rejected_submission_is_acked_with_error(sio_factory, make_quiz):
    code = make_quiz()
    host, p1, _ = _lobby(sio_factory, code)
    host.emit('start', {'code': code}, namespace=NS, callback=True)
    p1.emit('submit_answer', {'question_index': 0, 'answer': 'A'}, namespace=NS, callback=True)
    _drain(p1)

    ack = p1.emit('submit_answer', {'question_index': 0, 'answer': 'B'}, namespace=NS, callback=True)
    assert ack['ok'] is False
    assert ack['kind'] == 'conflict'
    assert _drain(p1)['error'][0]['kind'] == 'conflict'


def test_disconnect_updates_roster(sio_factory, make_quiz):
    code = make_quiz()
    host, p1, p2 = _lobby(sio_factory, code)
    p2.disconnect(namespace=NS)
    roster = _drain(host)['roster'][-1]
    assert [p['identity'] for p in roster['players']] == ['p1']
    assert [p['identity'] for p in _drain(p1)['roster'][-1]['players']] == ['p1']


def test_leave_is_idempotent(sio_factory, make_quiz):
    code = make_quiz()
    host, p1, _ = _lobby(sio_factory, code)
    assert p1.emit('leave', {}, namespace=NS, callback=True) == {'ok': True, 'left': code}
    assert _drain(p1)['left'][0]['code'] == code
    assert p1.emit('leave', {}, namespace=NS, callback=True) == {'ok': True, 'left': None}
    roster = _drain(host)['roster']
    assert len(roster) == 1
    assert [p['identity'] for p in roster[0]['players']] == ['p2']


def test_ping_pong(sio_client):
    sio_client.emit('ping', {'t': 1}, namespace=NS)
    assert _drain(sio_client)['pong'] == [{'t': 1}]


def test_commands_need_a_joined_connection(sio_client, make_quiz):
    code = make_quiz()
    ack = sio_client.emit('start', {'code': code, 'identity': HOST_ID}, namespace=NS, callback=True)
    assert ack['ok'] is False
    assert ack['kind'] == 'unauthorized'


def test_registered_identity_cannot_be_claimed(sio_client, make_quiz):
    user = User(username='zed')
    user.set_password('pw')
    db.session.add(user)
    db.session.commit()
    code = make_quiz()
    ack = sio_client.emit('join', {'code': code, 'identity': user.identity}, namespace=NS, callback=True)
    assert ack['kind'] == 'unauthorized'
    assert code not in coordinator.registry


def test_failed_join_from_second_tab_keeps_first_tab(sio_factory, make_quiz, monkeypatch):
    code = make_quiz()
    host, p1, _ = _lobby(sio_factory, code)
    second_tab = sio_factory()

    def refuse(*args, **kwargs):
        raise InvalidTransition('Quiz is already in progress')

    monkeypatch.setattr(coordinator, 'join', refuse)
    ack = second_tab.emit('join', {'code': code, 'identity': 'p1', 'display_name': 'Pat'},
                          namespace=NS, callback=True)
    assert ack['kind'] == 'invalid_transition'
    monkeypatch.undo()

    host.emit('start', {'code': code}, namespace=NS, callback=True)
    p1.emit('submit_answer', {'question_index': 0, 'answer': 'A'}, namespace=NS, callback=True)
    assert _drain(p1)['answer_result'][0]['score'] == 10
    received = _drain(second_tab)
    assert 'answer_result' not in received
    assert 'started' not in received


def test_gateway_restore_hands_identity_back():
    gw = Gateway()
    gw.bind('sid-1', 'ABC123', 'p1')
    assert gw.bind('sid-2', 'ABC123', 'p1') == 'sid-1'
    assert gw.sid_for('ABC123', 'p1') == 'sid-2'
    gw.restore('sid-2', 'ABC123', 'p1', 'sid-1')
    assert gw.sid_for('ABC123', 'p1') == 'sid-1'
    assert gw.binding('sid-2') is None

    # Nothing to hand back to: the identity is dropped
    gw.bind('sid-3', 'XYZ789', 'p2')
    gw.restore('sid-3', 'XYZ789', 'p2', None)
    assert gw.sid_for('XYZ789', 'p2') is None
