import os
import sys
import pytest

# Ensure the backend root (containing the `quizlive` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizlive import create_app, db, socketio, coordinator
from quizlive.services.quizzes import parse_quiz_payload


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    MIN_PLAYERS = 2
    POINTS_PER_CORRECT = 10
    DEFAULT_TIME_LIMIT_SEC = 30
    MAX_TIME_LIMIT_SEC = 600
    TIMER_HEARTBEAT_SEC = 0


HOST_ID = 'host-1'
HOST_NAME = 'Hana'


def quiz_payload(**overrides):
    payload = {
        'title': 'Alphabet basics',
        'category': 'Warmups',
        'created_by': HOST_ID,
        'creator_name': HOST_NAME,
        'questions': [
            {'text': 'First letter?', 'kind': 'single', 'options': ['A', 'B', 'C'],
             'correct_answer': 'A', 'time_limit': 20},
            {'text': 'Second letter?', 'kind': 'single', 'options': ['A', 'B', 'C'],
             'correct_answer': 'B', 'time_limit': 15},
        ],
    }
    payload.update(overrides)
    return payload


class EventRecorder:
    """Stands in for the Socket.IO gateway: keeps every published event."""

    def __init__(self):
        self.published = []

    def __call__(self, code, event):
        self.published.append((code, event))

    def named(self, name):
        return [event for _, event in self.published if event.name.value == name]

    def received_by(self, identity, name=None):
        """Events a connection bound to ``identity`` would have received."""
        out = []
        for _, event in self.published:
            if name is not None and event.name.value != name:
                continue
            if event.to == identity or (event.to is None and event.skip != identity):
                out.append(event)
        return out

    def clear(self):
        self.published.clear()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizlive.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def store(flask_app):
    return coordinator.store


@pytest.fixture()
def scheduler(flask_app):
    return coordinator.scheduler


@pytest.fixture()
def recorder(flask_app):
    rec = EventRecorder()
    coordinator.publisher = rec
    return rec


@pytest.fixture()
def make_quiz(store):
    def _make(**overrides):
        return store.create_quiz(parse_quiz_payload(quiz_payload(**overrides)))
    return _make


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        test_client.get_received('/ws')  # drop the 'connected' greeting
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
