import os
import sys
from datetime import datetime, timedelta

import pytest
from flask import g

# Ensure the backend root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from app import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_DURATION_SEC = 60
    MAX_PLAYERS = 3
    MIN_PLAYERS_TO_START = 1
    END_SESSION_WHEN_EMPTY = False
    RESULTS_DISPLAY_SEC = 30
    SCHEDULER_MAX_SLEEP_SEC = 5
    TIMER_HEARTBEAT_SEC = 0
    LEADERBOARD_LIMIT = 50
    USERNAME_MIN_LENGTH = 3
    USERNAME_MAX_LENGTH = 20


class FakeClock:
    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0)

    def now(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


class FixedDraw:
    """Stands in for random.Random; hands out the given numbers in order."""

    def __init__(self, *numbers):
        self.numbers = list(numbers) or [7]
        self.calls = 0

    def randint(self, a, b):
        number = self.numbers[min(self.calls, len(self.numbers) - 1)]
        self.calls += 1
        return number


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # The test client reuses the app context held open below, so the user
    # Flask-Login cached on g would leak from one request into the next
    @application.before_request
    def _resolve_user_per_request():
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import app.models  # noqa: F401
        db.create_all()
        engine = application.extensions['session_engine']
        engine.clock = FakeClock()
        engine.rng = FixedDraw(7)
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def threaded_app(tmp_path):
    """App on a file-backed SQLite database that several threads can share."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'sessions.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 30}}

    application = create_app(FileConfig)
    engine = application.extensions['session_engine']
    engine.clock = FakeClock()
    engine.rng = FixedDraw(7)
    with application.app_context():
        import app.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def engine(flask_app):
    return flask_app.extensions['session_engine']


@pytest.fixture()
def scheduler(flask_app):
    return flask_app.extensions['session_scheduler']


@pytest.fixture()
def clock(engine):
    return engine.clock


@pytest.fixture()
def draw(engine):
    return engine.rng


@pytest.fixture()
def events(engine):
    received = []
    unsubscribe = engine.notifier.subscribe(received.append)
    yield received
    unsubscribe()


@pytest.fixture()
def make_user(clock):
    from app.auth import get_or_create_user

    def _make(username):
        user, _ = get_or_create_user(username, clock.now())
        return user

    return _make


@pytest.fixture()
def login(client):
    def _login(username):
        res = client.post('/functions/v1/auth-login', json={'username': username})
        assert res.status_code == 200
        data = res.get_json()
        return {'Authorization': f"Bearer {data['token']}"}, data

    return _login


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect(token=None):
        auth = {'token': token} if token else None
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth=auth,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
