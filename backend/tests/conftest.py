import os
import sys
import pytest

# Ensure the backend root (containing the `bingo` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from bingo import create_app, db, socketio
from bingo.services.presence import presence


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    JWT_SECRET_KEY = 'test-jwt-secret'
    JWT_ALGORITHM = 'HS256'
    ACCESS_TOKEN_TTL_SEC = 3600
    INVITATION_TTL_SEC = 24 * 60 * 60
    BOARD_MAX_NUMBER = 25
    BOARD_MAX_NUMBER_LIMIT = 75
    DEFAULT_WIN_PATTERN = 'lines'
    DEFAULT_REQUIRED_LINES = 5
    CHAT_MAX_LENGTH = 50
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'
    BCRYPT_LOG_ROUNDS = 4
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False


# Deterministic board: FREE in the centre, 13 left out
FIXED_GRID = [
    [1, 2, 3, 4, 5],
    [6, 7, 8, 9, 10],
    [11, 12, 'FREE', 14, 15],
    [16, 17, 18, 19, 20],
    [21, 22, 23, 24, 25],
]


@pytest.fixture()
def flask_app():
    presence.clear()
    application = create_app(TestConfig)

    @application.teardown_request
    def _reset_login_user(exc=None):
        # The app context outlives each request here; drop Flask-Login's cached user.
        from flask import g
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import bingo.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    presence.clear()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    from bingo.models import User

    def _make(username, password='password', active=True):
        user = User(username=username, is_active=active)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def alice(make_user):
    return make_user('alice')


@pytest.fixture()
def bob(make_user):
    return make_user('bob')


@pytest.fixture()
def carol(make_user):
    return make_user('carol')


@pytest.fixture()
def auth_headers(flask_app):
    from bingo.auth import issue_token

    def _headers(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}
    return _headers


@pytest.fixture()
def fixed_boards(monkeypatch):
    """Make every new game use FIXED_GRID."""
    from bingo.services.games import engine
    from bingo.services.games.board import Board

    original = engine.create_session

    def _create(*args, **kwargs):
        kwargs.setdefault('board_factory', lambda max_number: Board.from_json(FIXED_GRID))
        return original(*args, **kwargs)
    monkeypatch.setattr(engine, 'create_session', _create)
    return FIXED_GRID


@pytest.fixture()
def sio_for(flask_app):
    from bingo.auth import issue_token

    clients = []

    def _connect(user=None, token=None, headers=None, flush=True):
        auth = None
        if token is not None or user is not None:
            auth = {'token': token if token is not None else issue_token(user)}
        test_client = socketio.test_client(flask_app, namespace='/ws', auth=auth, headers=headers)
        clients.append(test_client)
        if flush and test_client.is_connected('/ws'):
            test_client.get_received('/ws')
        return test_client
    yield _connect
    for c in clients:
        try:
            if c.is_connected('/ws'):
                c.disconnect(namespace='/ws')
        except Exception:
            pass


def received(test_client, name=None):
    events = test_client.get_received('/ws')
    if name is None:
        return events
    return [e['args'][0] if e['args'] else None for e in events if e['name'] == name]
