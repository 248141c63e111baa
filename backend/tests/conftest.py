import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `bingo` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from bingo import create_app, db, socketio


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    SOCKETIO_MESSAGE_QUEUE = None
    # Cheap hashing keeps registration fast
    PASSWORD_HASH_METHOD = 'pbkdf2:sha256:1000'
    CALLER_NAME = 'admin'
    CALLER_PASSWORD = 'admin'
    CALLER_PIX_KEY = 'admin'
    PRE_GAME_COUNTDOWN_SEC = 3
    NEXT_CYCLE_COUNTDOWN_SEC = 5
    COUNTDOWN_TICK_SEC = 0
    SCHEDULE_POLL_SEC = 0
    FIRST_DRAW_DELAY_SEC = 0
    DRAW_INTERVAL_SEC = 0
    NARRATION_DURATION_SEC = 0
    NARRATION_RETRY_SEC = 0
    ONLINE_GRACE_SEC = 0


def forget_login():
    # Requests reuse the fixture's app context, and with it the user cached on ``g``
    g.pop('_login_user', None)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    application.before_request(forget_login)
    with application.app_context():
        # Ensure models are imported so tables are created
        import bingo.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def caller_client(flask_app):
    caller = flask_app.test_client()
    res = caller.post('/login', json={'name': 'admin', 'password': 'admin'})
    assert res.status_code == 200
    return caller


@pytest.fixture()
def register_player(flask_app):
    """Return a helper that registers a player on a fresh test client."""
    def _register(name, password='secret', pix_key=None):
        player = flask_app.test_client()
        res = player.post('/register', json={'name': name, 'password': password, 'pix_key': pix_key or f'{name}@pix'})
        assert res.status_code == 201
        return player
    return _register


@pytest.fixture()
def store(flask_app):
    from bingo.services.game.store import store as shared_store
    return shared_store


@pytest.fixture()
def connect_socket(flask_app):
    """Return a helper that opens a /ws socket carrying a Flask client's login."""
    opened = []

    def _connect(flask_client=None):
        forget_login()
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_client or flask_app.test_client(),
            namespace='/ws'
        )
        opened.append(test_client)
        return test_client

    yield _connect
    for test_client in opened:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


@pytest.fixture()
def sio_client(connect_socket):
    return connect_socket()


def make_card(card_id, owner, columns):
    """Build a stored card from five column lists; use 'FREE' for the free space."""
    return {'id': card_id, 'owner': owner, 'grid': dict(zip('BINGO', columns))}


# Row three of this card reads 12, 27, FREE, 58, 71
SAMPLE_COLUMNS = [
    [1, 2, 12, 4, 5],
    [16, 17, 27, 19, 20],
    [31, 32, 'FREE', 34, 35],
    [46, 47, 58, 49, 50],
    [61, 62, 71, 64, 65],
]
