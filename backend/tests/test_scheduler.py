import time
from datetime import datetime, timedelta, timezone
from functools import partial

import pytest

from bingo import create_app, db
from bingo.services.game import scheduler
from bingo.services.game.phases import begin_countdown, reset_game
from bingo.services.game.store import store as shared_store
from conftest import TestConfig, forget_login


class SchedulerConfig(TestConfig):
    # Timers run inline, one after another, inside the triggering request
    ENABLE_SCHEDULER_IN_TESTS = True
    SCHEDULE_LEAD_SEC = 3600


@pytest.fixture()
def timed_app():
    application = create_app(SchedulerConfig)
    application.before_request(forget_login)
    with application.app_context():
        import bingo.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


def test_timers_are_off_in_tests_by_default(flask_app):
    calls = []
    assert scheduler._launch(flask_app, ('demo',), lambda app: calls.append(app)) is False
    assert calls == []


def test_each_timer_runs_once(timed_app):
    calls = []

    def worker(app):
        calls.append(app)
        assert scheduler._launch(app, ('demo',), worker) is False

    assert scheduler._launch(timed_app, ('demo',), worker) is True
    assert calls == [timed_app]
    assert ('demo',) not in scheduler._scheduled_keys


def test_scheduled_game_plays_itself_out(timed_app):
    from bingo import socketio

    ana = timed_app.test_client()
    res = ana.post('/register', json={'name': 'Ana', 'password': 'pw', 'pix_key': 'ana@pix'})
    assert res.status_code == 201
    card = ana.post('/api/game/cards', json={'quantity': 1}).get_json()['cards'][0]

    forget_login()
    watcher = socketio.test_client(timed_app, flask_test_client=timed_app.test_client(), namespace='/ws')
    watcher.get_received('/ws')

    caller = timed_app.test_client()
    assert caller.post('/login', json={'name': 'admin', 'password': 'admin'}).status_code == 200
    start = (datetime.now(timezone.utc) + timedelta(seconds=60)).isoformat()
    res = caller.post('/api/game/schedule', json={'start_time': start})
    assert res.status_code == 201

    state = shared_store.refresh()
    assert state['bingo_winner'] == {'card_id': card['id'], 'player_name': 'Ana'}
    assert state['player_wins'] == {'Ana': 1}
    assert state['is_game_active'] is False
    assert state['scheduled_games'] == []
    drawn = state['drawn_numbers']
    assert len(drawn) == len(set(drawn))
    assert state['caller_lease']['holder'] == shared_store.session_id

    texts = [pkt['args'][0]['text'] for pkt in watcher.get_received('/ws') if pkt['name'] == 'announce']
    assert texts[0].startswith('Attention, bingo starts in 3 seconds')
    assert texts[1:4] == ['2', '1', 'Here we go!']
    assert 'Ana' in texts[-1]
    watcher.disconnect(namespace='/ws')


def test_countdown_worker_abandons_a_reset_game(flask_app, store):
    store.get()
    store.update(partial(begin_countdown, seconds=3, now=time.time()))
    game_id = store.get()['game_starting_id']
    store.update(reset_game)

    scheduler._countdown_worker(flask_app, game_id)
    state = store.get()
    assert state['is_game_active'] is False
    assert state['pre_game_countdown'] is None


def test_countdown_worker_starts_the_game(flask_app, store):
    store.get()
    store.update(partial(begin_countdown, seconds=2, now=time.time()))
    game_id = store.get()['game_starting_id']

    scheduler._countdown_worker(flask_app, game_id)
    state = store.get()
    assert state['is_game_active'] is True
    assert state['active_game_id'] == game_id
    assert state['pre_game_countdown'] is None


def test_claim_expiry_clears_only_its_own_marker(flask_app, store):
    stamp = time.time() - 10
    store.get()
    store.update(lambda state: {'invalid_bingo_claim': {'player_name': 'Ana', 'timestamp': stamp + 1}})
    scheduler._claim_expiry_worker(flask_app, 'Ana', stamp)
    assert store.get()['invalid_bingo_claim'] is not None

    scheduler._claim_expiry_worker(flask_app, 'Ana', stamp + 1)
    assert store.get()['invalid_bingo_claim'] is None
