from flask_socketio import join_room, leave_room, emit
from bingo import socketio
from flask import current_app, request
from flask_login import current_user
from functools import partial
from typing import Dict, Any
import time

from bingo.services.game.channel import GAME_ROOM, public_state
from bingo.services.game.narration import narrator
from bingo.services.game.roster import mark_offline, mark_online
from bingo.services.game.store import store


def handle_connect(auth=None):
    join_room(GAME_ROOM)
    name = current_user.name if current_user.is_authenticated else None
    _sid_to_ctx[_get_sid()] = {
        'player_name': name,
        'is_caller': bool(name and current_user.is_caller),
    }
    if name:
        _connection_count[name] = _connection_count.get(name, 0) + 1
        _cancel_scheduled_offline(name)
        store.update(partial(mark_online, name=name))
    emit('connected', {'message': 'Connected to /ws', 'player_name': name})
    # Late joiners get the current snapshot right away
    state = store.get()
    emit('state_update', {'version': store.version, 'state': public_state(state), 'degraded': False})


def handle_disconnect(reason=None):
    # The player goes offline once their last socket is gone
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or not ctx.get('player_name'):
        return
    name = ctx['player_name']
    _connection_count[name] = max(0, _connection_count.get(name, 0) - 1)
    # In tests, go offline immediately for determinism; in prod, allow grace period
    if current_app.config.get('TESTING'):
        if _connection_count.get(name, 0) == 0:
            _go_offline(name)
        return
    _schedule_offline_if_no_connection(name)


def handle_join_game(data=None):
    join_room(GAME_ROOM)
    emit('joined', {'room': GAME_ROOM})


def handle_leave_game(data=None):
    leave_room(GAME_ROOM)
    emit('left', {'room': GAME_ROOM})


def handle_ping(data):
    emit('pong', data or {})


# ---- Narration signals from the caller's browser ----

def handle_narration_blocked(data=None):
    if not _is_caller():
        emit('error', {'message': 'Only the caller reports narration state'})
        return
    narrator.set_blocked(True)
    current_app.logger.info("[narration] blocked by browser, numbers stay queued")
    emit('narration_state', {'blocked': True})


def handle_narration_unblocked(data=None):
    if not _is_caller():
        emit('error', {'message': 'Only the caller reports narration state'})
        return
    narrator.set_blocked(False)
    current_app.logger.info("[narration] unblocked")
    emit('narration_state', {'blocked': False})


def handle_interrupt_narration(data=None):
    if not _is_caller():
        emit('error', {'message': 'Only the caller may interrupt narration'})
        return
    narrator.interrupt()
    emit('narration_state', {'interrupted': True})

# ---- Presence lifecycle helpers ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_connection_count: Dict[str, int] = {}
_offline_deadline: Dict[str, float] = {}

def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def _is_caller() -> bool:
    ctx = _sid_to_ctx.get(_get_sid())
    return bool(ctx and ctx.get('is_caller'))

def _go_offline(name: str) -> None:
    store.update(partial(mark_offline, name=name))
    _connection_count.pop(name, None)
    _offline_deadline.pop(name, None)

def _schedule_offline_if_no_connection(name: str, delay_sec: float = None) -> None:
    if _connection_count.get(name, 0) > 0:
        return
    app = current_app._get_current_object()
    if delay_sec is None:
        delay_sec = float(app.config.get('ONLINE_GRACE_SEC', 2))
    _offline_deadline[name] = time.time() + delay_sec

    def _runner(player: str, deadline: float):
        sleep_for = max(0.0, deadline - time.time())
        if sleep_for:
            socketio.sleep(sleep_for)
        if _connection_count.get(player, 0) == 0 and _offline_deadline.get(player) == deadline:
            with app.app_context():
                _go_offline(player)

    socketio.start_background_task(_runner, name, _offline_deadline[name])

def _cancel_scheduled_offline(name: str) -> None:
    _offline_deadline.pop(name, None)



def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_game': handle_join_game,
        'leave_game': handle_leave_game,
        'ping': handle_ping,
        'narration_blocked': handle_narration_blocked,
        'narration_unblocked': handle_narration_unblocked,
        'interrupt_narration': handle_interrupt_narration,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace='/')
