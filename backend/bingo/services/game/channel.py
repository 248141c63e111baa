import copy
from typing import Callable, List

from flask import current_app

from bingo import socketio

GAME_ROOM = 'game:room'
NAMESPACE = '/ws'


def public_state(state: dict) -> dict:
    """The shared record as browsers may see it (no password hashes)."""
    view = copy.deepcopy(state)
    view['users'] = [
        {k: v for k, v in user.items() if k != 'password_hash'}
        for user in view.get('users', [])
    ]
    return view


class ChangeChannel:
    """Fans every committed snapshot out to local subscribers and sockets.

    Deliveries equal to the previous one are dropped, so redundant
    publishes of the same snapshot reach nobody twice.
    """

    def __init__(self):
        self._subscribers: List[Callable] = []
        self._last = None

    def reset(self) -> None:
        self._subscribers = []
        self._last = None

    def subscribe(self, callback: Callable) -> Callable:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, version: int, state: dict, degraded: bool = False) -> bool:
        if self._last == (version, state):
            return False
        self._last = (version, copy.deepcopy(state))
        # Sockets first: a subscriber may go on to commit newer snapshots
        socketio.emit(
            'state_update',
            {'version': version, 'state': public_state(state), 'degraded': degraded},
            to=GAME_ROOM,
            namespace=NAMESPACE,
        )
        for callback in list(self._subscribers):
            try:
                callback(copy.deepcopy(state))
            except Exception:
                current_app.logger.exception(f"[channel-subscriber-failed] version={version}")
        return True
