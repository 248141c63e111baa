"""Player-facing updates to the shared record: accounts, presence, cards."""
from typing import Optional

from .cards import build_cards
from .winner import MARKING_MODES

REACTIONS = ('good_luck', 'shake')


def register_user(state: dict, name: str, password_hash: str, pix_key: str) -> Optional[dict]:
    if any(u['name'] == name for u in state.get('users', [])):
        return None
    user = {'name': name, 'password_hash': password_hash, 'pix_key': pix_key}
    return {'users': state.get('users', []) + [user]}


def mark_online(state: dict, name: str) -> Optional[dict]:
    online = state.get('online_users', [])
    if name in online:
        return None
    return {'online_users': online + [name]}


def mark_offline(state: dict, name: str) -> Optional[dict]:
    online = state.get('online_users', [])
    if name not in online:
        return None
    return {'online_users': [u for u in online if u != name]}


def set_preference(state: dict, name: str, preference: str) -> Optional[dict]:
    if preference not in MARKING_MODES:
        return None
    preferences = dict(state.get('player_preferences') or {})
    if preferences.get(name) == preference:
        return None
    preferences[name] = preference
    return {'player_preferences': preferences}


def add_cards(state: dict, owner: str, quantity: int, attempts: int, rng=None) -> Optional[dict]:
    """Append freshly generated cards; refused once a game is running.

    Signatures are checked against the authoritative card list, so two
    buyers racing each other can't end up with the same card.
    """
    if state.get('is_game_active') or state.get('bingo_winner'):
        return None
    existing = state.get('generated_cards', [])
    return {'generated_cards': existing + build_cards(owner, quantity, existing, attempts=attempts, rng=rng)}


def record_reaction(state: dict, reaction: str, now: float) -> Optional[dict]:
    if reaction not in REACTIONS:
        return None
    return {'last_reaction': {'type': reaction, 'timestamp': now}}
