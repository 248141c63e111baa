"""Game phase controller.

The phase is never stored; it is derived from the shared record:

    idle -> scheduled -> pre_countdown -> active -> winner -> (reset) -> idle

Every transition below is a pure function ``(state, ...) -> changes | None``
meant to run inside ``StateStore.update``. Returning None means the
transition is not legal against the state it was handed, which is always
the freshest authoritative copy, so a transition computed against a phase
that has since moved on simply does nothing.
"""
import copy
import enum
import random
from datetime import datetime, timezone
from typing import Optional

from .winner import GAME_MODES, LINE, auto_marking_cards, check_winner

MAX_NUMBER = 75


class Phase(str, enum.Enum):
    IDLE = 'idle'
    SCHEDULED = 'scheduled'
    PRE_COUNTDOWN = 'pre_countdown'
    ACTIVE = 'active'
    WINNER = 'winner'


# Fields cleared by a reset. Accounts, online players, the leaderboard,
# the schedule, the mode and the game counter survive.
PER_GAME_DEFAULTS = {
    'generated_cards': [],
    'drawn_numbers': [],
    'is_game_active': False,
    'bingo_winner': None,
    'pre_game_countdown': None,
    'game_starting_id': None,
    'active_game_id': None,
    'invalid_bingo_claim': None,
    'player_preferences': {},
    'last_reaction': None,
}


def default_state(users=None) -> dict:
    state = {
        'users': list(users or []),
        'online_users': [],
        'player_wins': {},
        'game_mode': LINE,
        'scheduled_games': [],
        'game_counter': 0,
        'caller_lease': None,
    }
    state.update(copy.deepcopy(PER_GAME_DEFAULTS))
    return state


def parse_start_time(value: str) -> float:
    """Epoch seconds for an ISO-8601 start time; naive values are UTC."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def next_scheduled_game(state: dict, now: float) -> Optional[dict]:
    upcoming = [g for g in state.get('scheduled_games', []) if parse_start_time(g['start_time']) > now]
    if not upcoming:
        return None
    return min(upcoming, key=lambda g: parse_start_time(g['start_time']))


def derive_phase(state: dict, now: float) -> Phase:
    if state.get('bingo_winner'):
        return Phase.WINNER
    if state.get('is_game_active'):
        return Phase.ACTIVE
    if state.get('pre_game_countdown') is not None:
        return Phase.PRE_COUNTDOWN
    if next_scheduled_game(state, now):
        return Phase.SCHEDULED
    return Phase.IDLE


def is_exhausted(state: dict) -> bool:
    return len(state.get('drawn_numbers', [])) >= MAX_NUMBER


def _next_game_id(state: dict) -> int:
    return int(state.get('game_counter') or 0) + 1


# ---- Schedule and mode (caller, outside a running game) ----

def schedule_game(state: dict, start_time: str, now: float) -> Optional[dict]:
    # A past start would never come up as the next game
    if parse_start_time(start_time) <= now:
        return None
    game_id = _next_game_id(state)
    return {
        'scheduled_games': state.get('scheduled_games', []) + [{'id': game_id, 'start_time': start_time}],
        'game_counter': game_id,
    }


def remove_game(state: dict, game_id: int) -> Optional[dict]:
    remaining = [g for g in state.get('scheduled_games', []) if g['id'] != game_id]
    if len(remaining) == len(state.get('scheduled_games', [])):
        return None
    return {'scheduled_games': remaining}


def set_game_mode(state: dict, mode: str) -> Optional[dict]:
    if mode not in GAME_MODES or state.get('is_game_active') or state.get('game_mode') == mode:
        return None
    return {'game_mode': mode}


# ---- Countdown and start (caller only) ----

def begin_countdown(state: dict, seconds: int, now: float, game_id: Optional[int] = None) -> Optional[dict]:
    """Idle/Scheduled -> PreCountdown for ``game_id`` (or the next scheduled game)."""
    if derive_phase(state, now) not in (Phase.IDLE, Phase.SCHEDULED):
        return None
    if game_id is not None and game_id not in {g['id'] for g in state.get('scheduled_games', [])}:
        return None
    changes = {'pre_game_countdown': max(0, int(seconds))}
    if game_id is None:
        upcoming = next_scheduled_game(state, now)
        game_id = upcoming['id'] if upcoming else None
    if game_id is None:
        game_id = _next_game_id(state)
        changes['game_counter'] = game_id
    changes['game_starting_id'] = game_id
    return changes


def tick_countdown(state: dict, game_id: int) -> Optional[dict]:
    countdown = state.get('pre_game_countdown')
    if (state.get('is_game_active') or state.get('bingo_winner') or countdown is None
            or countdown <= 0 or state.get('game_starting_id') != game_id):
        return None
    return {'pre_game_countdown': countdown - 1}


def start_game(state: dict, game_id: int) -> Optional[dict]:
    """PreCountdown at zero -> Active; consumes the scheduled entry."""
    if (state.get('is_game_active') or state.get('bingo_winner')
            or state.get('pre_game_countdown') != 0 or state.get('game_starting_id') != game_id):
        return None
    return {
        'is_game_active': True,
        'pre_game_countdown': None,
        'game_starting_id': None,
        'active_game_id': game_id,
        'drawn_numbers': [],
        'invalid_bingo_claim': None,
        'scheduled_games': [g for g in state.get('scheduled_games', []) if g['id'] != game_id],
    }


# ---- Active game ----

def draw_number(state: dict, game_id: int, rng=None) -> Optional[dict]:
    """Append one number not drawn yet, sampled uniformly from what is left."""
    if (not state.get('is_game_active') or state.get('bingo_winner')
            or state.get('active_game_id') != game_id or is_exhausted(state)):
        return None
    drawn = state.get('drawn_numbers', [])
    taken = set(drawn)
    remaining = [n for n in range(1, MAX_NUMBER + 1) if n not in taken]
    number = (rng or random).choice(remaining)
    return {'drawn_numbers': drawn + [number]}


def declare_winner(state: dict, winner: dict, game_id: Optional[int] = None) -> Optional[dict]:
    """Active -> Winner. A winner already on record is never replaced."""
    if state.get('bingo_winner') or not state.get('is_game_active'):
        return None
    if game_id is not None and state.get('active_game_id') != game_id:
        return None
    wins = dict(state.get('player_wins') or {})
    wins[winner['player_name']] = wins.get(winner['player_name'], 0) + 1
    return {
        'bingo_winner': {'card_id': winner['card_id'], 'player_name': winner['player_name']},
        'is_game_active': False,
        'invalid_bingo_claim': None,
        'player_wins': wins,
    }


def settle_auto_winner(state: dict, game_id: int) -> Optional[dict]:
    """Declare the first auto-marking card that wins against the drawn numbers."""
    if not state.get('is_game_active') or state.get('bingo_winner'):
        return None
    winner = check_winner(auto_marking_cards(state), state.get('drawn_numbers', []), state.get('game_mode', LINE))
    if not winner:
        return None
    return declare_winner(state, winner, game_id)


# ---- Reset ----

def reset_game(state: dict) -> Optional[dict]:
    changes = {
        key: copy.deepcopy(value)
        for key, value in PER_GAME_DEFAULTS.items()
        if state.get(key) != value
    }
    return changes or None


def start_next_cycle(state: dict, seconds: int) -> dict:
    """Reset the round and immediately count down into a fresh game."""
    game_id = _next_game_id(state)
    changes = reset_game(state) or {}
    changes.update({
        'pre_game_countdown': max(0, int(seconds)),
        'game_starting_id': game_id,
        'game_counter': game_id,
    })
    return changes
