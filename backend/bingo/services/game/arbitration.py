"""Verification of player-submitted bingo claims.

A claim is judged against the room's drawn numbers, never against what
the player marked on their own screen. A false claim leaves a short-lived
``invalid_bingo_claim`` marker that keeps the same player from claiming
again until the cooldown has passed.
"""
import time
from functools import partial
from typing import Optional

from flask import current_app

from .phases import declare_winner
from .winner import LINE, check_winner

VALID = 'valid'
INVALID = 'invalid'
REJECTED = 'rejected'


def cooldown_active(state: dict, player_name: str, now: float, cooldown: float) -> bool:
    marker = state.get('invalid_bingo_claim')
    return bool(marker) and marker['player_name'] == player_name and now - marker['timestamp'] < cooldown


def evaluate_claim(state: dict, player_name: str, card_id: str, now: float, cooldown: float) -> Optional[dict]:
    if state.get('bingo_winner') or not state.get('is_game_active'):
        return None
    if cooldown_active(state, player_name, now, cooldown):
        return None
    card = next(
        (c for c in state.get('generated_cards', []) if c['id'] == card_id and c['owner'] == player_name),
        None,
    )
    if card is None:
        return None
    winner = check_winner([card], state.get('drawn_numbers', []), state.get('game_mode', LINE))
    if winner:
        return declare_winner(state, winner)
    return {'invalid_bingo_claim': {'player_name': player_name, 'timestamp': now}}


def clear_invalid_claim(state: dict, player_name: str, timestamp: float) -> Optional[dict]:
    marker = state.get('invalid_bingo_claim')
    # A newer marker (or none at all) means this expiry is stale
    if not marker or marker['player_name'] != player_name or marker['timestamp'] != timestamp:
        return None
    return {'invalid_bingo_claim': None}


def claim_bingo(store, player_name: str, card_id: str, now: Optional[float] = None) -> str:
    """Submit a claim; returns ``valid``, ``invalid`` or ``rejected``."""
    now = time.time() if now is None else now
    cooldown = float(current_app.config.get('INVALID_CLAIM_COOLDOWN_SEC', 5))
    committed = store.update(partial(
        evaluate_claim, player_name=player_name, card_id=card_id, now=now, cooldown=cooldown,
    ))
    if committed is None:
        current_app.logger.info(f"[claim-rejected] player={player_name} card={card_id}")
        return REJECTED
    if committed.get('bingo_winner') == {'card_id': card_id, 'player_name': player_name}:
        current_app.logger.info(f"[claim-valid] player={player_name} card={card_id}")
        return VALID
    current_app.logger.info(f"[claim-invalid] player={player_name} card={card_id} cooldown={cooldown}s")
    from .scheduler import schedule_claim_expiry
    schedule_claim_expiry(current_app._get_current_object(), player_name, now)
    return INVALID
