from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user, login_required
from functools import partial
import time

from bingo.errors import CardGenerationError
from bingo.services.game.arbitration import claim_bingo
from bingo.services.game.cards import card_price
from bingo.services.game.channel import public_state
from bingo.services.game.lease import acquire_lease, guarded_by_lease, lease_holder
from bingo.services.game.narration import narrator
from bingo.services.game.phases import (
    begin_countdown,
    declare_winner,
    derive_phase,
    draw_number,
    is_exhausted,
    next_scheduled_game,
    parse_start_time,
    remove_game,
    reset_game,
    schedule_game,
    set_game_mode,
    settle_auto_winner,
    start_game,
    start_next_cycle,
    tick_countdown,
)
from bingo.services.game.roster import REACTIONS, add_cards, record_reaction, set_preference
from bingo.services.game.store import store
from bingo.services.game.winner import GAME_MODES, LINE, MARKING_MODES, check_winner


game = Blueprint('game', __name__)


def _caller_error():
    if not current_user.is_authenticated:
        return jsonify({'error': 'Login required'}), 401
    if not current_user.is_caller:
        return jsonify({'error': 'Only the caller may do this'}), 403
    return None


def _lease_ttl() -> float:
    return float(current_app.config.get('CALLER_LEASE_SEC', 15))


def _as_caller(fn):
    """Apply a caller transition under this session's caller lease."""
    return store.update(guarded_by_lease(fn, store.session_id, time.time(), _lease_ttl()))


def _phase_conflict(action: str):
    phase = derive_phase(store.get(), time.time())
    current_app.logger.info(f"[noop] action={action} phase={phase.value}")
    return jsonify({'error': f'Cannot {action} while the game is {phase.value}', 'phase': phase.value}), 409


def _state_payload(state=None):
    state = store.get() if state is None else state
    now = time.time()
    cfg = current_app.config
    return {
        'version': store.version,
        'phase': derive_phase(state, now).value,
        'state': public_state(state),
        'next_game': next_scheduled_game(state, now),
        'exhausted': is_exhausted(state),
        'caller_lease_holder': lease_holder(state, now),
        # Include timer durations so clients can show countdowns
        'durations': {
            'pre_game_countdown': int(cfg.get('PRE_GAME_COUNTDOWN_SEC', 10)),
            'next_cycle_countdown': int(cfg.get('NEXT_CYCLE_COUNTDOWN_SEC', 20)),
            'invalid_claim_cooldown': float(cfg.get('INVALID_CLAIM_COOLDOWN_SEC', 5)),
        },
        'prices': {
            'single': int(cfg.get('CARD_PRICE_SINGLE', 20)),
            'double': int(cfg.get('CARD_PRICE_DOUBLE', 30)),
        },
    }


@game.route('/state', methods=['GET'])
def get_game_state():
    return jsonify(_state_payload(store.refresh()))


@game.route('/leaderboard', methods=['GET'])
def get_leaderboard():
    wins = store.get().get('player_wins') or {}
    board = sorted(wins.items(), key=lambda item: (-item[1], item[0]))
    return jsonify([{'player_name': name, 'wins': count} for name, count in board])


# ---- Player actions ----

@game.route('/cards', methods=['POST'])
@login_required
def buy_cards():
    data = request.get_json(silent=True) or {}
    max_cards = int(current_app.config.get('MAX_CARDS_PER_PURCHASE', 10))
    try:
        quantity = int(data.get('quantity', 1))
    except (TypeError, ValueError):
        return jsonify({'error': 'Quantity must be a number'}), 400
    if not 1 <= quantity <= max_cards:
        return jsonify({'error': f'Buy between 1 and {max_cards} cards at a time'}), 400

    attempts = int(current_app.config.get('CARD_UNIQUE_ATTEMPTS', 100))
    try:
        committed = store.update(partial(add_cards, owner=current_user.name, quantity=quantity, attempts=attempts))
    except CardGenerationError as exc:
        current_app.logger.warning(f"[cards-exhausted] player={current_user.name} quantity={quantity} {exc}")
        return jsonify({'error': str(exc)}), 422
    if committed is None:
        return _phase_conflict('buy cards')

    mine = [c for c in committed['generated_cards'] if c['owner'] == current_user.name]
    price = card_price(
        quantity,
        int(current_app.config.get('CARD_PRICE_SINGLE', 20)),
        int(current_app.config.get('CARD_PRICE_DOUBLE', 30)),
    )
    return jsonify({'cards': mine[-quantity:], 'price': price}), 201


@game.route('/preference', methods=['POST'])
@login_required
def update_preference():
    data = request.get_json(silent=True) or {}
    preference = data.get('preference')
    if preference not in MARKING_MODES:
        return jsonify({'error': f"Preference must be one of {', '.join(MARKING_MODES)}"}), 400
    store.update(partial(set_preference, name=current_user.name, preference=preference))
    return jsonify(_state_payload())


@game.route('/claim', methods=['POST'])
@login_required
def submit_claim():
    data = request.get_json(silent=True) or {}
    card_id = data.get('card_id')
    if not card_id:
        return jsonify({'error': 'card_id is required'}), 400
    result = claim_bingo(store, current_user.name, card_id)
    payload = _state_payload()
    payload['result'] = result
    return jsonify(payload)


@game.route('/reaction', methods=['POST'])
@login_required
def send_reaction():
    data = request.get_json(silent=True) or {}
    reaction = data.get('type')
    if reaction not in REACTIONS:
        return jsonify({'error': f"Reaction must be one of {', '.join(REACTIONS)}"}), 400
    store.update(partial(record_reaction, reaction=reaction, now=time.time()))
    return jsonify({'ok': True})


# ---- Caller actions ----

@game.route('/mode', methods=['POST'])
def change_mode():
    error = _caller_error()
    if error:
        return error
    mode = (request.get_json(silent=True) or {}).get('mode')
    if mode not in GAME_MODES:
        return jsonify({'error': f"Mode must be one of {', '.join(GAME_MODES)}"}), 400
    committed = store.update(partial(set_game_mode, mode=mode))
    if committed is None and store.get().get('game_mode') != mode:
        return _phase_conflict('change mode')
    return jsonify(_state_payload())


@game.route('/schedule', methods=['POST'])
def add_scheduled_game():
    error = _caller_error()
    if error:
        return error
    start_time = (request.get_json(silent=True) or {}).get('start_time')
    if not isinstance(start_time, str):
        return jsonify({'error': 'start_time must be an ISO-8601 timestamp'}), 400
    try:
        starts_at = parse_start_time(start_time)
    except ValueError:
        return jsonify({'error': 'start_time must be an ISO-8601 timestamp'}), 400
    now = time.time()
    if starts_at <= now:
        return jsonify({'error': 'start_time must be in the future'}), 400
    committed = store.update(partial(schedule_game, start_time=start_time, now=now))
    if committed is None:
        return _phase_conflict('schedule a game')
    return jsonify({'game': committed['scheduled_games'][-1]}), 201


@game.route('/schedule/<int:game_id>', methods=['DELETE'])
def delete_scheduled_game(game_id):
    error = _caller_error()
    if error:
        return error
    if store.update(partial(remove_game, game_id=game_id)) is None:
        return jsonify({'error': 'Scheduled game not found'}), 404
    return jsonify(_state_payload())


@game.route('/countdown/start', methods=['POST'])
def start_countdown():
    error = _caller_error()
    if error:
        return error
    data = request.get_json(silent=True) or {}
    try:
        seconds = int(data.get('seconds', current_app.config.get('PRE_GAME_COUNTDOWN_SEC', 10)))
    except (TypeError, ValueError):
        return jsonify({'error': 'seconds must be a number'}), 400
    game_id = data.get('game_id')
    if game_id is not None:
        try:
            game_id = int(game_id)
        except (TypeError, ValueError):
            return jsonify({'error': 'game_id must be a number'}), 400
        if not any(g['id'] == game_id for g in store.refresh().get('scheduled_games', [])):
            return jsonify({'error': 'Scheduled game not found'}), 404
    committed = _as_caller(partial(begin_countdown, seconds=seconds, now=time.time(), game_id=game_id))
    if committed is None:
        return _phase_conflict('start the countdown')
    return jsonify(_state_payload(committed))


@game.route('/countdown/tick', methods=['POST'])
def tick():
    error = _caller_error()
    if error:
        return error
    game_id = store.refresh().get('game_starting_id')
    committed = _as_caller(partial(tick_countdown, game_id=game_id))
    if committed is None:
        return _phase_conflict('tick the countdown')
    return jsonify(_state_payload(committed))


@game.route('/start', methods=['POST'])
def begin_game():
    error = _caller_error()
    if error:
        return error
    game_id = store.refresh().get('game_starting_id')
    committed = _as_caller(partial(start_game, game_id=game_id))
    if committed is None:
        return _phase_conflict('start the game')
    return jsonify(_state_payload(committed))


@game.route('/draw', methods=['POST'])
def draw_next():
    error = _caller_error()
    if error:
        return error
    game_id = store.refresh().get('active_game_id')
    committed = _as_caller(partial(draw_number, game_id=game_id))
    if committed is None:
        return _phase_conflict('draw')
    number = committed['drawn_numbers'][-1]
    current_app.logger.info(f"[draw] game={game_id} number={number} count={len(committed['drawn_numbers'])} manual=True")
    committed = store.update(partial(settle_auto_winner, game_id=game_id)) or committed
    payload = _state_payload(committed)
    payload['number'] = number
    return jsonify(payload)


@game.route('/winner', methods=['POST'])
def set_winner():
    error = _caller_error()
    if error:
        return error
    card_id = (request.get_json(silent=True) or {}).get('card_id')
    if not card_id:
        return jsonify({'error': 'card_id is required'}), 400

    def _declare(state):
        card = next((c for c in state.get('generated_cards', []) if c['id'] == card_id), None)
        if card is None:
            return None
        winner = check_winner([card], state.get('drawn_numbers', []), state.get('game_mode', LINE))
        return declare_winner(state, winner) if winner else None

    committed = store.update(_declare)
    if committed is None:
        return _phase_conflict('declare this card the winner')
    return jsonify(_state_payload(committed))


@game.route('/reset', methods=['POST'])
def reset():
    error = _caller_error()
    if error:
        return error
    narrator.interrupt()
    store.update(reset_game)
    return jsonify(_state_payload())


@game.route('/next-cycle', methods=['POST'])
def next_cycle():
    error = _caller_error()
    if error:
        return error
    narrator.interrupt()
    seconds = int(current_app.config.get('NEXT_CYCLE_COUNTDOWN_SEC', 20))
    committed = _as_caller(partial(start_next_cycle, seconds=seconds))
    if committed is None:
        return _phase_conflict('start the next cycle')
    return jsonify(_state_payload(committed))


@game.route('/lease', methods=['POST'])
def take_lease():
    error = _caller_error()
    if error:
        return error
    now = time.time()
    committed = store.update(partial(acquire_lease, holder=store.session_id, now=now, ttl=_lease_ttl()))
    if committed is None:
        holder = lease_holder(store.refresh(), now)
        return jsonify({'error': 'Another session is calling this room', 'holder': holder}), 409
    return jsonify({'holder': store.session_id, 'expires_at': committed['caller_lease']['expires_at']})
