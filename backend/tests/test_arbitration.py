from bingo.services.game.arbitration import (
    INVALID,
    REJECTED,
    VALID,
    claim_bingo,
    clear_invalid_claim,
    evaluate_claim,
)
from bingo.services.game.phases import default_state
from conftest import SAMPLE_COLUMNS, make_card

NOW = 1_700_000_000.0
COOLDOWN = 5


def claim_state(drawn, **extra):
    state = default_state()
    state.update({
        'is_game_active': True,
        'active_game_id': 1,
        'generated_cards': [make_card('card-1', 'Ana', SAMPLE_COLUMNS)],
        'drawn_numbers': list(drawn),
    })
    state.update(extra)
    return state


def test_valid_claim_declares_the_winner():
    changes = evaluate_claim(claim_state([12, 27, 58, 71]), 'Ana', 'card-1', NOW, COOLDOWN)
    assert changes['bingo_winner'] == {'card_id': 'card-1', 'player_name': 'Ana'}
    assert changes['player_wins'] == {'Ana': 1}


def test_false_claim_sets_the_cooldown_marker():
    changes = evaluate_claim(claim_state([12, 27, 58]), 'Ana', 'card-1', NOW, COOLDOWN)
    assert changes == {'invalid_bingo_claim': {'player_name': 'Ana', 'timestamp': NOW}}


def test_claims_during_cooldown_are_ignored_until_it_passes():
    marker = {'player_name': 'Ana', 'timestamp': NOW}
    state = claim_state([12, 27, 58, 71], invalid_bingo_claim=marker)
    assert evaluate_claim(state, 'Ana', 'card-1', NOW + 4.9, COOLDOWN) is None
    later = evaluate_claim(state, 'Ana', 'card-1', NOW + 5, COOLDOWN)
    assert later['bingo_winner']['player_name'] == 'Ana'


def test_cooldown_is_per_player():
    state = claim_state([12, 27, 58, 71], invalid_bingo_claim={'player_name': 'Bob', 'timestamp': NOW})
    assert evaluate_claim(state, 'Ana', 'card-1', NOW, COOLDOWN)['bingo_winner']


def test_claims_on_cards_you_dont_own_are_rejected():
    state = claim_state([12, 27, 58, 71])
    assert evaluate_claim(state, 'Bob', 'card-1', NOW, COOLDOWN) is None
    assert evaluate_claim(state, 'Ana', 'card-404', NOW, COOLDOWN) is None


def test_no_claims_outside_an_active_game():
    assert evaluate_claim(claim_state([12, 27, 58, 71], is_game_active=False), 'Ana', 'card-1', NOW, COOLDOWN) is None
    won = claim_state([12, 27, 58, 71], bingo_winner={'card_id': 'card-9', 'player_name': 'Bob'})
    assert evaluate_claim(won, 'Ana', 'card-1', NOW, COOLDOWN) is None


def test_expiry_only_clears_its_own_marker():
    state = claim_state([], invalid_bingo_claim={'player_name': 'Ana', 'timestamp': NOW + 3})
    assert clear_invalid_claim(state, 'Ana', NOW) is None
    assert clear_invalid_claim(state, 'Bob', NOW + 3) is None
    assert clear_invalid_claim(state, 'Ana', NOW + 3) == {'invalid_bingo_claim': None}
    assert clear_invalid_claim(claim_state([]), 'Ana', NOW) is None


def test_claim_bingo_against_the_store(store):
    store.get()
    store.update(lambda state: claim_state([12, 27, 58], users=state['users']))

    assert claim_bingo(store, 'Ana', 'card-1', now=NOW) == INVALID
    assert store.get()['invalid_bingo_claim'] == {'player_name': 'Ana', 'timestamp': NOW}
    assert claim_bingo(store, 'Ana', 'card-1', now=NOW + 1) == REJECTED

    # A new draw doesn't lift the cooldown
    store.update(lambda state: {'drawn_numbers': state['drawn_numbers'] + [71]})
    assert store.get()['invalid_bingo_claim'] is not None
    assert claim_bingo(store, 'Ana', 'card-1', now=NOW + 2) == REJECTED

    assert claim_bingo(store, 'Ana', 'card-1', now=NOW + COOLDOWN) == VALID
    state = store.get()
    assert state['bingo_winner'] == {'card_id': 'card-1', 'player_name': 'Ana'}
    assert state['invalid_bingo_claim'] is None

    # Later claims can't replace the winner
    assert claim_bingo(store, 'Ana', 'card-1', now=NOW + 10) == REJECTED
    assert store.get()['player_wins'] == {'Ana': 1}
