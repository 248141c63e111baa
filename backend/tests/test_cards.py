import random
import pytest

from bingo.errors import CardGenerationError
from bingo.services.game.cards import (
    COLUMN_BANDS,
    COLUMNS,
    FREE,
    Cell,
    build_cards,
    card_price,
    card_signature,
    generate_grid,
    grid_from_json,
    grid_to_json,
    validate_grid,
)
from conftest import SAMPLE_COLUMNS, make_card


def test_generated_grids_respect_bands_and_free_space():
    rng = random.Random(7)
    for _ in range(200):
        grid = generate_grid(rng)
        validate_grid(grid)
        assert grid['N'][2].is_free
        for letter in COLUMNS:
            low, high = COLUMN_BANDS[letter]
            numbers = [c.number for c in grid[letter] if not c.is_free]
            assert all(low <= n <= high for n in numbers)
            assert len(set(numbers)) == len(numbers)


def test_stored_form_uses_free_marker():
    grid = generate_grid(random.Random(1))
    data = grid_to_json(grid)
    assert data['N'][2] == 'FREE'
    assert grid_from_json(data) == grid


def test_validate_grid_rejects_out_of_band_number():
    grid = grid_from_json(make_card('c', 'ana', SAMPLE_COLUMNS)['grid'])
    grid['B'][0] = Cell(16)
    with pytest.raises(ValueError):
        validate_grid(grid)


def test_validate_grid_rejects_misplaced_free_space():
    grid = grid_from_json(make_card('c', 'ana', SAMPLE_COLUMNS)['grid'])
    grid['B'][0] = FREE
    with pytest.raises(ValueError):
        validate_grid(grid)


def test_signature_ignores_layout():
    card = make_card('c', 'ana', SAMPLE_COLUMNS)
    shuffled = [list(reversed(col)) for col in SAMPLE_COLUMNS]
    # keep the free space in the centre
    shuffled[2] = [35, 34, 'FREE', 32, 31]
    other = make_card('d', 'bob', shuffled)
    assert card_signature(grid_from_json(card['grid'])) == card_signature(grid_from_json(other['grid']))


def test_build_cards_never_repeats_a_signature():
    existing = []
    rng = random.Random(3)
    for owner in ('ana', 'bob', 'cid'):
        existing += build_cards(owner, 10, existing, rng=rng)
    signatures = {card_signature(grid_from_json(c['grid'])) for c in existing}
    assert len(signatures) == 30
    assert len({c['id'] for c in existing}) == 30


def test_build_cards_gives_up_after_attempts():
    fixed = grid_from_json(make_card('c', 'ana', SAMPLE_COLUMNS)['grid'])
    existing = [make_card('c', 'ana', SAMPLE_COLUMNS)]
    calls = []

    def same_card(rng):
        calls.append(1)
        return fixed

    with pytest.raises(CardGenerationError) as excinfo:
        build_cards('bob', 1, existing, attempts=5, generate=same_card)
    assert excinfo.value.attempts == 5
    assert len(calls) == 5


def test_card_price_pairs_and_singles():
    assert card_price(1, 20, 30) == 20
    assert card_price(2, 20, 30) == 30
    assert card_price(3, 20, 30) == 50
    assert card_price(10, 20, 30) == 150
