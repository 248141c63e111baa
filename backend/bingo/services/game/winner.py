from typing import Iterable, Iterator, List, Optional

from .cards import CARD_SIZE, COLUMNS, Cell, Grid, grid_from_json

LINE = 'line'
FULL = 'full'
GAME_MODES = (LINE, FULL)

AUTO = 'auto'
MANUAL = 'manual'
MARKING_MODES = (AUTO, MANUAL)


def iter_lines(grid: Grid) -> Iterator[List[Cell]]:
    """Yield columns, then rows, then the two diagonals."""
    columns = [grid[letter] for letter in COLUMNS]
    for column in columns:
        yield column
    for row in range(CARD_SIZE):
        yield [column[row] for column in columns]
    yield [columns[i][i] for i in range(CARD_SIZE)]
    yield [columns[i][CARD_SIZE - 1 - i] for i in range(CARD_SIZE)]


def card_wins(grid: Grid, drawn, mode: str) -> bool:
    if mode == FULL:
        return all(cell.is_marked(drawn) for letter in COLUMNS for cell in grid[letter])
    return any(all(cell.is_marked(drawn) for cell in line) for line in iter_lines(grid))


def check_winner(cards: Iterable[dict], drawn, mode: str) -> Optional[dict]:
    """Return the first winning card as ``{card_id, player_name}``, or None.

    Cards are scanned in the order given, so ties go to the earlier card.
    The free space always counts as marked. No side effects.
    """
    drawn = frozenset(drawn)
    for card in cards:
        if card_wins(grid_from_json(card['grid']), drawn, mode):
            return {'card_id': card['id'], 'player_name': card['owner']}
    return None


def auto_marking_cards(state: dict) -> List[dict]:
    """Cards whose owners let the room mark them; no preference means auto."""
    preferences = state.get('player_preferences') or {}
    return [
        card for card in state.get('generated_cards', [])
        if preferences.get(card['owner'], AUTO) == AUTO
    ]
