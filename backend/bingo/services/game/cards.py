import random
import uuid
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from bingo.errors import CardGenerationError

COLUMNS = ('B', 'I', 'N', 'G', 'O')
COLUMN_BANDS = {
    'B': (1, 15),
    'I': (16, 30),
    'N': (31, 45),
    'G': (46, 60),
    'O': (61, 75),
}
CARD_SIZE = 5
FREE_ROW = 2
# How the free space is written in the stored document
FREE_MARKER = 'FREE'


class Cell(NamedTuple):
    """One square of a card: a playable number, or the free space."""
    number: Optional[int] = None

    @property
    def is_free(self) -> bool:
        return self.number is None

    def is_marked(self, drawn) -> bool:
        return self.is_free or self.number in drawn


FREE = Cell()

Grid = Dict[str, List[Cell]]


def generate_grid(rng=None) -> Grid:
    """Produce a structurally valid card with the free space centred in N."""
    rng = rng or random
    grid: Grid = {}
    for letter in COLUMNS:
        low, high = COLUMN_BANDS[letter]
        count = CARD_SIZE - 1 if letter == 'N' else CARD_SIZE
        cells = [Cell(n) for n in sorted(rng.sample(range(low, high + 1), count))]
        if letter == 'N':
            cells.insert(FREE_ROW, FREE)
        grid[letter] = cells
    return grid


def grid_to_json(grid: Grid) -> dict:
    return {
        letter: [FREE_MARKER if cell.is_free else cell.number for cell in grid[letter]]
        for letter in COLUMNS
    }


def grid_from_json(data: dict) -> Grid:
    grid: Grid = {}
    for letter in COLUMNS:
        grid[letter] = [FREE if value == FREE_MARKER else Cell(int(value)) for value in data[letter]]
    return grid


def validate_grid(grid: Grid) -> None:
    """Raise ValueError unless the grid obeys the column bands and free-space rule."""
    seen = set()
    free_cells = []
    for letter in COLUMNS:
        column = grid.get(letter)
        if not column or len(column) != CARD_SIZE:
            raise ValueError(f"Column {letter} must hold {CARD_SIZE} cells")
        low, high = COLUMN_BANDS[letter]
        for row, cell in enumerate(column):
            if cell.is_free:
                free_cells.append((letter, row))
                continue
            if not low <= cell.number <= high:
                raise ValueError(f"{cell.number} is outside column {letter} ({low}-{high})")
            if cell.number in seen:
                raise ValueError(f"{cell.number} appears twice on the card")
            seen.add(cell.number)
    if free_cells != [('N', FREE_ROW)]:
        raise ValueError("A card needs exactly one free space, in the centre of column N")


def card_numbers(grid: Grid) -> List[int]:
    return [cell.number for letter in COLUMNS for cell in grid[letter] if not cell.is_free]


def card_signature(grid: Grid) -> Tuple[int, ...]:
    """Order-independent identity of a card's numbers."""
    return tuple(sorted(card_numbers(grid)))


def card_price(quantity: int, single: int, double: int) -> int:
    # Cards are sold in pairs at a discount; an odd one out pays full price
    return (quantity // 2) * double + (quantity % 2) * single


def new_card_id() -> str:
    return f"card-{uuid.uuid4().hex[:12]}"


def build_cards(
    owner: str,
    quantity: int,
    existing_cards: Iterable[dict],
    attempts: int = 100,
    rng=None,
    generate: Callable = generate_grid,
) -> List[dict]:
    """Generate ``quantity`` cards whose signatures clash with nothing in play.

    Raises CardGenerationError when a unique card cannot be found within
    ``attempts`` tries; nothing is returned in that case.
    """
    signatures = {card_signature(grid_from_json(card['grid'])) for card in existing_cards}
    cards = []
    for _ in range(quantity):
        for _attempt in range(attempts):
            grid = generate(rng)
            validate_grid(grid)
            signature = card_signature(grid)
            if signature not in signatures:
                break
        else:
            raise CardGenerationError(attempts)
        signatures.add(signature)
        cards.append({'id': new_card_id(), 'owner': owner, 'grid': grid_to_json(grid)})
    return cards
