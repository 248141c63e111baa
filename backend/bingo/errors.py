"""Exceptions raised by the bingo room core.

Most faults in the core degrade to a logged no-op; the few that must reach
the caller of an action are defined here.
"""


class BingoError(Exception):
    """Base class for bingo room errors."""
    pass


class CardGenerationError(BingoError):
    """No card with an unused number signature was found in time."""
    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique card after {attempts} attempts")


class StateConflict(BingoError):
    """Compare-and-swap kept losing against concurrent writers."""
    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__(f"State update lost {attempts} consecutive version races")
