import enum
import random
import threading
from typing import Optional

from bingo import socketio
from .cards import COLUMN_BANDS, COLUMNS
from .channel import GAME_ROOM, NAMESPACE


class NarrationOutcome(str, enum.Enum):
    COMPLETED = 'completed'
    INTERRUPTED = 'interrupted'
    # Playback needs a user gesture first; the caller's browser tells us
    BLOCKED = 'blocked'


CALLER_PHRASES = [
    "And the next ball is...",
    "Fresh out of the drum...",
    "Eyes on your cards for...",
    "The number that came out is...",
    "Here comes a lucky one...",
    "Get your pen ready for...",
    "Hold on to your seats, it's...",
    "Straight from the drum to your card!",
    "Let's see, let's see... it's...",
    "Keep marking, keep winning, number...",
    "It's getting hot in here, number...",
]


def letter_for(number: int) -> str:
    for letter in COLUMNS:
        low, high = COLUMN_BANDS[letter]
        if low <= number <= high:
            return letter
    raise ValueError(f"{number} is not a bingo number")


def call_text(number: int, rng=None) -> str:
    phrase = (rng or random).choice(CALLER_PHRASES)
    return f"{phrase} Letter {letter_for(number)}... {number}!"


def countdown_intro_text(seconds: int) -> str:
    return f"Attention, bingo starts in {seconds} seconds. Good luck!"


def winner_text(player_name: str) -> str:
    return f"BINGO! We have a winner! Congratulations {player_name}!"


class SocketNarrator:
    """Announces text by broadcasting ``announce`` events to the room.

    Browsers do the actual speech; ``announce`` waits for the configured
    playback time unless interrupted, or reports BLOCKED while the
    caller's browser says speech is not allowed yet.
    """

    def __init__(self):
        self.duration = 3.0
        self.blocked = False
        self._interrupted = threading.Event()

    def init_app(self, app) -> None:
        self.duration = float(app.config.get('NARRATION_DURATION_SEC', 3))
        self.blocked = False
        self._interrupted.clear()

    def set_blocked(self, blocked: bool) -> None:
        self.blocked = bool(blocked)

    def interrupt(self) -> None:
        self._interrupted.set()

    def announce(self, text: str, number: Optional[int] = None, wait: bool = True) -> NarrationOutcome:
        if self.blocked:
            return NarrationOutcome.BLOCKED
        self._interrupted.clear()
        socketio.emit('announce', {'text': text, 'number': number}, to=GAME_ROOM, namespace=NAMESPACE)
        if not wait:
            return NarrationOutcome.COMPLETED
        waited = 0.0
        while waited < self.duration:
            if self._interrupted.is_set():
                return NarrationOutcome.INTERRUPTED
            if self.blocked:
                return NarrationOutcome.BLOCKED
            step = min(0.1, self.duration - waited)
            socketio.sleep(step)
            waited += step
        return NarrationOutcome.COMPLETED


narrator = SocketNarrator()
