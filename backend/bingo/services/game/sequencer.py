import enum
import time
from collections import deque
from functools import partial
from typing import Callable, Deque, Optional

from flask import current_app

from .lease import guarded_by_lease, lease_available
from .narration import NarrationOutcome, call_text, winner_text
from .phases import draw_number, is_exhausted, settle_auto_winner


class SequencerStatus(str, enum.Enum):
    IDLE = 'idle'
    DRAWING = 'drawing'
    NARRATING = 'narrating'
    # Waiting for the caller's browser to allow speech again
    BLOCKED = 'blocked'
    STOPPED = 'stopped'


class DrawSequencer:
    """Draws numbers for one game, one at a time, paced by narration.

    Drawn numbers go onto ``queue`` and the single consumer in ``step``
    announces the head before anything else is drawn, so the next draw
    never happens while a number is still being read out.
    """

    def __init__(self, store, narrator, game_id: int, holder: str,
                 lease_ttl: float = 15.0, rng=None, clock: Callable[[], float] = time.time):
        self.store = store
        self.narrator = narrator
        self.game_id = game_id
        self.holder = holder
        self.lease_ttl = lease_ttl
        self.rng = rng
        self.clock = clock
        self.queue: Deque[int] = deque()
        self.status = SequencerStatus.IDLE
        self.stop_reason: Optional[str] = None

    def step(self) -> bool:
        """Advance by one narration or one draw. Returns False once stopped."""
        if self.status is SequencerStatus.STOPPED:
            return False

        state = self.store.refresh()
        reason = self._stale_reason(state)
        if reason:
            return self._stop(reason)

        if self.queue:
            return self._narrate_head()
        if is_exhausted(state):
            return self._stop('exhausted')

        self.status = SequencerStatus.DRAWING
        draw = partial(draw_number, game_id=self.game_id, rng=self.rng)
        committed = self.store.update(guarded_by_lease(draw, self.holder, self.clock(), self.lease_ttl))
        if committed is None:
            return self._stop(self._stale_reason(self.store.get()) or 'draw-rejected')

        number = committed['drawn_numbers'][-1]
        current_app.logger.info(f"[draw] game={self.game_id} number={number} count={len(committed['drawn_numbers'])}")

        won = self.store.update(partial(settle_auto_winner, game_id=self.game_id))
        if won:
            winner = won['bingo_winner']
            current_app.logger.info(f"[winner-auto] game={self.game_id} player={winner['player_name']} card={winner['card_id']}")
            self.narrator.announce(winner_text(winner['player_name']), wait=False)
            return self._stop('winner')

        self.queue.append(number)
        return self._narrate_head()

    def run(self, sleep: Callable[[float], None], first_delay: float = 0,
            interval: float = 0, retry: float = 0) -> Optional[str]:
        if first_delay:
            sleep(first_delay)
        while self.step():
            sleep(retry if self.status is SequencerStatus.BLOCKED else interval)
        return self.stop_reason

    def _narrate_head(self) -> bool:
        number = self.queue[0]
        self.status = SequencerStatus.NARRATING
        outcome = self.narrator.announce(call_text(number, self.rng), number=number)
        if outcome is NarrationOutcome.BLOCKED:
            self.status = SequencerStatus.BLOCKED
            current_app.logger.info(f"[narration-blocked] game={self.game_id} number={number} kept queued")
            return True
        # Interrupted still counts as announced
        self.queue.popleft()
        self.status = SequencerStatus.IDLE
        return True

    def _stale_reason(self, state: dict) -> Optional[str]:
        if state.get('bingo_winner'):
            return 'winner'
        if not state.get('is_game_active') or state.get('active_game_id') != self.game_id:
            return 'stale'
        if not lease_available(state, self.holder, self.clock()):
            return 'lease-lost'
        return None

    def _stop(self, reason: str) -> bool:
        self.status = SequencerStatus.STOPPED
        self.stop_reason = reason
        self.queue.clear()
        current_app.logger.info(f"[draw-stop] game={self.game_id} reason={reason}")
        return False
