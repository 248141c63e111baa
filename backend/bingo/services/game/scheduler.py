import time
from functools import partial
from typing import Set, Tuple

from flask import has_app_context

from bingo import socketio
from .arbitration import clear_invalid_claim
from .lease import acquire_lease, guarded_by_lease, lease_available
from .narration import countdown_intro_text, narrator
from .phases import (
    Phase,
    begin_countdown,
    derive_phase,
    next_scheduled_game,
    parse_start_time,
    start_game,
    tick_countdown,
)
from .sequencer import DrawSequencer
from .store import store


_scheduled_keys: Set[Tuple] = set()


def scheduler_enabled(app) -> bool:
    return not (app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'))


def _launch(app, key: Tuple, worker, *args) -> bool:
    """Run ``worker`` once per key.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Runs inline under TESTING, otherwise as a Socket.IO background task
    - A key already running is skipped, so each timer exists once
    """
    if not scheduler_enabled(app):
        return False
    if key in _scheduled_keys:
        app.logger.info(f"[timer-skip] key={key} already scheduled")
        return False
    _scheduled_keys.add(key)
    app.logger.info(f"[timer-set] key={key}")

    def _runner():
        try:
            if has_app_context():
                worker(app, *args)
            else:
                with app.app_context():
                    worker(app, *args)
        finally:
            _scheduled_keys.discard(key)

    if app.config.get('TESTING'):
        _runner()
    else:
        socketio.start_background_task(_runner)
    return True


def _lease_ttl(app) -> float:
    return float(app.config.get('CALLER_LEASE_SEC', 15))


# ---- Phase watcher ----

def react_to_phase(app, state: dict, phase: Phase) -> None:
    """Start whichever timer the phase needs, if this session is the caller."""
    if not lease_available(state, store.session_id, time.time()):
        return
    if phase is Phase.SCHEDULED:
        watch_schedule(app)
    elif phase is Phase.PRE_COUNTDOWN and state.get('game_starting_id') is not None:
        schedule_countdown(app, state['game_starting_id'])
    elif phase is Phase.ACTIVE and state.get('active_game_id') is not None:
        schedule_draws(app, state['active_game_id'])


def register_phase_watcher(app) -> None:
    last = {'phase': None}

    def _on_change(state):
        phase = derive_phase(state, time.time())
        if phase == last['phase']:
            return
        previous = last['phase'].value if last['phase'] else None
        last['phase'] = phase
        app.logger.info(f"[phase] {previous} -> {phase.value}")
        react_to_phase(app, state, phase)

    store.subscribe(_on_change)


def resume_timers(app) -> None:
    """Pick up whatever the stored phase needs after a restart."""
    with app.app_context():
        state = store.refresh()
        react_to_phase(app, state, derive_phase(state, time.time()))


# ---- Schedule watcher: Scheduled -> PreCountdown ----

def watch_schedule(app) -> bool:
    return _launch(app, ('schedule',), _schedule_worker)


def _schedule_worker(app) -> None:
    poll = float(app.config.get('SCHEDULE_POLL_SEC', 1))
    lead = float(app.config.get('SCHEDULE_LEAD_SEC', 1))
    hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    last_beat = time.time()
    while True:
        state = store.refresh()
        now = time.time()
        phase = derive_phase(state, now)
        if phase is not Phase.SCHEDULED:
            app.logger.info(f"[timer-abort] schedule phase={phase.value}")
            return
        upcoming = next_scheduled_game(state, now)
        remaining = parse_start_time(upcoming['start_time']) - now
        if remaining <= lead:
            begin_scheduled_countdown(app, upcoming['id'])
            return
        if hb > 0 and now - last_beat >= hb:
            last_beat = now
            app.logger.info(f"[timer-heartbeat] schedule game={upcoming['id']} remaining={int(remaining)}s")
        socketio.sleep(min(poll, remaining - lead))


def begin_scheduled_countdown(app, game_id: int):
    seconds = int(app.config.get('PRE_GAME_COUNTDOWN_SEC', 10))
    narrator.announce(countdown_intro_text(seconds))
    now = time.time()
    committed = store.update(guarded_by_lease(
        partial(begin_countdown, seconds=seconds, now=now, game_id=game_id),
        store.session_id, now, _lease_ttl(app),
    ))
    if committed is None:
        app.logger.info(f"[timer-abort] countdown game={game_id} could not begin")
    return committed


# ---- Countdown: PreCountdown ticks -> Active ----

def schedule_countdown(app, game_id: int) -> bool:
    return _launch(app, ('countdown', game_id), _countdown_worker, game_id)


def _countdown_worker(app, game_id: int) -> None:
    tick = float(app.config.get('COUNTDOWN_TICK_SEC', 1))
    holder = store.session_id
    while True:
        socketio.sleep(tick)
        now = time.time()
        committed = store.update(guarded_by_lease(
            partial(tick_countdown, game_id=game_id), holder, now, _lease_ttl(app),
        ))
        if committed is None:
            state = store.refresh()
            if state.get('pre_game_countdown') == 0 and state.get('game_starting_id') == game_id:
                break
            app.logger.info(f"[timer-abort] countdown game={game_id} phase or lease moved on")
            return
        remaining = committed['pre_game_countdown']
        app.logger.info(f"[timer-fire] countdown game={game_id} remaining={remaining}")
        if remaining <= 0:
            break
        narrator.announce(str(remaining), wait=False)

    narrator.announce("Here we go!", wait=False)
    started = store.update(guarded_by_lease(
        partial(start_game, game_id=game_id), holder, time.time(), _lease_ttl(app),
    ))
    if started is None:
        app.logger.info(f"[timer-abort] start game={game_id} rejected")


# ---- Draws: Active until a winner, a reset or 75 numbers ----

def schedule_draws(app, game_id: int) -> bool:
    return _launch(app, ('draws', game_id), _draw_worker, game_id)


def _draw_worker(app, game_id: int) -> None:
    holder = store.session_id
    ttl = _lease_ttl(app)
    if store.update(partial(acquire_lease, holder=holder, now=time.time(), ttl=ttl)) is None:
        app.logger.info(f"[lease-lost] draws game={game_id} holder={holder}")
        return
    sequencer = DrawSequencer(store, narrator, game_id, holder, lease_ttl=ttl)
    reason = sequencer.run(
        socketio.sleep,
        first_delay=float(app.config.get('FIRST_DRAW_DELAY_SEC', 1.5)),
        interval=float(app.config.get('DRAW_INTERVAL_SEC', 1.5)),
        retry=float(app.config.get('NARRATION_RETRY_SEC', 2)),
    )
    app.logger.info(f"[timer-done] draws game={game_id} reason={reason}")


# ---- Invalid claim cooldown expiry ----

def schedule_claim_expiry(app, player_name: str, timestamp: float) -> bool:
    return _launch(app, ('claim-expiry', player_name, timestamp), _claim_expiry_worker, player_name, timestamp)


def _claim_expiry_worker(app, player_name: str, timestamp: float) -> None:
    cooldown = float(app.config.get('INVALID_CLAIM_COOLDOWN_SEC', 5))
    delay = cooldown - (time.time() - timestamp)
    if delay > 0:
        socketio.sleep(delay)
    cleared = store.update(partial(clear_invalid_claim, player_name=player_name, timestamp=timestamp))
    app.logger.info(f"[timer-fire] claim-expiry player={player_name} cleared={cleared is not None}")
