"""Caller lease: at most one session drives countdowns and draws.

The lease is a ``{holder, expires_at}`` entry inside the shared record.
A holder keeps it alive by renewing it in the same commit as each tick or
draw; anyone else may take it over only once it has expired.
"""
from typing import Callable, Optional


def lease_holder(state: dict, now: float) -> Optional[str]:
    lease = state.get('caller_lease')
    if not lease or lease.get('expires_at', 0) <= now:
        return None
    return lease.get('holder')


def lease_available(state: dict, holder: str, now: float) -> bool:
    current = lease_holder(state, now)
    return current is None or current == holder


def acquire_lease(state: dict, holder: str, now: float, ttl: float) -> Optional[dict]:
    if not lease_available(state, holder, now):
        return None
    return {'caller_lease': {'holder': holder, 'expires_at': now + ttl}}


def release_lease(state: dict, holder: str) -> Optional[dict]:
    lease = state.get('caller_lease')
    if not lease or lease.get('holder') != holder:
        return None
    return {'caller_lease': None}


def guarded_by_lease(changes_fn: Callable, holder: str, now: float, ttl: float) -> Callable:
    """Wrap an update function so it only applies for the lease holder.

    The returned changes renew the lease, so every guarded commit doubles
    as a heartbeat.
    """
    def _guarded(state):
        if not lease_available(state, holder, now):
            return None
        changes = changes_fn(state)
        if not changes:
            return None
        changes = dict(changes)
        changes['caller_lease'] = {'holder': holder, 'expires_at': now + ttl}
        return changes
    return _guarded
