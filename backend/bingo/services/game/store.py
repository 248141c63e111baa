"""The one shared game-state record and its update primitive.

Every action on the room is a function ``fn(state) -> changes | None``
passed to ``StateStore.update``, which reads the authoritative row,
applies ``fn`` to a copy, and writes the merged record back with a
compare-and-swap on the row's ``version``. When another writer got there
first the read and ``fn`` are simply run again on the newer record, so two
writers touching different fields both land.

Each committed record is published on the store's ``ChangeChannel``.
"""
import copy
import threading
import time
import uuid
from typing import Callable, Optional, Tuple

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bingo import db
from bingo.errors import StateConflict
from bingo.models import SINGLETON_ID, GameStateRecord, hash_password
from .channel import ChangeChannel
from .phases import default_state


class StateStore:

    def __init__(self, channel: Optional[ChangeChannel] = None):
        self.channel = channel or ChangeChannel()
        # Identifies this server session, e.g. as a caller lease holder
        self.session_id = uuid.uuid4().hex
        self._lock = threading.RLock()
        self._cache: Optional[dict] = None
        self._version = 0

    def init_app(self, app) -> None:
        self._cache = None
        self._version = 0
        self.channel.reset()
        app.extensions['bingo_store'] = self

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, callback: Callable) -> Callable:
        return self.channel.subscribe(callback)

    def get(self) -> dict:
        """This session's copy, including its own latest writes."""
        with self._lock:
            if self._cache is None:
                return self.refresh()
            return copy.deepcopy(self._cache)

    def refresh(self) -> dict:
        """Poll the authoritative row and republish it if it moved."""
        with self._lock:
            try:
                version, state = self._load()
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("[store-read-failed] serving cached state")
                if self._cache is None:
                    self._cache = self._defaults()
                return copy.deepcopy(self._cache)
            if self._cache is None or version != self._version or state != self._cache:
                self._apply(version, state)
            return copy.deepcopy(self._cache)

    def update(self, fn: Callable[[dict], Optional[dict]]) -> Optional[dict]:
        """Apply ``fn`` atomically; returns the committed record or None for a no-op.

        Errors raised by ``fn`` itself (e.g. CardGenerationError) propagate
        with nothing written. Storage faults never do.
        """
        retries = int(current_app.config.get('STATE_UPDATE_MAX_RETRIES', 5))
        with self._lock:
            try:
                return self._update(fn, retries)
            except StateConflict as exc:
                current_app.logger.error(f"[store-conflict-exhausted] {exc}")
                return None

    def _update(self, fn, retries: int) -> Optional[dict]:
        for attempt in range(1, retries + 1):
            try:
                version, current = self._load()
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("[store-read-failed] update skipped")
                return None

            changes = fn(copy.deepcopy(current))
            if not changes:
                return None
            merged = dict(current)
            merged.update(changes)
            if merged == current:
                return None

            try:
                swapped = self._compare_and_swap(version, merged)
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception(f"[store-write-failed] version={version} applying locally (degraded)")
                self._apply(version, merged, degraded=True)
                return copy.deepcopy(merged)
            if swapped:
                self._apply(version + 1, merged)
                return copy.deepcopy(merged)
            current_app.logger.info(f"[store-conflict] version={version} attempt={attempt}")
        raise StateConflict(retries)

    def _load(self) -> Tuple[int, dict]:
        row = self._select()
        if row is None:
            state = self._defaults()
            db.session.add(GameStateRecord(id=SINGLETON_ID, version=1, state=state, updated_at=time.time()))
            try:
                db.session.commit()
                current_app.logger.info(f"[store-created] id={SINGLETON_ID}")
                return 1, state
            except IntegrityError:
                # Another session created it first
                db.session.rollback()
                row = self._select()
        merged = default_state()
        merged.update(row.state or {})
        return row.version, merged

    def _select(self):
        return db.session.execute(
            sa.select(GameStateRecord.version, GameStateRecord.state)
            .where(GameStateRecord.id == SINGLETON_ID)
        ).first()

    def _compare_and_swap(self, version: int, state: dict) -> bool:
        result = db.session.execute(
            sa.update(GameStateRecord)
            .where(GameStateRecord.id == SINGLETON_ID, GameStateRecord.version == version)
            .values(state=state, version=version + 1, updated_at=time.time())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def _apply(self, version: int, state: dict, degraded: bool = False) -> None:
        self._cache = copy.deepcopy(state)
        self._version = version
        self.channel.publish(version, state, degraded=degraded)

    def _defaults(self) -> dict:
        cfg = current_app.config
        users = []
        caller = cfg.get('CALLER_NAME')
        if caller:
            password = cfg.get('CALLER_PASSWORD') or caller
            users.append({
                'name': caller,
                'password_hash': hash_password(password),
                'pix_key': cfg.get('CALLER_PIX_KEY') or caller,
            })
        return default_state(users)


store = StateStore()
