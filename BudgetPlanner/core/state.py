"""Sync status indicator and the last-sync stamp.

The state is held in memory, persisted to the store's metatable and broadcast
through :data:`BudgetPlanner.ui.actions.signals`.
"""
import enum
import logging
from typing import Optional

from .database import LocalStore
from .models import now_str
from ..ui.actions import signals


class SyncState(enum.StrEnum):
    Idle = 'idle'
    Syncing = 'syncing'
    Error = 'error'


class SyncStatus:
    """Tracks whether the engine is idle, syncing or in error, and when it last synced."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        try:
            self._state = SyncState(store.get_state() or SyncState.Idle)
        except ValueError:
            self._state = SyncState.Idle

        # A cycle interrupted by a crash never finished
        if self._state == SyncState.Syncing:
            self._state = SyncState.Idle
            store.set_state(self._state)

    @property
    def state(self) -> SyncState:
        return self._state

    def set_state(self, state: SyncState) -> None:
        state = SyncState(state)
        if state == self._state:
            return
        logging.debug(f'Sync state: {self._state} -> {state}')
        self._state = state
        self.store.set_state(state)
        signals.syncStateChanged.emit(str(state))

    def last_sync(self) -> Optional[str]:
        """Return the last successful sync time, or None if never synced."""
        return self.store.get_stamp()

    def stamp(self, timestamp: Optional[str] = None) -> str:
        """Record a successful sync at ``timestamp`` (defaults to now)."""
        timestamp = timestamp or now_str()
        self.store.stamp(timestamp)
        signals.lastSyncChanged.emit(timestamp)
        return timestamp
