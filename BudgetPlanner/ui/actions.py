"""Application-wide Qt signals and the notification sink for BudgetPlanner.

This module provides:
    - Signals: custom Qt signals for configuration changes, sync lifecycle,
      queue and record changes, connectivity, logs and user notifications.
    - notify: the user-notification sink used by the sync engine.

The presentation layer connects to these signals; the engine never talks to
widgets directly.
"""
import enum
import logging

from PySide6 import QtCore


class Severity(enum.StrEnum):
    """Notification severities understood by the presentation layer."""
    Success = 'success'
    Info = 'info'
    Warning = 'warning'
    Error = 'error'


DEFAULT_DURATION_MS: int = 3000


class Signals(QtCore.QObject):
    """Centralized Qt signals for config, sync and notification events."""
    configSectionChanged = QtCore.Signal(str)  # Section

    syncStateChanged = QtCore.Signal(str)  # idle / syncing / error
    lastSyncChanged = QtCore.Signal(str)  # ISO-8601 timestamp
    onlineChanged = QtCore.Signal(bool)

    queueChanged = QtCore.Signal(int)  # Queue size
    recordsChanged = QtCore.Signal(str)  # Table name
    recordRemapped = QtCore.Signal(str, str, str)  # Table, old id, new id

    pushFinished = QtCore.Signal(object)  # PushResult
    pullFinished = QtCore.Signal(bool)

    notificationRequested = QtCore.Signal(str, str, int)  # Message, severity, duration
    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.syncStateChanged.connect(lambda s: logging.debug(f'Sync state changed: {s}'))
        self.onlineChanged.connect(lambda v: logging.debug(f'Online changed: {v}'))


def notify(message: str, severity: str = Severity.Info, duration: int = DEFAULT_DURATION_MS) -> None:
    """Ask the presentation layer to show a user-visible notification.

    Args:
        message: Text shown to the user.
        severity: One of :class:`Severity`.
        duration: Display duration in milliseconds, 0 keeps the notice until dismissed.
    """
    severity = Severity(severity)
    logging.debug(f'Notification [{severity}]: {message}')
    signals.notificationRequested.emit(message, str(severity), int(duration))


signals = Signals()
