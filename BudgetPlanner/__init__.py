"""
BudgetPlanner: offline-first sync engine for a personal budgeting client.

This package provides:

- :mod:`BudgetPlanner.core` – Local store, sync queue, push and pull pipelines, conflict resolution and the orchestrator.
- :mod:`BudgetPlanner.settings` – Sync settings management and schema validation.
- :mod:`BudgetPlanner.status` – Status codes and exceptions.
- :mod:`BudgetPlanner.log` – Logging with an in-memory log tank.
- :mod:`BudgetPlanner.ui` – Signals and the notification sink used by the presentation layer.

Use :func:`BudgetPlanner.exec_` to run the engine headless.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('BudgetPlanner requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'BudgetPlanner: offline-first sync engine for a personal budgeting client.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the sync engine without a user interface and enter the Qt event loop.

    The session token is read from the ``BUDGETPLANNER_TOKEN`` environment variable.
    """
    import os
    import signal

    app = QtCore.QCoreApplication(sys.argv)

    from .core.client import StaticIdentity
    from .core.orchestrator import SyncOrchestrator

    identity = StaticIdentity(token=os.environ.get('BUDGETPLANNER_TOKEN'))
    orchestrator = SyncOrchestrator(identity=identity)
    orchestrator.start()
    app.aboutToQuit.connect(orchestrator.shutdown)

    # Sync once on startup
    QtCore.QTimer.singleShot(0, orchestrator.manual_sync)

    signal.signal(signal.SIGINT, lambda *args: app.quit())
    sys.exit(app.exec())


if __name__ == '__main__':
    exec_()
