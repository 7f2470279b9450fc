"""Runs sync cycles: periodically, when the connection comes back, after local
changes and on request.

:class:`SyncOrchestrator` is the composition root of the engine. It owns the
queue, the pipelines and the domain stores, and drives pushes from a
``QTimer`` and from the connectivity signal.
"""
import logging
from typing import Any, Callable, List, Optional

from PySide6 import QtCore

from .client import ApiClient, IdentityProvider, SyncApi
from .connectivity import Connectivity
from .database import LocalStore
from .idmap import IdMapper
from .pull import PullPipeline
from .push import PushPipeline, PushResult
from .queue import SyncQueue
from .retry import RetryPolicy
from .state import SyncStatus
from .stores import DomainStores
from ..settings import lib
from ..status import status
from ..ui.actions import Severity, notify, signals


class SyncWorker(QtCore.QThread):
    """
    Runs one blocking sync function on a worker thread.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        try:
            result = self.func(*self.args, **self.kwargs)
        except Exception as ex:
            logging.exception('Sync worker failed.')
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)


class SyncOrchestrator(QtCore.QObject):
    """Schedules push and pull cycles.

    Args:
        store: The local store. Defaults to the database at the settings ``db_path``.
        api: The sync endpoints. Defaults to an :class:`ApiClient` built from settings.
        connectivity: Online/offline source. Defaults to a manually driven, online one.
        identity: Token source for the default API client.
        policy: Retry policy shared by the queue and the push pipeline.
        synchronous: Run triggered pushes on the calling thread instead of a worker.
    """

    def __init__(self,
                 store: Optional[LocalStore] = None,
                 api: Optional[SyncApi] = None,
                 connectivity: Optional[Connectivity] = None,
                 identity: Optional[IdentityProvider] = None,
                 policy: Optional[RetryPolicy] = None,
                 synchronous: bool = False,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)

        self.store = store or LocalStore()
        self.policy = policy or RetryPolicy()
        # Only a client built here is closed on shutdown
        self._owns_api = api is None
        self.api = api or SyncApi(ApiClient(identity=identity))
        self.connectivity = connectivity or Connectivity()
        self.synchronous = synchronous

        self.queue = SyncQueue(self.store, self.policy)
        self.status = SyncStatus(self.store)
        self.mapper = IdMapper(self.store, self.queue)
        self.push_pipeline = PushPipeline(self.queue, self.api, self.status, self.mapper, self.policy)
        self.pull_pipeline = PullPipeline(self.store, self.queue, self.api, self.status, self.connectivity)
        self.stores = DomainStores(self.store, self.queue, self.connectivity,
                                   on_enqueued=self.trigger_push, mapper=self.mapper)

        self.timer = QtCore.QTimer(self)
        self.timer.setTimerType(QtCore.Qt.CoarseTimer)

        self._workers: List[SyncWorker] = []

        self._connect_signals()

    def _connect_signals(self) -> None:
        self.timer.timeout.connect(self.on_timeout)
        self.connectivity.onlineChanged.connect(self.on_online_changed)
        signals.configSectionChanged.connect(self.on_config_changed)

    @property
    def is_running(self) -> bool:
        return self.timer.isActive()

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    def start(self) -> None:
        """Start periodic pushes. Does nothing if already started."""
        if self.timer.isActive():
            return
        interval = lib.settings['interval_ms']
        self.timer.start(interval)
        logging.info(f'Automatic sync started, every {interval} ms')

    def stop(self) -> None:
        """Stop periodic pushes. In-flight requests are left to finish."""
        if not self.timer.isActive():
            return
        self.timer.stop()
        logging.info('Automatic sync stopped')

    @QtCore.Slot()
    def on_timeout(self) -> None:
        if self.is_online:
            self.trigger_push()

    @QtCore.Slot(bool)
    def on_online_changed(self, online: bool) -> None:
        if online:
            logging.info('Back online, pushing queued changes')
            self.trigger_push()

    @QtCore.Slot(str)
    def on_config_changed(self, section: str) -> None:
        if section != 'sync' or not self.timer.isActive():
            return
        interval = lib.settings['interval_ms']
        if interval != self.timer.interval():
            logging.debug(f'Sync interval changed to {interval} ms')
            self.timer.setInterval(interval)

    def trigger_push(self) -> Optional[PushResult]:
        """Push queued changes now, if online.

        Returns:
            The result when running synchronously, otherwise None.
        """
        if not self.is_online:
            return None
        if self.synchronous:
            return self.push_pipeline.push()

        worker = SyncWorker(self.push_pipeline.push)
        self._workers.append(worker)
        worker.finished.connect(self.on_worker_finished)
        worker.start()
        return None

    @QtCore.Slot()
    def on_worker_finished(self) -> None:
        for worker in [w for w in self._workers if w.isFinished()]:
            self._workers.remove(worker)
            worker.deleteLater()

    def wait_for_workers(self, msecs: int = 30000) -> None:
        """Block until running workers finish, e.g. before shutting down."""
        for worker in list(self._workers):
            worker.wait(msecs)

    def manual_sync(self) -> bool:
        """Push then pull on the calling thread, telling the user how it went.

        Returns:
            True if both directions succeeded.
        """
        if not self.is_online:
            ex = status.OfflineException('Connect to the internet to sync.')
            notify(ex.status_message, Severity.Error)
            return False

        notify('Sync started.', Severity.Info)
        result = self.push_pipeline.push(wait=True)
        pulled = self.pull_pipeline.pull()

        if result.ok and pulled:
            notify('Sync completed.', Severity.Success)
            return True

        notify('Sync failed. Changes are kept locally and will be retried.', Severity.Error)
        return False

    def shutdown(self) -> None:
        self.stop()
        self.wait_for_workers()
        if self._owns_api:
            self.api.client.close()
