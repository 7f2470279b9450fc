"""Online/offline signal for the sync engine.

:class:`Connectivity` holds the current flag and emits ``onlineChanged`` on
transitions only. It can follow Qt's network reachability backend where one is
available, or be driven manually with :meth:`Connectivity.set_online`.
"""
import logging
from typing import Optional

from PySide6 import QtCore

from ..ui.actions import signals


class Connectivity(QtCore.QObject):
    """Current connectivity state.

    Args:
        online: Initial state.
        follow_system: Track the operating system's reachability reports.
    """
    onlineChanged = QtCore.Signal(bool)

    def __init__(self, online: bool = True, follow_system: bool = False,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._online = bool(online)
        self.onlineChanged.connect(signals.onlineChanged)

        if follow_system:
            self._follow_system()

    @property
    def is_online(self) -> bool:
        return self._online

    @QtCore.Slot(bool)
    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        logging.info('Connection restored' if online else 'Connection lost')
        self._online = online
        self.onlineChanged.emit(online)

    def _follow_system(self) -> None:
        from PySide6 import QtNetwork

        info_cls = QtNetwork.QNetworkInformation
        if not info_cls.loadBackendByFeatures(info_cls.Feature.Reachability):
            logging.warning('No network reachability backend available, connectivity is set manually.')
            return

        info = info_cls.instance()
        info.reachabilityChanged.connect(self._on_reachability_changed)
        self._on_reachability_changed(info.reachability())

    @QtCore.Slot(object)
    def _on_reachability_changed(self, reachability) -> None:
        from PySide6 import QtNetwork
        self.set_online(reachability == QtNetwork.QNetworkInformation.Reachability.Online)
