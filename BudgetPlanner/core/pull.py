"""Fetches changes from the server and reconciles them with the local store.

Records missing locally are inserted. Records present on both sides are
settled by :func:`BudgetPlanner.core.resolver.resolve`. A record with an
undelivered local delete is left alone until the delete reaches the server.
"""
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .client import SyncApi
from .connectivity import Connectivity
from .database import LocalStore
from .models import TABLE_TYPES, Operation, Table
from .queue import SyncQueue
from .resolver import resolve
from .state import SyncState, SyncStatus
from ..settings import lib
from ..status import status
from ..ui.actions import Severity, notify, signals

# Response key -> collection
COLLECTION_KEYS: Dict[str, Table] = {
    'budgets': Table.Budgets,
    'categories': Table.Categories,
    'transactions': Table.Transactions,
    'reflections': Table.Reflections,
    'paymentMethods': Table.PaymentMethods,
    'payment_methods': Table.PaymentMethods,
}


def _flatten(items: Iterable[Any]) -> Iterator[Dict[str, Any]]:
    for item in items:
        if isinstance(item, dict):
            yield item
        elif isinstance(item, list):
            yield from (i for i in item if isinstance(i, dict))


def extract_changes(response: Dict[str, Any]) -> Dict[Table, List[Dict[str, Any]]]:
    """Group the records of a pull response by collection.

    Collections may sit at the top level or under ``changes``.
    """
    changes = response.get('changes')
    if not isinstance(changes, dict):
        changes = response

    out: Dict[Table, List[Dict[str, Any]]] = {}
    for key, table in COLLECTION_KEYS.items():
        items = changes.get(key)
        if not isinstance(items, list) or not items:
            continue
        out.setdefault(table, []).extend(_flatten(items))
    return out


class PullPipeline:
    """Downloads server changes since the last sync.

    Args:
        store: The local store.
        queue: The sync queue, consulted for undelivered deletes.
        api: The sync endpoints.
        sync_status: Status indicator and last-sync stamp.
        connectivity: Pulls are skipped while it reports offline.
        page_limit: Maximum pages fetched per pull. Defaults to the ``pull_page_limit`` setting.
    """

    def __init__(self, store: LocalStore, queue: SyncQueue, api: SyncApi, sync_status: SyncStatus,
                 connectivity: Optional[Connectivity] = None, page_limit: Optional[int] = None) -> None:
        self.store = store
        self.queue = queue
        self.api = api
        self.status = sync_status
        self.connectivity = connectivity
        self._page_limit = page_limit

    @property
    def page_limit(self) -> int:
        return self._page_limit if self._page_limit is not None else lib.settings['pull_page_limit']

    def pull(self, since: Optional[str] = None) -> bool:
        """Fetch and apply server changes.

        Args:
            since: Fetch changes after this time. Defaults to the last-sync stamp.

        Returns:
            True on success, False when offline or on failure. Never raises.
        """
        if self.connectivity is not None and not self.connectivity.is_online:
            logging.debug('Offline, skipping pull.')
            return False

        last_sync = since if since is not None else (self.status.last_sync() or '')
        logging.info(f'Pulling changes since "{last_sync or "the beginning"}"')
        self.status.set_state(SyncState.Syncing)

        try:
            server_time = self._pull_pages(last_sync)
        except status.BaseStatusException as ex:
            logging.error(f'Pull failed: {ex}')
            return self._failed()
        except Exception:
            logging.exception('Pull failed unexpectedly.')
            return self._failed()

        self.status.stamp(server_time)
        self.status.set_state(SyncState.Idle)
        signals.pullFinished.emit(True)
        return True

    def _failed(self) -> bool:
        self.status.set_state(SyncState.Error)
        notify('Could not download the latest changes. Will retry later.', Severity.Warning)
        signals.pullFinished.emit(False)
        return False

    def _pull_pages(self, last_sync: str) -> Optional[str]:
        server_time: Optional[str] = None
        pages = 0
        while True:
            response = self.api.pull(last_sync)
            pages += 1
            if not isinstance(response, dict):
                raise status.RequestFailedException('The server sent a malformed pull response.')

            applied = self.apply(response)
            logging.debug(f'Pull page {pages}: {applied} record(s) applied')

            page_time = response.get('lastSyncTime')
            if page_time:
                server_time = str(page_time)

            if not response.get('hasMore'):
                break
            if not page_time or str(page_time) == last_sync:
                logging.warning('Server reported more changes without a new sync time, stopping.')
                break
            if pages >= self.page_limit:
                logging.warning(f'Stopped pulling after {pages} pages, the rest follows next sync.')
                break
            last_sync = str(page_time)
        return server_time

    def apply(self, response: Dict[str, Any]) -> int:
        """Merge the records of one pull response into the local store.

        Returns:
            The number of records written.
        """
        written = 0
        touched: List[Table] = []
        with self.queue.lock:
            with self.store.transaction() as conn:
                for table, records in extract_changes(response).items():
                    collection = self.store.collection(table)
                    entity_cls = TABLE_TYPES[table]
                    for raw in records:
                        try:
                            record = entity_cls.from_dict(raw).to_dict()
                        except ValueError as ex:
                            logging.warning(f'Skipping invalid {table} record from server: {ex}')
                            continue

                        pending = self.queue.pending_for_record(table, record['id'], conn=conn)
                        if any(op.operation == Operation.Delete for op in pending):
                            logging.debug(f'Skipping {table}/{record["id"]}: local delete not yet delivered')
                            continue

                        local = collection.get(record['id'], conn=conn)
                        if local is None:
                            collection.put(record, conn=conn)
                        else:
                            winner = resolve(local, record)
                            if winner is local:
                                continue
                            collection.put(winner, conn=conn)
                        written += 1
                        if table not in touched:
                            touched.append(table)

        for table in touched:
            signals.recordsChanged.emit(str(table))
        return written
