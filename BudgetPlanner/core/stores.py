"""Domain record stores.

Every mutation refreshes ``updatedAt`` and writes the record together with its
queued :class:`SyncOperation` in one sqlite transaction, so a local change is
never stored without the queue entry that will deliver it.
"""
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from .connectivity import Connectivity
from .database import LocalStore
from .idmap import IdMapper
from .models import TABLE_TYPES, Entity, Operation, Table, now_str
from .queue import SyncQueue
from ..ui.actions import signals


class EntityStore:
    """Reads and writes the records of one collection.

    Args:
        table: The collection.
        store: The local store.
        queue: The sync queue receiving one operation per mutation.
        connectivity: When online, ``on_enqueued`` is called after each mutation.
        on_enqueued: Callback asking for an immediate push.
        mapper: Translates placeholder ids the server has re-keyed, in record
            ids and in foreign keys.
    """

    def __init__(self, table: Table, store: LocalStore, queue: SyncQueue,
                 connectivity: Optional[Connectivity] = None,
                 on_enqueued: Optional[Callable[[], Any]] = None,
                 mapper: Optional[IdMapper] = None) -> None:
        self.table = Table.from_name(table)
        self.entity_cls = TABLE_TYPES[self.table]
        self.store = store
        self.collection = store.collection(self.table)
        self.queue = queue
        self.connectivity = connectivity
        self.on_enqueued = on_enqueued
        self.mapper = mapper

    def __repr__(self) -> str:
        return f'<EntityStore {self.table}>'

    def _resolve(self, record_id: str) -> str:
        return self.mapper.resolve(self.table, record_id) if self.mapper else record_id

    def _resolve_references(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self.mapper.resolve_references(self.table, record) if self.mapper else record

    def get(self, record_id: str) -> Optional[Entity]:
        record = self.collection.get(self._resolve(record_id))
        return self.entity_cls.from_dict(record) if record else None

    def get_all(self) -> List[Entity]:
        return [self.entity_cls.from_dict(r) for r in self.collection.get_all()]

    def get_by_index(self, field: str, value: Any) -> List[Entity]:
        """Return records whose indexed ``field`` equals ``value``, e.g. ``('budgetId', 'b1')``."""
        value = self._resolve_references({field: value})[field]
        return [self.entity_cls.from_dict(r) for r in self.collection.get_all_by_index(field, value)]

    def get_range(self, field: str, lower: Any = None, upper: Any = None) -> List[Entity]:
        """Return records whose indexed ``field`` lies between ``lower`` and ``upper`` inclusive."""
        return [self.entity_cls.from_dict(r) for r in self.collection.get_range_by_index(field, lower, upper)]

    def create(self, data: Union[Dict[str, Any], Entity]) -> Entity:
        """Store a new record and queue its creation.

        A record without an id gets a fresh uuid.
        """
        record = data.to_dict() if isinstance(data, Entity) else dict(data)
        record = self._resolve_references(record)
        if not record.get('id'):
            record['id'] = str(uuid.uuid4())

        timestamp = now_str()
        record['createdAt'] = record.get('createdAt') or timestamp
        record['updatedAt'] = timestamp

        entity = self.entity_cls.from_dict(record)
        self._write(Operation.Create, entity.id, entity.to_dict())
        return entity

    def update(self, record_id: str, changes: Dict[str, Any]) -> Entity:
        """Apply ``changes`` to an existing record and queue the update.

        Raises:
            KeyError: If the record does not exist.
        """
        local = self.collection.get(self._resolve(record_id))
        if local is None:
            raise KeyError(f'No {self.table} record with id "{record_id}"')

        record = {**local, **changes, 'id': local['id'], 'updatedAt': now_str()}
        record = self._resolve_references(record)
        entity = self.entity_cls.from_dict(record)
        self._write(Operation.Update, entity.id, entity.to_dict())
        return entity

    def delete(self, record_id: str) -> bool:
        """Remove a record locally and queue its deletion.

        Returns:
            False if the record did not exist.
        """
        record_id = self._resolve(record_id)
        if self.collection.get(record_id) is None:
            logging.debug(f'{self.table}/{record_id} does not exist, nothing to delete')
            return False
        self._write(Operation.Delete, record_id, {'id': record_id})
        return True

    def _write(self, operation: Operation, record_id: str, record: Dict[str, Any]) -> None:
        with self.store.transaction() as conn:
            self.queue.enqueue(self.table, record_id, operation, record, conn=conn)
            if operation == Operation.Delete:
                self.collection.delete(record_id, conn=conn)
            else:
                self.collection.put(record, conn=conn)

        logging.debug(f'{operation} {self.table}/{record_id} saved locally')
        self.queue.notify_changed()
        signals.recordsChanged.emit(str(self.table))

        if self.on_enqueued is not None and (self.connectivity is None or self.connectivity.is_online):
            self.on_enqueued()


class DomainStores:
    """One :class:`EntityStore` per synchronised collection."""

    def __init__(self, store: LocalStore, queue: SyncQueue,
                 connectivity: Optional[Connectivity] = None,
                 on_enqueued: Optional[Callable[[], Any]] = None,
                 mapper: Optional[IdMapper] = None) -> None:
        def make(table: Table) -> EntityStore:
            return EntityStore(table, store, queue, connectivity=connectivity, on_enqueued=on_enqueued,
                               mapper=mapper)

        self.budgets = make(Table.Budgets)
        self.categories = make(Table.Categories)
        self.transactions = make(Table.Transactions)
        self.reflections = make(Table.Reflections)
        self.payment_methods = make(Table.PaymentMethods)

    def __getitem__(self, table: Union[str, Table]) -> EntityStore:
        return {
            Table.Budgets: self.budgets,
            Table.Categories: self.categories,
            Table.Transactions: self.transactions,
            Table.Reflections: self.reflections,
            Table.PaymentMethods: self.payment_methods,
        }[Table.from_name(table)]
