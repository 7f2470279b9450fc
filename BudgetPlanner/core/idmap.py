"""Re-keying of records created offline once the server assigns canonical ids.

When the server answers a push with ``remapped: [{id, recordId}]`` the local
record created under a placeholder id is moved to the server's id. Queued
operations for the record, and references to it held by other records and
their queued snapshots, are rewritten in the same transaction. The mapping is
kept in the store's id map table so late references can still be resolved.
"""
import logging
import sqlite3
from typing import Any, Dict, List, Tuple

from .database import LocalStore
from .models import SyncOperation, Table
from .queue import SyncQueue
from ..ui.actions import signals

# Referenced table -> (referencing table, foreign key field)
REFERENCES: Dict[Table, List[Tuple[Table, str]]] = {
    Table.Budgets: [(Table.Transactions, 'budgetId'), (Table.Reflections, 'budgetId')],
    Table.Categories: [(Table.Transactions, 'categoryId')],
    Table.PaymentMethods: [(Table.Transactions, 'paymentMethodId')],
}


class IdMapper:
    """Applies server id assignments to local records and queued operations."""

    def __init__(self, store: LocalStore, queue: SyncQueue) -> None:
        self.store = store
        self.queue = queue

    def resolve(self, table: Table, record_id: str) -> str:
        """Return the server id for ``record_id``, or ``record_id`` itself if it was never re-keyed."""
        return self.store.lookup_id(Table.from_name(table), record_id) or record_id

    def resolve_references(self, table: Table, record: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``record`` with foreign keys naming re-keyed records replaced by their server ids."""
        table = Table.from_name(table)
        out = dict(record)
        for referenced, refs in REFERENCES.items():
            for ref_table, field in refs:
                if ref_table != table or not out.get(field):
                    continue
                resolved = self.resolve(referenced, out[field])
                if resolved != out[field]:
                    logging.debug(f'{table}.{field}: {out[field]} was re-keyed to {resolved}')
                    out[field] = resolved
        return out

    def remap(self, table: Table, old_id: str, new_id: str) -> bool:
        """Move a record from ``old_id`` to ``new_id``.

        Returns:
            False if the ids are equal and nothing was done.
        """
        table = Table.from_name(table)
        old_id, new_id = str(old_id), str(new_id)
        if not new_id or old_id == new_id:
            return False

        with self.queue.lock:
            with self.store.transaction() as conn:
                self._move_record(table, old_id, new_id, conn)
                self._rewrite_operations(table, old_id, new_id, conn)
                self._rewrite_references(table, old_id, new_id, conn)
                self.store.map_id(table, old_id, new_id, conn=conn)

        logging.info(f'Re-keyed {table}/{old_id} to {new_id}')
        self.queue.notify_changed()
        signals.recordRemapped.emit(str(table), old_id, new_id)
        signals.recordsChanged.emit(str(table))
        return True

    def _move_record(self, table: Table, old_id: str, new_id: str, conn: sqlite3.Connection) -> None:
        collection = self.store.collection(table)
        record = collection.get(old_id, conn=conn)
        if record is None:
            return
        collection.delete(old_id, conn=conn)
        record['id'] = new_id
        collection.put(record, conn=conn)

    def _rewrite_operations(self, table: Table, old_id: str, new_id: str, conn: sqlite3.Connection) -> None:
        for op in self.queue.pending_for_record(table, old_id, conn=conn):
            data = op.to_dict()
            data['recordId'] = new_id
            data['data']['id'] = new_id
            self.queue.update(SyncOperation.from_dict(data), conn=conn)

    def _rewrite_references(self, table: Table, old_id: str, new_id: str, conn: sqlite3.Connection) -> None:
        for ref_table, field in REFERENCES.get(table, []):
            collection = self.store.collection(ref_table)
            for record in collection.get_all(conn=conn):
                if record.get(field) == old_id:
                    record[field] = new_id
                    collection.put(record, conn=conn)

            for record in self.queue.collection.get_all(conn=conn):
                if record.get('table') != ref_table or (record.get('data') or {}).get(field) != old_id:
                    continue
                record['data'][field] = new_id
                self.queue.collection.put(record, conn=conn)
