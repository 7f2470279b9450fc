"""Durable queue of local mutations waiting to be delivered to the server.

Entries live in the ``syncQueue`` collection of the local store and survive a
restart. Entries are only ever appended, replaced by id or removed by id.
"""
import logging
import sqlite3
import threading
from typing import Any, List, Optional

from .database import SYNC_QUEUE, LocalStore
from .models import Operation, OperationStatus, SyncOperation, Table
from .retry import RetryPolicy
from ..ui.actions import signals


class SyncQueue:
    """Persistent queue of :class:`SyncOperation` entries.

    ``lock`` serialises read-modify-write sequences on the queue (for example
    selecting pending entries and marking them as syncing). Callers that
    perform such a sequence must hold it.

    Args:
        store: The local store holding the queue collection.
        policy: Retry policy used to tell retryable failures from terminal ones.
    """

    def __init__(self, store: LocalStore, policy: Optional[RetryPolicy] = None) -> None:
        self.store = store
        self.collection = store.collection(SYNC_QUEUE)
        self.policy = policy or RetryPolicy()
        self.lock = threading.RLock()

        self.recover()

    def __len__(self) -> int:
        return self.collection.count()

    def _changed(self, conn: Optional[sqlite3.Connection] = None) -> None:
        # Listeners are told once the enclosing transaction commits
        if conn is None:
            self.notify_changed()

    def notify_changed(self) -> None:
        signals.queueChanged.emit(len(self))

    def enqueue(self, table: Table, record_id: str, operation: Operation, data: Any,
                conn: Optional[sqlite3.Connection] = None) -> SyncOperation:
        """Append a new pending operation.

        Args:
            table: The affected collection.
            record_id: Identifier of the affected record.
            operation: CREATE, UPDATE or DELETE.
            data: Full snapshot of the record (``{id}`` for deletes).
            conn: Write inside this open transaction instead of a new one.

        Returns:
            The persisted operation.
        """
        op = SyncOperation.new(table, record_id, operation, data)
        self.collection.put(op.to_dict(), conn=conn)
        logging.debug(f'Enqueued {op.operation} {op.table}/{op.record_id} as {op.id}')
        self._changed(conn)
        return op

    def get(self, op_id: str) -> Optional[SyncOperation]:
        record = self.collection.get(op_id)
        return SyncOperation.from_dict(record) if record else None

    def list_all(self) -> List[SyncOperation]:
        """Return every queued operation, oldest first."""
        ops = [SyncOperation.from_dict(r) for r in self.collection.get_all()]
        return sorted(ops, key=lambda op: op.timestamp)

    def list_pending(self) -> List[SyncOperation]:
        """Return operations awaiting delivery.

        These are pending operations and failed operations that still have
        attempts left. The order is not guaranteed.
        """
        ops = [SyncOperation.from_dict(r) for r in
               self.collection.get_all_by_index('status', str(OperationStatus.Pending))]
        for record in self.collection.get_all_by_index('status', str(OperationStatus.Failed)):
            op = SyncOperation.from_dict(record)
            if not self.policy.is_exhausted(op):
                ops.append(op)
        return ops

    def list_failed(self) -> List[SyncOperation]:
        """Return terminally failed operations, oldest first."""
        ops = [SyncOperation.from_dict(r) for r in
               self.collection.get_all_by_index('status', str(OperationStatus.Failed))]
        return sorted([op for op in ops if self.policy.is_exhausted(op)], key=lambda op: op.timestamp)

    def pending_for_record(self, table: Table, record_id: str,
                           conn: Optional[sqlite3.Connection] = None) -> List[SyncOperation]:
        """Return every queued operation touching one record, oldest first."""
        table = Table.from_name(table)
        ops = [SyncOperation.from_dict(r) for r in
               self.collection.get_all_by_index('recordId', str(record_id), conn=conn)]
        return sorted([op for op in ops if op.table == table], key=lambda op: op.timestamp)

    def update(self, op: SyncOperation, conn: Optional[sqlite3.Connection] = None) -> None:
        """Replace the stored operation with the same id."""
        self.collection.put(op.to_dict(), conn=conn)
        self._changed(conn)

    def remove(self, op_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Remove a delivered operation. Returns False if it was already gone."""
        removed = self.collection.delete(op_id, conn=conn)
        if removed:
            logging.debug(f'Removed operation {op_id} from the queue')
        self._changed(conn)
        return removed

    def recover(self) -> int:
        """Return operations left in ``syncing`` by an interrupted push to pending.

        Returns:
            The number of recovered operations.
        """
        with self.lock:
            stuck = [SyncOperation.from_dict(r) for r in
                     self.collection.get_all_by_index('status', str(OperationStatus.Syncing))]
            if not stuck:
                return 0
            with self.store.transaction() as conn:
                for op in stuck:
                    op.status = OperationStatus.Pending
                    self.update(op, conn=conn)
        logging.info(f'Recovered {len(stuck)} interrupted operation(s)')
        self.notify_changed()
        return len(stuck)

    def retry(self, op_id: str) -> SyncOperation:
        """Give a failed operation a fresh set of attempts.

        Raises:
            KeyError: If no operation has this id.
        """
        with self.lock:
            op = self.get(op_id)
            if op is None:
                raise KeyError(f'No queued operation with id "{op_id}"')
            op.status = OperationStatus.Pending
            op.retry_count = 0
            op.error = None
            op.last_attempt_at = None
            op.next_attempt_at = None
            self.update(op)
        logging.info(f'Operation {op_id} scheduled for another round of attempts')
        return op

    def discard(self, op_id: str) -> bool:
        """Drop a terminally failed operation without delivering it.

        Raises:
            ValueError: If the operation is still awaiting delivery.
        """
        with self.lock:
            op = self.get(op_id)
            if op is None:
                return False
            if not self.policy.is_exhausted(op):
                raise ValueError(f'Operation "{op_id}" is still awaiting delivery and cannot be discarded.')
            self.remove(op_id)
        logging.info(f'Discarded failed operation {op_id} ({op.table}/{op.record_id})')
        return True
