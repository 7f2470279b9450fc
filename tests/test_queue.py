# tests/test_queue.py
"""
Tests for BudgetPlanner.core.queue (durable sync queue).

Run:
    python -m unittest tests.test_queue
"""
import unittest

from BudgetPlanner.core import database
from BudgetPlanner.core.models import Operation, OperationStatus, Table, Transaction, Tombstone
from BudgetPlanner.core.queue import SyncQueue
from BudgetPlanner.core.retry import RetryPolicy
from BudgetPlanner.ui.actions import signals
from tests.base import BaseTestCase, FakeClock


class SyncQueueTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.clock = FakeClock()
        self.policy = RetryPolicy(rng=lambda: 0.0, clock=self.clock)
        self.queue = SyncQueue(self.store, self.policy)

    def test_enqueue_sets_defaults(self):
        op = self.queue.enqueue('transactions', 'tx-1', 'CREATE', {'amount': 100})
        self.assertTrue(op.id)
        self.assertEqual(op.table, Table.Transactions)
        self.assertEqual(op.record_id, 'tx-1')
        self.assertEqual(op.operation, Operation.Create)
        self.assertEqual(op.status, OperationStatus.Pending)
        self.assertEqual(op.retry_count, 0)
        self.assertIsNone(op.error)
        self.assertIsInstance(op.data, Transaction)
        self.assertEqual(op.data.amount, 100)
        self.assertEqual(op.data.id, 'tx-1')

    def test_enqueue_ids_are_unique(self):
        ids = {self.queue.enqueue('budgets', f'b{i}', 'CREATE', {}).id for i in range(20)}
        self.assertEqual(len(ids), 20)

    def test_delete_carries_tombstone(self):
        op = self.queue.enqueue('categories', 'c1', 'DELETE', {'id': 'c1'})
        self.assertIsInstance(op.data, Tombstone)
        self.assertEqual(self.queue.get(op.id).data, Tombstone('c1'))

    def test_queue_survives_restart(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {'month': '2025-01', 'totalLimit': 500})

        reopened = SyncQueue(database.LocalStore(self.db_path), self.policy)
        stored = reopened.get(op.id)
        self.assertIsNotNone(stored)
        self.assertEqual(stored.data.month, '2025-01')
        self.assertEqual(stored.data.total_limit, 500)
        self.assertEqual(stored.timestamp, op.timestamp)

    def test_list_pending_includes_retryable_failures_only(self):
        pending = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        retryable = self.queue.enqueue('budgets', 'b2', 'CREATE', {})
        exhausted = self.queue.enqueue('budgets', 'b3', 'CREATE', {})

        retryable.status = OperationStatus.Failed
        retryable.retry_count = 2
        self.queue.update(retryable)
        exhausted.status = OperationStatus.Failed
        exhausted.retry_count = 5
        self.queue.update(exhausted)

        ids = {op.id for op in self.queue.list_pending()}
        self.assertEqual(ids, {pending.id, retryable.id})
        self.assertEqual([op.id for op in self.queue.list_failed()], [exhausted.id])

    def test_update_replaces_by_id(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        other = self.queue.enqueue('budgets', 'b2', 'CREATE', {})
        op.error = 'boom'
        op.retry_count = 1
        self.queue.update(op)

        self.assertEqual(len(self.queue), 2)
        self.assertEqual(self.queue.get(op.id).error, 'boom')
        self.assertEqual(self.queue.get(op.id).retry_count, 1)
        self.assertEqual(self.queue.get(other.id).retry_count, 0)

    def test_remove(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        keep = self.queue.enqueue('budgets', 'b2', 'CREATE', {})
        self.assertTrue(self.queue.remove(op.id))
        self.assertFalse(self.queue.remove(op.id))
        self.assertIsNone(self.queue.get(op.id))
        self.assertIsNotNone(self.queue.get(keep.id))

    def test_recover_resets_interrupted_operations(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        op.status = OperationStatus.Syncing
        self.queue.update(op)

        reopened = SyncQueue(self.store, self.policy)
        self.assertEqual(reopened.get(op.id).status, OperationStatus.Pending)
        self.assertEqual(reopened.recover(), 0)

    def test_retry_resets_failed_operation(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        for _ in range(5):
            self.policy.rearm(op, 'validation')
        self.queue.update(op)
        self.assertEqual(len(self.queue.list_failed()), 1)

        self.queue.retry(op.id)
        stored = self.queue.get(op.id)
        self.assertEqual(stored.status, OperationStatus.Pending)
        self.assertEqual(stored.retry_count, 0)
        self.assertIsNone(stored.error)
        self.assertIsNone(stored.next_attempt_at)

        with self.assertRaises(KeyError):
            self.queue.retry('missing')

    def test_discard_only_terminal_failures(self):
        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        with self.assertRaises(ValueError):
            self.queue.discard(op.id)

        op.status = OperationStatus.Failed
        op.retry_count = 5
        self.queue.update(op)
        self.assertTrue(self.queue.discard(op.id))
        self.assertEqual(len(self.queue), 0)
        self.assertFalse(self.queue.discard(op.id))

    def test_pending_for_record_is_ordered_and_scoped(self):
        first = self.queue.enqueue('transactions', 'x1', 'CREATE', {})
        self.queue.enqueue('budgets', 'x1', 'CREATE', {})
        second = self.queue.enqueue('transactions', 'x1', 'UPDATE', {'amount': 5})

        ops = self.queue.pending_for_record('transactions', 'x1')
        self.assertEqual([op.id for op in ops], [first.id, second.id])

    def test_queue_changed_signal(self):
        sizes = []

        def _slot(size: int) -> None:
            sizes.append(size)

        signals.queueChanged.connect(_slot)
        self.addCleanup(signals.queueChanged.disconnect, _slot)

        op = self.queue.enqueue('budgets', 'b1', 'CREATE', {})
        self.queue.enqueue('budgets', 'b2', 'CREATE', {})
        self.queue.remove(op.id)
        self.assertEqual(sizes, [1, 2, 1])


if __name__ == '__main__':
    unittest.main()
