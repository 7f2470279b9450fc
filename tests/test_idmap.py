# tests/test_idmap.py
"""
Tests for BudgetPlanner.core.idmap (re-keying placeholder ids to server ids).

Run:
    python -m unittest tests.test_idmap
"""
import unittest

from BudgetPlanner.core.models import Table
from BudgetPlanner.ui.actions import signals
from tests.base import SyncTestCase, envelope


class IdMapperTests(SyncTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.connectivity.set_online(False)
        self.stores = self.orchestrator.stores
        self.mapper = self.orchestrator.mapper

    def test_remap_moves_record_and_references(self):
        self.stores.budgets.create({'id': 'tmp-b1', 'month': '2025-03'})
        self.stores.transactions.create({'id': 't1', 'budgetId': 'tmp-b1', 'amount': 3})
        remapped = self.record_signal(signals.recordRemapped)

        self.assertTrue(self.mapper.remap(Table.Budgets, 'tmp-b1', 'srv-b1'))

        self.assertIsNone(self.stores.budgets.get('tmp-b1'))
        self.assertEqual(self.stores.budgets.get('srv-b1').month, '2025-03')
        self.assertEqual(self.stores.transactions.get('t1').budget_id, 'srv-b1')
        self.assertEqual(self.mapper.resolve('budgets', 'tmp-b1'), 'srv-b1')
        self.assertEqual(self.mapper.resolve('budgets', 'other'), 'other')
        self.assertEqual(remapped, [('budgets', 'tmp-b1', 'srv-b1')])

        # Queued snapshots follow the new ids
        budget_op = self.queue.pending_for_record('budgets', 'srv-b1')[0]
        self.assertEqual(budget_op.data.id, 'srv-b1')
        tx_op = self.queue.pending_for_record('transactions', 't1')[0]
        self.assertEqual(tx_op.data.budget_id, 'srv-b1')

    def test_stores_follow_remapped_ids(self):
        self.stores.budgets.create({'id': 'tmp-b1', 'month': '2025-03'})
        self.mapper.remap(Table.Budgets, 'tmp-b1', 'srv-b1')

        self.assertEqual(self.stores.budgets.get('tmp-b1').id, 'srv-b1')

        updated = self.stores.budgets.update('tmp-b1', {'totalLimit': 900})
        self.assertEqual(updated.id, 'srv-b1')
        self.assertEqual(self.stores.budgets.get('srv-b1').total_limit, 900)

        self.assertTrue(self.stores.budgets.delete('tmp-b1'))
        self.assertIsNone(self.stores.budgets.get('srv-b1'))
        last = self.queue.pending_for_record('budgets', 'srv-b1')[-1]
        self.assertEqual(last.data.to_dict(), {'id': 'srv-b1'})
        self.assertEqual(self.queue.pending_for_record('budgets', 'tmp-b1'), [])

    def test_new_references_to_remapped_records_are_rewritten(self):
        self.stores.budgets.create({'id': 'tmp-b1'})
        self.stores.categories.create({'id': 'tmp-c1', 'name': 'Food'})
        self.mapper.remap(Table.Budgets, 'tmp-b1', 'srv-b1')
        self.mapper.remap(Table.Categories, 'tmp-c1', 'srv-c1')

        tx = self.stores.transactions.create({'id': 't1', 'budgetId': 'tmp-b1', 'amount': 5})
        self.assertEqual(tx.budget_id, 'srv-b1')
        self.assertEqual(self.queue.pending_for_record('transactions', 't1')[0].data.budget_id, 'srv-b1')

        tx = self.stores.transactions.update('t1', {'categoryId': 'tmp-c1'})
        self.assertEqual(tx.category_id, 'srv-c1')
        self.assertEqual(self.queue.pending_for_record('transactions', 't1')[-1].data.category_id, 'srv-c1')

        reflection = self.stores.reflections.create({'id': 'r1', 'budgetId': 'tmp-b1'})
        self.assertEqual(reflection.budget_id, 'srv-b1')

        self.assertEqual([t.id for t in self.stores.transactions.get_by_index('budgetId', 'tmp-b1')], ['t1'])

    def test_same_id_is_a_noop(self):
        self.assertFalse(self.mapper.remap('budgets', 'b1', 'b1'))

    def test_push_response_remaps(self):
        self.stores.categories.create({'id': 'tmp-c1', 'name': 'Rent'})
        self.stores.categories.update('tmp-c1', {'name': 'Housing'})
        create_op, update_op = self.queue.pending_for_record('categories', 'tmp-c1')

        def handler(body):
            return envelope({
                'successful': [create_op.id],
                'failed': [{'id': update_op.id, 'error': 'busy'}],
                'remapped': [{'id': create_op.id, 'recordId': 'srv-c1'}],
            })

        self.server.push_handler = handler
        self.connectivity.set_online(True)

        self.assertEqual(self.stores.categories.get('srv-c1').name, 'Housing')
        pending = self.queue.pending_for_record('categories', 'srv-c1')
        self.assertEqual([op.id for op in pending], [update_op.id])
        self.assertEqual(pending[0].retry_count, 1)


if __name__ == '__main__':
    unittest.main()
