# tests/test_models.py
"""
Tests for BudgetPlanner.core.models (entities, payload union, SyncOperation).

Run:
    python -m unittest tests.test_models
"""
import datetime
import unittest

from BudgetPlanner.core.models import (
    Budget,
    Category,
    Operation,
    PaymentMethod,
    SyncOperation,
    Table,
    Tombstone,
    Transaction,
    parse_timestamp,
    payload_from_dict,
)


class TableTests(unittest.TestCase):

    def test_from_name(self):
        self.assertEqual(Table.from_name('paymentMethods'), Table.PaymentMethods)
        self.assertEqual(Table.from_name('payment_methods'), Table.PaymentMethods)
        self.assertEqual(Table.from_name('budgets'), Table.Budgets)
        with self.assertRaises(ValueError):
            Table.from_name('users')


class EntityTests(unittest.TestCase):

    def test_snake_and_camel_keys(self):
        a = Transaction.from_dict({'id': 't1', 'budget_id': 'b1', 'transaction_date': '2025-01-01'})
        b = Transaction.from_dict({'id': 't1', 'budgetId': 'b1', 'transactionDate': '2025-01-01'})
        self.assertEqual(a, b)
        self.assertEqual(a.to_dict()['budgetId'], 'b1')

    def test_unknown_keys_survive(self):
        budget = Budget.from_dict({'id': 'b1', 'sharedWith': ['u2']})
        self.assertEqual(budget.to_dict()['sharedWith'], ['u2'])

    def test_id_required(self):
        with self.assertRaises(ValueError):
            Category.from_dict({'name': 'x'})

    def test_table_is_per_class(self):
        self.assertEqual(Budget.table, Table.Budgets)
        self.assertEqual(PaymentMethod(id='p1').table, Table.PaymentMethods)


class PayloadTests(unittest.TestCase):

    def test_variant_follows_table(self):
        self.assertIsInstance(payload_from_dict(Table.Budgets, Operation.Update, {'id': 'b1'}), Budget)
        self.assertIsInstance(payload_from_dict('payment_methods', Operation.Create, {'id': 'p'}), PaymentMethod)
        self.assertIsInstance(payload_from_dict(Table.Budgets, Operation.Delete, {'id': 'b1'}), Tombstone)

    def test_operation_round_trip(self):
        op = SyncOperation.new('reflections', 'r1', 'CREATE', {'wins': 'saved', 'didMeetBudget': True})
        stored = op.to_dict()
        self.assertEqual(stored['recordId'], 'r1')
        self.assertEqual(stored['retryCount'], 0)
        self.assertNotIn('error', stored)
        self.assertEqual(SyncOperation.from_dict(stored), op)


class TimestampTests(unittest.TestCase):

    def test_parse(self):
        utc = datetime.timezone.utc
        self.assertEqual(parse_timestamp('2025-01-02T00:00:00Z'), datetime.datetime(2025, 1, 2, tzinfo=utc))
        self.assertEqual(parse_timestamp('2025-01-02T00:00:00'), datetime.datetime(2025, 1, 2, tzinfo=utc))
        self.assertIsNone(parse_timestamp(''))
        self.assertIsNone(parse_timestamp('tomorrow'))
        self.assertIsNone(parse_timestamp(12))


if __name__ == '__main__':
    unittest.main()
