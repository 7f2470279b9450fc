# tests/test_resolver.py
"""
Unit tests for BudgetPlanner.core.resolver (last-write-wins).

Run:
    python -m unittest tests.test_resolver
"""
import itertools
import unittest

from BudgetPlanner.core.resolver import resolve, updated_at

STAMPS = [
    None,
    'not a date',
    '2025-01-01T00:00:00Z',
    '2025-01-01T00:00:00+00:00',
    '2025-01-01T01:00:00+02:00',
    '2025-01-02T00:00:00Z',
    '2025-01-02T00:00:00',
    '2025-01-03T12:30:00.123456Z',
]


class ResolverTests(unittest.TestCase):

    def test_server_newer_wins(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-01T00:00:00Z'}
        server = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z'}
        self.assertIs(resolve(local, server), server)

    def test_local_newer_wins(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-03T00:00:00Z'}
        server = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z'}
        self.assertIs(resolve(local, server), local)

    def test_equal_timestamps_server_wins(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z', 'totalLimit': 1}
        server = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z', 'totalLimit': 2}
        self.assertIs(resolve(local, server), server)

    def test_same_instant_in_other_offset_is_a_tie(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-01T02:00:00+02:00'}
        server = {'id': 'b1', 'updatedAt': '2025-01-01T00:00:00Z'}
        self.assertIs(resolve(local, server), server)

    def test_both_missing_server_wins(self):
        local = {'id': 'b1'}
        server = {'id': 'b1'}
        self.assertIs(resolve(local, server), server)

    def test_missing_side_counts_as_oldest(self):
        dated = {'id': 'b1', 'updatedAt': '2000-01-01T00:00:00Z'}
        undated = {'id': 'b1'}
        self.assertIs(resolve(dated, undated), dated)
        self.assertIs(resolve(undated, dated), dated)

    def test_unparseable_counts_as_missing(self):
        local = {'id': 'b1', 'updatedAt': 'yesterday'}
        server = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z'}
        self.assertIs(resolve(local, server), server)

    def test_snake_case_timestamp_is_read(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-01T00:00:00Z'}
        server = {'id': 'b1', 'updated_at': '2025-01-02T00:00:00Z'}
        self.assertIs(resolve(local, server), server)

    def test_naive_timestamp_is_utc(self):
        self.assertEqual(
            updated_at({'updatedAt': '2025-01-02T00:00:00'}),
            updated_at({'updatedAt': '2025-01-02T00:00:00Z'}),
        )

    def test_total_and_deterministic(self):
        for a, b in itertools.product(STAMPS, repeat=2):
            local = {'id': 'x', 'updatedAt': a}
            server = {'id': 'x', 'updatedAt': b}
            result = resolve(local, server)
            self.assertIn(result, (local, server))
            self.assertIs(resolve(local, server), result)

            lt, st = updated_at(local), updated_at(server)
            if lt and st and st > lt:
                self.assertIs(result, server, f'{a} vs {b}')
            if lt and st and lt > st:
                self.assertIs(result, local, f'{a} vs {b}')
            if lt == st:
                self.assertIs(result, server, f'{a} vs {b}')

    def test_inputs_are_not_modified(self):
        local = {'id': 'b1', 'updatedAt': '2025-01-01T00:00:00Z'}
        server = {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z'}
        resolve(local, server)
        self.assertEqual(local, {'id': 'b1', 'updatedAt': '2025-01-01T00:00:00Z'})
        self.assertEqual(server, {'id': 'b1', 'updatedAt': '2025-01-02T00:00:00Z'})


if __name__ == '__main__':
    unittest.main()
