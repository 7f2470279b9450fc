# tests/test_client.py
"""
Tests for BudgetPlanner.core.client (envelope handling and error mapping).

Run:
    python -m unittest tests.test_client
"""
import unittest

import httpx

from BudgetPlanner.core.client import ApiClient, StaticIdentity, SyncApi, unwrap
from BudgetPlanner.settings import lib
from BudgetPlanner.status import status
from tests.base import BASE_URL, BaseTestCase


class ApiClientTests(BaseTestCase):

    def make_client(self, handler, identity=None) -> ApiClient:
        api = ApiClient(base_url=BASE_URL, identity=identity, transport=httpx.MockTransport(handler))
        self.addCleanup(api.close)
        return api

    def test_defaults_from_settings(self):
        api = ApiClient()
        self.addCleanup(api.close)
        self.assertEqual(api.base_url, lib.settings.get_section('server')['api_url'])
        self.assertEqual(api.timeout, 30.0)

    def test_unwraps_envelope(self):
        api = self.make_client(lambda r: httpx.Response(200, json={'success': True, 'data': {'a': 1}}))
        self.assertEqual(api.get('/anything'), {'a': 1})

    def test_plain_body_is_returned(self):
        api = self.make_client(lambda r: httpx.Response(200, json=[1, 2]))
        self.assertEqual(api.get('/anything'), [1, 2])

    def test_empty_body(self):
        api = self.make_client(lambda r: httpx.Response(204))
        self.assertIsNone(api.delete('/thing'))

    def test_token_header(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get('Authorization'))
            return httpx.Response(200, json={})

        self.make_client(handler, StaticIdentity('abc')).get('/x')
        self.make_client(handler).get('/x')
        self.assertEqual(seen, ['Bearer abc', None])

    def test_unsuccessful_envelope(self):
        api = self.make_client(lambda r: httpx.Response(200, json={'success': False, 'error': 'nope'}))
        with self.assertRaises(status.RequestFailedException) as ctx:
            api.post('/x', {})
        self.assertIn('nope', str(ctx.exception))

    def test_http_errors(self):
        api = self.make_client(lambda r: httpx.Response(422, json={'success': False, 'error': 'bad month'}))
        with self.assertRaises(status.RequestFailedException) as ctx:
            api.post('/x', {})
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn('bad month', ctx.exception.detail)

        for code in (401, 403):
            api = self.make_client(lambda r, c=code: httpx.Response(c))
            with self.assertRaises(status.NotAuthenticatedException):
                api.get('/x')

    def test_network_errors(self):
        def refuse(request):
            raise httpx.ConnectError('refused', request=request)

        def slow(request):
            raise httpx.ReadTimeout('timed out', request=request)

        for handler in (refuse, slow):
            with self.assertRaises(status.ServiceUnavailableException):
                self.make_client(handler).get('/x')

    def test_invalid_json(self):
        api = self.make_client(lambda r: httpx.Response(200, content=b'<html>'))
        with self.assertRaises(status.RequestFailedException):
            api.get('/x')

    def test_unwrap(self):
        self.assertEqual(unwrap({'success': True, 'data': None}), None)
        self.assertEqual(unwrap({'data': 1}), {'data': 1})
        self.assertEqual(unwrap('text'), 'text')


class SyncApiTests(BaseTestCase):

    def test_endpoints(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.content))
            return httpx.Response(200, json={'success': True, 'data': {'pendingOperations': 2}})

        api = SyncApi(ApiClient(base_url=BASE_URL, transport=httpx.MockTransport(handler)))
        self.addCleanup(api.client.close)

        self.assertEqual(api.status(), {'pendingOperations': 2})
        api.pull('2025-01-01T00:00:00Z')
        api.push([])

        self.assertEqual([s[:2] for s in seen], [
            ('GET', '/api/sync/status'),
            ('POST', '/api/sync/pull'),
            ('POST', '/api/sync/push'),
        ])
        self.assertIn(b'"lastSync"', seen[1][2])
        self.assertIn(b'"operations"', seen[2][2])


if __name__ == '__main__':
    unittest.main()
