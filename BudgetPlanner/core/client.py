"""Authenticated HTTP client for the budget server and the sync endpoints.

The server wraps every response in ``{"success": bool, "data": ..., "error": ...}``;
:meth:`ApiClient.request` unwraps it and maps failures onto the status
exceptions:

- connection errors and timeouts raise :class:`status.ServiceUnavailableException`
- 401 and 403 raise :class:`status.NotAuthenticatedException`
- other non-2xx answers and ``success: false`` raise :class:`status.RequestFailedException`
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .models import SyncOperation
from ..settings import lib
from ..status import status


class IdentityProvider(Protocol):
    """Source of the signed-in user and their session token."""
    user_id: Optional[str]

    def get_token(self) -> Optional[str]:
        ...


class StaticIdentity:
    """Identity provider holding a fixed token, e.g. one restored from a saved session."""

    def __init__(self, token: Optional[str] = None, user_id: Optional[str] = None) -> None:
        self.token = token
        self.user_id = user_id

    def get_token(self) -> Optional[str]:
        return self.token


def unwrap(body: Any) -> Any:
    """Return the ``data`` member of a response envelope.

    Bodies without an envelope are returned as they are.

    Raises:
        status.RequestFailedException: If the envelope reports ``success: false``.
    """
    if not isinstance(body, dict) or 'success' not in body:
        return body
    if not body['success']:
        raise status.RequestFailedException(str(body.get('error') or 'Request was not successful.'))
    return body.get('data')


class ApiClient:
    """JSON over HTTP with a bearer token.

    Args:
        base_url: Server root, e.g. ``http://localhost:8080/api``. Defaults to the ``server`` settings.
        identity: Provides the bearer token. Requests are sent unauthenticated without one.
        timeout: Request timeout in seconds. Defaults to the ``server`` settings.
        transport: Optional httpx transport, used to fake the server in tests.
    """

    def __init__(self,
                 base_url: Optional[str] = None,
                 identity: Optional[IdentityProvider] = None,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        config = lib.settings.get_section('server')
        self.base_url: str = (base_url or config['api_url']).rstrip('/')
        self.identity = identity
        self.timeout: float = float(timeout if timeout is not None else config['request_timeout'])

        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
        )

    def __enter__(self) -> 'ApiClient':
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        token = self.identity.get_token() if self.identity else None
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def request(self, method: str, path: str, payload: Optional[Any] = None) -> Any:
        """Send a request and return the unwrapped response data.

        Raises:
            status.ServiceUnavailableException: On connection errors and timeouts.
            status.NotAuthenticatedException: On 401 and 403.
            status.RequestFailedException: On any other failure answer.
        """
        logging.debug(f'{method} {self.base_url}{path}')
        try:
            response = self.client.request(method, path, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code in (401, 403):
                raise status.NotAuthenticatedException(f'{method} {path} returned {code}.') from e
            raise status.RequestFailedException(
                f'{method} {path} returned {code}: {_error_text(e.response)}',
                status_code=code
            ) from e
        except httpx.RequestError as e:
            raise status.ServiceUnavailableException(f'{method} {path}: {e}') from e

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise status.RequestFailedException(
                f'{method} {path} returned invalid JSON.', status_code=response.status_code
            ) from e
        return unwrap(body)

    def get(self, path: str) -> Any:
        return self.request('GET', path)

    def post(self, path: str, payload: Optional[Any] = None) -> Any:
        return self.request('POST', path, payload)

    def put(self, path: str, payload: Optional[Any] = None) -> Any:
        return self.request('PUT', path, payload)

    def delete(self, path: str) -> Any:
        return self.request('DELETE', path)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get('error'):
        return str(body['error'])
    return response.text[:200]


class SyncApi:
    """The server's sync endpoints."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def push(self, operations: List[SyncOperation]) -> Dict[str, Any]:
        """Send a batch of operations to ``POST /sync/push``.

        Returns:
            ``{successful: [id], failed: [{id, error}], remapped?: [{id, recordId}]}``
        """
        data = self.client.post('/sync/push', {'operations': [op.to_dict() for op in operations]})
        return data or {}

    def pull(self, last_sync: str = '') -> Dict[str, Any]:
        """Fetch changes made on the server since ``last_sync`` (empty for everything)."""
        # The server reads lastSyncTime
        data = self.client.post('/sync/pull', {'lastSync': last_sync or '', 'lastSyncTime': last_sync or ''})
        return data or {}

    def status(self) -> Dict[str, Any]:
        """Return the server's view of this user's sync: ``{pendingOperations, lastSyncTime}``."""
        data = self.client.get('/sync/status')
        return data or {}
