"""HTTP client for the FleetDesk API.

Reads degrade in a fixed order when the service cannot answer (transport
error or 5xx): the last good response for the same path and query, then
mock data registered for the path.  Every result says which of the three
sources served it.  Writes never degrade.
"""

import logging

import httpx


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

LIVE = 'live'
CACHE = 'cache'
MOCK = 'mock'


class ClientError(Exception):
    pass


class ApiError(ClientError):
    """The service answered with a failure envelope or a 4xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ClientUnavailable(ClientError):
    """The service could not be reached and nothing could stand in for it."""


class ApiResult:

    def __init__(self, data, source: str = LIVE):
        self.data = data
        self.source = source

    def __repr__(self) -> str:
        return f"<ApiResult source={self.source}>"

    @property
    def degraded(self) -> bool:
        return self.source != LIVE


def _unwrap(response: httpx.Response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and 'success' in body:
        if not body['success']:
            raise ApiError(response.status_code, body.get('error') or 'Request failed')
        return body.get('data')
    if response.is_error:
        raise ApiError(response.status_code, response.text or response.reason_phrase)
    return body


class FleetDeskClient:

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, mocks: dict = None,
                 transport: httpx.BaseTransport = None):
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._cache = {}
        self._mocks = dict(mocks or {})

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self._http.close()

    def register_mock(self, path_prefix: str, data) -> None:
        """Serve ``data`` for reads under ``path_prefix`` when all else fails."""
        self._mocks[path_prefix] = data

    def _mock_for(self, path: str):
        # Longest registered prefix wins, so /api/drivers/x beats /api/drivers.
        matches = [p for p in self._mocks if path.startswith(p)]
        if not matches:
            return None
        return self._mocks[max(matches, key=len)]

    @staticmethod
    def _cache_key(path: str, params) -> tuple:
        return path, tuple(sorted((params or {}).items()))

    def _fallback(self, path: str, params, reason: str) -> ApiResult:
        key = self._cache_key(path, params)
        if key in self._cache:
            logger.warning('GET %s failed (%s); serving cached response', path, reason)
            return ApiResult(self._cache[key], CACHE)
        mock = self._mock_for(path)
        if mock is not None:
            logger.warning('GET %s failed (%s); serving mock data', path, reason)
            return ApiResult(mock, MOCK)
        raise ClientUnavailable(f"GET {path} failed ({reason}) and no fallback is available")

    def request(self, method: str, path: str, params: dict = None, json: dict = None) -> ApiResult:
        method = method.upper()
        try:
            response = self._http.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            if method != 'GET':
                raise ClientUnavailable(f"{method} {path} failed: {exc}") from exc
            return self._fallback(path, params, type(exc).__name__)

        if response.status_code >= 500 and method == 'GET':
            return self._fallback(path, params, f"HTTP {response.status_code}")

        data = _unwrap(response)
        if method == 'GET':
            self._cache[self._cache_key(path, params)] = data
        return ApiResult(data, LIVE)

    def get(self, path: str, **params) -> ApiResult:
        return self.request('GET', path, params=params or None)

    def post(self, path: str, payload: dict = None) -> ApiResult:
        return self.request('POST', path, json=payload)

    def put(self, path: str, payload: dict = None) -> ApiResult:
        return self.request('PUT', path, json=payload)

    def delete(self, path: str) -> ApiResult:
        return self.request('DELETE', path)

    # ------------------------------------------------------------------
    # Shortcuts

    def list_bookings(self) -> ApiResult:
        return self.get('/api/schedules/bookings')

    def create_booking(self, payload: dict) -> ApiResult:
        return self.post('/api/schedules/bookings', payload)

    def update_booking(self, booking_id: str, fields: dict) -> ApiResult:
        return self.put(f"/api/schedules/bookings/{booking_id}", fields)

    def list_reminders(self) -> ApiResult:
        return self.get('/api/schedules/reminders')

    def acknowledge_reminder(self, reminder_id: str) -> ApiResult:
        return self.put(f"/api/schedules/reminders/{reminder_id}", {'acknowledged': True})

    def kpi(self, period: str = 'month') -> ApiResult:
        return self.get('/api/dashboard/kpi', period=period)

    def report(self, name: str, period: str = 'month', **bounds) -> ApiResult:
        return self.get(f"/api/financial/{name}", period=period, **bounds)
