# vehicle_backup/client.py
"""
Asynchronous MyGeotab JSON-RPC session.

The session authenticates once, keeps the returned session credentials,
and sends `Get`-style calls either one at a time or batched into a single
`ExecuteMultiCall` request. It moves JSON-RPC envelopes and classifies
failures; it knows nothing about vehicles or snapshots.

Error Classification:
---------------------
Every failure surfaces as a GeotabError carrying an ErrorKind. The kind is
looked up from the backend's error name (or derived from the transport
failure), so callers decide what to do with a dispatch table keyed on kind
rather than by catching exception subclasses:

- InvalidUserException           -> INVALID_CREDENTIALS
- DbUnavailableException         -> BACKEND_UNAVAILABLE
- OverLimitException / HTTP 429  -> RATE_LIMITED
- API misuse / HTTP 4xx / bad server address -> INVALID_OPERATION
- Timeouts, connection errors, HTTP 5xx, unparseable bodies -> TRANSIENT
- Any other backend error name or httpx error -> UNCLASSIFIED

Retry Behavior:
---------------
Only TRANSIENT failures are retried inside a request, with exponential
backoff, up to `connection.max_retries` attempts. An expired session
(InvalidUserException after a successful login) triggers one transparent
re-authentication. Rate limits are never retried here; the poll loop owns
that backoff.
"""

import logging
from collections.abc import Sequence
from enum import Enum
from ssl import SSLContext
from types import TracebackType
from typing import Any, Final, Self, cast

import httpx
from pydantic import SecretStr, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from vehicle_backup.common import build_truststore_ssl_context
from vehicle_backup.config import ConnectionConfig
from vehicle_backup.models import GeotabCall, GeotabCredentials, LoginResult

__all__: list[str] = [
    'AuthenticationError',
    'ErrorKind',
    'GeotabError',
    'GeotabSession',
    'kind_for_error_name',
]

logger: logging.Logger = logging.getLogger(__name__)

API_PATH: Final[str] = '/apiv1'
THIS_SERVER: Final[str] = 'ThisServer'

# HTTP status codes
HTTP_STATUS_RATE_LIMITED: Final[int] = 429
HTTP_STATUS_SERVER_ERROR_MIN: Final[int] = 500

# Retry configuration
RETRY_BACKOFF_MAX_SECONDS: Final[float] = 30.0


# =============================================================================
# Error Taxonomy
# =============================================================================


class ErrorKind(str, Enum):
    """Classification of a failure, independent of where it was raised."""

    INVALID_CREDENTIALS = 'invalid_credentials'
    BACKEND_UNAVAILABLE = 'backend_unavailable'
    RATE_LIMITED = 'rate_limited'
    INVALID_OPERATION = 'invalid_operation'
    TRANSIENT = 'transient'
    CANCELLED = 'cancelled'
    UNCLASSIFIED = 'unclassified'


# Backend exception names as reported in JSON-RPC error payloads.
ERROR_NAME_KINDS: Final[dict[str, ErrorKind]] = {
    'InvalidUserException': ErrorKind.INVALID_CREDENTIALS,
    'DbUnavailableException': ErrorKind.BACKEND_UNAVAILABLE,
    'OverLimitException': ErrorKind.RATE_LIMITED,
    'InvalidApiOperationException': ErrorKind.INVALID_OPERATION,
    'MissingMethodException': ErrorKind.INVALID_OPERATION,
    'MissingMemberException': ErrorKind.INVALID_OPERATION,
    'ArgumentException': ErrorKind.INVALID_OPERATION,
    'ArgumentNullException': ErrorKind.INVALID_OPERATION,
    'ArgumentOutOfRangeException': ErrorKind.INVALID_OPERATION,
    'InvalidCastException': ErrorKind.INVALID_OPERATION,
    'JsonSerializerException': ErrorKind.INVALID_OPERATION,
    'WebServerInvokerJsonException': ErrorKind.TRANSIENT,
    'TimeoutException': ErrorKind.TRANSIENT,
}


def kind_for_error_name(error_name: str | None) -> ErrorKind:
    """Look up the ErrorKind for a backend exception name."""
    if error_name is None:
        return ErrorKind.UNCLASSIFIED
    return ERROR_NAME_KINDS.get(error_name, ErrorKind.UNCLASSIFIED)


class GeotabError(Exception):
    """
    Any failure talking to the MyGeotab backend.

    Attributes:
        kind: Classification used by callers to pick a handling policy.
        error_name: Backend exception name when the backend reported one.
        status_code: HTTP status code if available.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        error_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind: ErrorKind = kind
        self.error_name: str | None = error_name
        self.status_code: int | None = status_code

    def __str__(self) -> str:
        label: str = self.error_name or self.kind.value
        return f'{label}: {super().__str__()}'


class AuthenticationError(GeotabError):
    """Raised when the Authenticate call itself fails."""


def _is_transient(exception: BaseException) -> bool:
    return isinstance(exception, GeotabError) and exception.kind is ErrorKind.TRANSIENT


# =============================================================================
# JSON-RPC Session
# =============================================================================


class GeotabSession:
    """
    Authenticated MyGeotab API session over httpx.AsyncClient.

    Example:
        >>> async with GeotabSession('my.geotab.com', 'demo', 'user', 'pw') as session:
        ...     await session.authenticate()
        ...     devices = await session.call('Get', 'Device')
    """

    def __init__(
        self,
        host: str,
        database: str,
        username: str,
        password: str | SecretStr,
        connection_config: ConnectionConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff_seconds: float = 1.0,
    ) -> None:
        """
        Create an unauthenticated session.

        Args:
            host: Server host name, e.g. 'my.geotab.com'. A scheme prefix is
                accepted; https is assumed when none is given.
            database: Database (tenant) name.
            username: MyGeotab user name.
            password: MyGeotab password, kept as SecretStr.
            connection_config: Timeouts, retries and SSL settings.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            retry_backoff_seconds: Base delay of the exponential backoff
                between transport retries.

        Raises:
            RuntimeError: If use_truststore is set but truststore is missing.
        """
        self._config: ConnectionConfig = connection_config or ConnectionConfig()
        self._database: str = database
        self._username: str = username
        self._password: SecretStr = (
            password if isinstance(password, SecretStr) else SecretStr(password)
        )
        self._base_url: str = self._normalize_host(host)
        self._credentials: GeotabCredentials | None = None
        self._retry_backoff_seconds: float = retry_backoff_seconds

        connect_timeout: int
        read_timeout: int
        connect_timeout, read_timeout = self._config.request_timeout

        self._http_client: httpx.AsyncClient = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=connect_timeout,
                read=read_timeout,
                write=connect_timeout,
                pool=connect_timeout,
            ),
            verify=self._build_ssl_context(),
            transport=transport,
        )

        logger.debug('Initialized GeotabSession: server=%r', self._base_url)

    @staticmethod
    def _normalize_host(host: str) -> str:
        host = host.strip().rstrip('/')
        if not host.startswith(('http://', 'https://')):
            host = f'https://{host}'
        return host

    def _build_ssl_context(self) -> SSLContext | bool | str:
        if self._config.use_truststore:
            logger.debug('Building SSLContext from operating system trust store')
            return build_truststore_ssl_context()
        return self._config.verify_ssl

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def server_url(self) -> str:
        """Server the session currently talks to (may change after login)."""
        return self._base_url

    @property
    def database(self) -> str:
        return self._database

    @property
    def is_authenticated(self) -> bool:
        return self._credentials is not None

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client. Safe to call multiple times."""
        await self._http_client.aclose()
        logger.debug('GeotabSession closed')

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def authenticate(self) -> GeotabCredentials:
        """
        Log in and store the session credentials.

        Follows the returned `path` when the database is hosted on another
        server.

        Returns:
            The session credentials.

        Raises:
            AuthenticationError: With the kind of the underlying failure.
        """
        payload: dict[str, Any] = {
            'method': 'Authenticate',
            'params': {
                'database': self._database,
                'userName': self._username,
                'password': self._password.get_secret_value(),
            },
        }

        try:
            result: Any = await self._post(payload)
            login: LoginResult = LoginResult.model_validate(result)
        except GeotabError as error:
            raise AuthenticationError(
                error.kind,
                str(error.args[0]) if error.args else 'Authentication failed',
                error_name=error.error_name,
                status_code=error.status_code,
            ) from error
        except ValidationError as error:
            raise AuthenticationError(
                ErrorKind.UNCLASSIFIED,
                f'Unexpected Authenticate result: {error}',
            ) from error

        self._credentials = login.credentials

        if login.path and login.path != THIS_SERVER:
            self._base_url = self._normalize_host(login.path)
            logger.info('Database is hosted on %s, redirecting calls', self._base_url)

        logger.info(
            'Authenticated %r on database %r', self._username, self._database
        )
        return login.credentials

    async def call(
        self,
        method: str,
        type_name: str | None = None,
        **params: Any,
    ) -> Any:
        """
        Invoke one API method.

        Args:
            method: API method name, e.g. 'Get'.
            type_name: Entity type for entity methods, e.g. 'Device'.
            **params: Additional method parameters in the API's camelCase shape.

        Returns:
            The JSON `result` value.

        Raises:
            GeotabError: Classified failure.
        """
        if type_name is not None:
            params['typeName'] = type_name
        return await self.execute(GeotabCall(method=method, params=params))

    async def execute(self, call: GeotabCall) -> Any:
        """Invoke a prepared call with the session credentials."""
        return await self._post_authenticated(call.method, dict(call.params))

    async def multi_call(self, calls: Sequence[GeotabCall]) -> list[Any]:
        """
        Send many calls in one ExecuteMultiCall request.

        Args:
            calls: Calls to batch.

        Returns:
            One result per call, in the order of `calls`.

        Raises:
            GeotabError: Classified failure. A result list whose length does
                not match `calls` is an INVALID_OPERATION.
        """
        if not calls:
            return []

        result: Any = await self._post_authenticated(
            'ExecuteMultiCall',
            {'calls': [call.to_payload() for call in calls]},
        )

        if not isinstance(result, list) or len(result) != len(calls):
            received: int | str = (
                len(result) if isinstance(result, list) else type(result).__name__
            )
            raise GeotabError(
                ErrorKind.INVALID_OPERATION,
                f'ExecuteMultiCall returned {received} results for {len(calls)} calls',
            )

        logger.debug('ExecuteMultiCall returned %d results', len(result))
        return cast(list[Any], result)

    # -------------------------------------------------------------------------
    # JSON-RPC Execution Layer
    # -------------------------------------------------------------------------

    async def _post_authenticated(self, method: str, params: dict[str, Any]) -> Any:
        if self._credentials is None:
            raise GeotabError(
                ErrorKind.INVALID_OPERATION,
                f'Cannot call {method!r} before authenticate()',
            )

        try:
            return await self._post(self._with_credentials(method, params))
        except GeotabError as error:
            if error.kind is not ErrorKind.INVALID_CREDENTIALS:
                raise
            logger.warning('Session rejected (%s), re-authenticating once', error)

        await self.authenticate()
        return await self._post(self._with_credentials(method, params))

    def _with_credentials(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        credentials: GeotabCredentials = cast(GeotabCredentials, self._credentials)
        return GeotabCall(method=method, params=params).to_payload(
            credentials.to_payload()
        )

    def _wait_exponential(self, retry_state: RetryCallState) -> float:
        exponential_wait: float = self._retry_backoff_seconds * (
            2 ** (retry_state.attempt_number - 1)
        )
        return min(exponential_wait, RETRY_BACKOFF_MAX_SECONDS)

    async def _post(self, payload: dict[str, Any]) -> Any:
        """POST a JSON-RPC payload, retrying transient failures."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            wait=self._wait_exponential,
            stop=stop_after_attempt(self._config.max_retries),
            reraise=True,
        ):
            with attempt:
                response: httpx.Response = await self._send(payload)
                return self._handle_response(response)

        raise AssertionError('unreachable')  # pragma: no cover

    async def _send(self, payload: dict[str, Any]) -> httpx.Response:
        """
        Send the request, converting httpx failures to GeotabError.

        Timeouts and connection errors are TRANSIENT. A server address that
        cannot form a request URL is an INVALID_OPERATION and is not retried.
        Any other httpx error is UNCLASSIFIED.
        """
        url: str = f'{self._base_url}{API_PATH}'
        try:
            return await self._http_client.post(url, json=payload)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as error:
            logger.error('Invalid server address %r: %s', self._base_url, error)
            raise GeotabError(
                ErrorKind.INVALID_OPERATION, f'Invalid server address: {error}'
            ) from error
        except httpx.TimeoutException as error:
            logger.warning('Request timeout: %s %s', payload.get('method'), url)
            raise GeotabError(
                ErrorKind.TRANSIENT, f'Request timeout: {error}'
            ) from error
        except httpx.TransportError as error:
            logger.warning('Connection error: %s - %s', url, error)
            raise GeotabError(
                ErrorKind.TRANSIENT, f'Connection error: {error}'
            ) from error
        except httpx.HTTPError as error:
            logger.warning('HTTP error: %s - %s', url, error)
            raise GeotabError(
                ErrorKind.UNCLASSIFIED, f'HTTP error: {error}'
            ) from error

    def _handle_response(self, response: httpx.Response) -> Any:
        """
        Unwrap a JSON-RPC response.

        Returns:
            The `result` member of the response body.

        Raises:
            GeotabError: For HTTP errors, malformed bodies or JSON-RPC errors.
        """
        status_code: int = response.status_code

        if status_code == HTTP_STATUS_RATE_LIMITED:
            raise GeotabError(
                ErrorKind.RATE_LIMITED,
                'HTTP 429 Too Many Requests',
                status_code=status_code,
            )

        if status_code >= HTTP_STATUS_SERVER_ERROR_MIN:
            logger.warning('Server error %d: %s', status_code, response.text[:200])
            raise GeotabError(
                ErrorKind.TRANSIENT,
                f'Server error: HTTP {status_code}',
                status_code=status_code,
            )

        if not response.is_success:
            raise GeotabError(
                ErrorKind.INVALID_OPERATION,
                f'Client error: HTTP {status_code}: {response.text[:200]}',
                status_code=status_code,
            )

        try:
            body: Any = response.json()
        except ValueError as parse_error:
            raise GeotabError(
                ErrorKind.TRANSIENT,
                f'Invalid JSON in response: {parse_error}',
                error_name='WebServerInvokerJsonException',
                status_code=status_code,
            ) from parse_error

        if not isinstance(body, dict):
            raise GeotabError(
                ErrorKind.TRANSIENT,
                f'Expected JSON object in response, got {type(body).__name__}',
                error_name='WebServerInvokerJsonException',
                status_code=status_code,
            )

        envelope: dict[str, Any] = cast(dict[str, Any], body)

        if 'error' in envelope:
            raise self._error_from_payload(envelope['error'], status_code)

        if 'result' not in envelope:
            raise GeotabError(
                ErrorKind.TRANSIENT,
                'Response has neither result nor error',
                error_name='WebServerInvokerJsonException',
                status_code=status_code,
            )

        return envelope['result']

    @staticmethod
    def _error_from_payload(error_payload: Any, status_code: int) -> GeotabError:
        """
        Build a GeotabError from a JSON-RPC `error` member.

        MyGeotab nests the specific exception under `error.errors[0].name`;
        the outer `error.name` is usually the generic 'JSONRPCError'.
        """
        if not isinstance(error_payload, dict):
            return GeotabError(
                ErrorKind.UNCLASSIFIED, str(error_payload), status_code=status_code
            )

        error_dict: dict[str, Any] = cast(dict[str, Any], error_payload)
        error_name: str | None = error_dict.get('name')
        message: str = str(error_dict.get('message', 'Unknown backend error'))

        inner_errors: Any = error_dict.get('errors')
        if isinstance(inner_errors, list) and inner_errors:
            first_inner: Any = inner_errors[0]
            if isinstance(first_inner, dict):
                inner: dict[str, Any] = cast(dict[str, Any], first_inner)
                error_name = inner.get('name', error_name)
                message = str(inner.get('message', message))

        return GeotabError(
            kind_for_error_name(error_name),
            message,
            error_name=error_name,
            status_code=status_code,
        )
