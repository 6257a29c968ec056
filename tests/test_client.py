"""
Tests for vehicle_backup.client module.

Tests GeotabSession authentication, JSON-RPC error classification, batched
calls and retry behavior against an httpx.MockTransport backend.
"""

# pyright: reportPrivateUsage=false

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from vehicle_backup.client import (
    AuthenticationError,
    ErrorKind,
    GeotabError,
    GeotabSession,
    kind_for_error_name,
)
from vehicle_backup.config import ConnectionConfig
from vehicle_backup.models import build_device_list_call, build_position_call

Handler = Callable[[httpx.Request], httpx.Response]


class ScriptedBackend:
    """Answers requests from a list of responses and records what was sent."""

    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self._responses: list[httpx.Response | Exception] = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def payload(self, index: int) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


def _session(backend: Handler, max_retries: int = 3) -> GeotabSession:
    return GeotabSession(
        'my.geotab.com',
        'demo',
        'user@example.com',
        'secret',
        connection_config=ConnectionConfig(max_retries=max_retries),
        transport=httpx.MockTransport(backend),
        retry_backoff_seconds=0.0,
    )


def _result(value: Any) -> httpx.Response:
    return httpx.Response(200, json={'result': value})


class TestErrorClassification:
    """Test mapping backend error names to kinds."""

    @pytest.mark.parametrize(
        ('error_name', 'expected_kind'),
        [
            ('InvalidUserException', ErrorKind.INVALID_CREDENTIALS),
            ('DbUnavailableException', ErrorKind.BACKEND_UNAVAILABLE),
            ('OverLimitException', ErrorKind.RATE_LIMITED),
            ('InvalidApiOperationException', ErrorKind.INVALID_OPERATION),
            ('MissingMethodException', ErrorKind.INVALID_OPERATION),
            ('WebServerInvokerJsonException', ErrorKind.TRANSIENT),
            ('SomethingNewException', ErrorKind.UNCLASSIFIED),
            (None, ErrorKind.UNCLASSIFIED),
        ],
    )
    def test_should_classify_error_name(
        self,
        error_name: str | None,
        expected_kind: ErrorKind,
    ) -> None:
        """Should look up the kind for each known backend exception name."""
        assert kind_for_error_name(error_name) is expected_kind

    def test_should_render_error_name_in_message(self) -> None:
        """Should prefix the message with the backend error name."""
        error = GeotabError(
            ErrorKind.RATE_LIMITED, 'slow down', error_name='OverLimitException'
        )

        assert str(error) == 'OverLimitException: slow down'


class TestGeotabSessionInitialization:
    """Test session construction."""

    def test_should_default_to_https(self) -> None:
        """Should prefix a bare host with https://."""
        session = _session(ScriptedBackend([]))

        assert session.server_url == 'https://my.geotab.com'
        assert session.database == 'demo'
        assert not session.is_authenticated

    def test_should_keep_explicit_scheme(self) -> None:
        """Should not rewrite a host that already carries a scheme."""
        session = GeotabSession('http://localhost:8080/', 'demo', 'u', 'p')

        assert session.server_url == 'http://localhost:8080'


class TestGeotabSessionAuthenticate:
    """Test the Authenticate call."""

    @pytest.mark.asyncio
    async def test_should_store_credentials(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should keep the session credentials after a successful login."""
        backend = ScriptedBackend([httpx.Response(200, json=login_response)])

        async with _session(backend) as session:
            credentials = await session.authenticate()

        assert session.is_authenticated
        assert credentials.session_id == 'session-1'
        sent = backend.payload(0)
        assert sent['method'] == 'Authenticate'
        assert sent['params'] == {
            'database': 'demo',
            'userName': 'user@example.com',
            'password': 'secret',
        }
        assert str(backend.requests[0].url) == 'https://my.geotab.com/apiv1'

    @pytest.mark.asyncio
    async def test_should_follow_redirect_path(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should send later calls to the server named by the login path."""
        login_response['result']['path'] = 'my3.geotab.com'
        backend = ScriptedBackend(
            [httpx.Response(200, json=login_response), _result([])]
        )

        async with _session(backend) as session:
            await session.authenticate()
            await session.execute(build_device_list_call())

        assert session.server_url == 'https://my3.geotab.com'
        assert str(backend.requests[1].url) == 'https://my3.geotab.com/apiv1'

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ('error_name', 'expected_kind'),
        [
            ('InvalidUserException', ErrorKind.INVALID_CREDENTIALS),
            ('DbUnavailableException', ErrorKind.BACKEND_UNAVAILABLE),
            ('OverLimitException', ErrorKind.RATE_LIMITED),
        ],
    )
    async def test_should_raise_authentication_error_with_kind(
        self,
        json_rpc_error: Callable[[str, str], httpx.Response],
        error_name: str,
        expected_kind: ErrorKind,
    ) -> None:
        """Should wrap login failures in AuthenticationError keeping the kind."""
        backend = ScriptedBackend([json_rpc_error(error_name, 'nope')])

        async with _session(backend) as session:
            with pytest.raises(AuthenticationError) as exc_info:
                await session.authenticate()

        assert exc_info.value.kind is expected_kind
        assert exc_info.value.error_name == error_name
        assert not session.is_authenticated

    @pytest.mark.asyncio
    async def test_should_reject_calls_before_login(self) -> None:
        """Should refuse to send an entity call without credentials."""
        backend = ScriptedBackend([])

        async with _session(backend) as session:
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.INVALID_OPERATION
        assert backend.requests == []


class TestGeotabSessionCalls:
    """Test single and batched calls."""

    @pytest.mark.asyncio
    async def test_should_attach_credentials_to_call(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should send typeName and the session credentials."""
        backend = ScriptedBackend(
            [httpx.Response(200, json=login_response), _result([{'id': 'b1'}])]
        )

        async with _session(backend) as session:
            await session.authenticate()
            result = await session.call('Get', 'Device', resultsLimit=5)

        assert result == [{'id': 'b1'}]
        params = backend.payload(1)['params']
        assert params['typeName'] == 'Device'
        assert params['resultsLimit'] == 5  # noqa: PLR2004
        assert params['credentials'] == {
            'database': 'demo',
            'userName': 'user@example.com',
            'sessionId': 'session-1',
        }

    @pytest.mark.asyncio
    async def test_should_batch_calls_in_one_request(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should send one ExecuteMultiCall and return results in call order."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                _result([['first'], ['second']]),
            ]
        )
        calls = [build_position_call('b1'), build_position_call('b2')]

        async with _session(backend) as session:
            await session.authenticate()
            results = await session.multi_call(calls)

        assert results == [['first'], ['second']]
        sent = backend.payload(1)
        assert sent['method'] == 'ExecuteMultiCall'
        batched: list[dict[str, Any]] = sent['params']['calls']
        assert [
            call['params']['search']['deviceSearch']['id'] for call in batched
        ] == ['b1', 'b2']
        assert 'credentials' not in batched[0]['params']
        assert 'credentials' in sent['params']

    @pytest.mark.asyncio
    async def test_should_skip_request_for_empty_batch(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should return [] without contacting the backend."""
        backend = ScriptedBackend([httpx.Response(200, json=login_response)])

        async with _session(backend) as session:
            await session.authenticate()
            assert await session.multi_call([]) == []

        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_should_reject_mismatched_batch_result(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should raise INVALID_OPERATION when result count differs from calls."""
        backend = ScriptedBackend(
            [httpx.Response(200, json=login_response), _result([['only one']])]
        )

        async with _session(backend) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.multi_call(
                    [build_position_call('b1'), build_position_call('b2')]
                )

        assert exc_info.value.kind is ErrorKind.INVALID_OPERATION


class TestGeotabSessionErrorHandling:
    """Test HTTP and JSON-RPC failure handling."""

    @pytest.mark.asyncio
    async def test_should_classify_rate_limit_error(
        self,
        login_response: dict[str, Any],
        json_rpc_error: Callable[[str, str], httpx.Response],
    ) -> None:
        """Should raise RATE_LIMITED without retrying."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                json_rpc_error('OverLimitException', 'limit'),
            ]
        )

        async with _session(backend) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert len(backend.requests) == 2  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_should_classify_http_429_as_rate_limited(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should map HTTP 429 to RATE_LIMITED."""
        backend = ScriptedBackend(
            [httpx.Response(200, json=login_response), httpx.Response(429)]
        )

        async with _session(backend) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.status_code == 429  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_should_retry_transient_errors(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should retry server errors and connection failures, then succeed."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                httpx.Response(503),
                httpx.ConnectError('refused'),
                _result([]),
            ]
        )

        async with _session(backend, max_retries=3) as session:
            await session.authenticate()
            result = await session.execute(build_device_list_call())

        assert result == []
        assert len(backend.requests) == 4  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_should_raise_transient_after_max_retries(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should give up after max_retries attempts with a TRANSIENT error."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                httpx.ReadTimeout('slow'),
                httpx.ReadTimeout('slow'),
            ]
        )

        async with _session(backend, max_retries=2) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.TRANSIENT
        assert len(backend.requests) == 3  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_should_treat_malformed_body_as_transient(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should classify an unparseable response body as TRANSIENT."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                httpx.Response(200, content=b'<html>oops</html>'),
            ]
        )

        async with _session(backend, max_retries=1) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.TRANSIENT
        assert exc_info.value.error_name == 'WebServerInvokerJsonException'

    @pytest.mark.asyncio
    async def test_should_not_retry_client_errors(
        self,
        login_response: dict[str, Any],
    ) -> None:
        """Should raise INVALID_OPERATION for HTTP 4xx without retrying."""
        backend = ScriptedBackend(
            [httpx.Response(200, json=login_response), httpx.Response(404)]
        )

        async with _session(backend) as session:
            await session.authenticate()
            with pytest.raises(GeotabError) as exc_info:
                await session.execute(build_device_list_call())

        assert exc_info.value.kind is ErrorKind.INVALID_OPERATION
        assert len(backend.requests) == 2  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_should_reauthenticate_once_on_expired_session(
        self,
        login_response: dict[str, Any],
        json_rpc_error: Callable[[str, str], httpx.Response],
    ) -> None:
        """Should log in again and repeat the call when the session expired."""
        backend = ScriptedBackend(
            [
                httpx.Response(200, json=login_response),
                json_rpc_error('InvalidUserException', 'expired'),
                httpx.Response(200, json=login_response),
                _result([{'id': 'b1'}]),
            ]
        )

        async with _session(backend) as session:
            await session.authenticate()
            result = await session.execute(build_device_list_call())

        assert result == [{'id': 'b1'}]
        assert [backend.payload(index)['method'] for index in range(4)] == [
            'Authenticate',
            'Get',
            'Authenticate',
            'Get',
        ]

    @pytest.mark.asyncio
    async def test_should_reject_malformed_server_address(self) -> None:
        """Should fail login with INVALID_OPERATION before sending anything."""
        backend = ScriptedBackend([])
        session = GeotabSession(
            'my.geotab.com:port',
            'demo',
            'user@example.com',
            'secret',
            transport=httpx.MockTransport(backend),
            retry_backoff_seconds=0.0,
        )

        async with session:
            with pytest.raises(AuthenticationError) as exc_info:
                await session.authenticate()

        assert exc_info.value.kind is ErrorKind.INVALID_OPERATION
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_should_classify_other_httpx_errors_without_retrying(self) -> None:
        """Should wrap a non-transport httpx error as UNCLASSIFIED."""
        backend = ScriptedBackend([httpx.TooManyRedirects('redirect loop')])

        async with _session(backend) as session:
            with pytest.raises(AuthenticationError) as exc_info:
                await session.authenticate()

        assert exc_info.value.kind is ErrorKind.UNCLASSIFIED
        assert len(backend.requests) == 1
