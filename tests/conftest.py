"""
Shared pytest fixtures for vehicle_backup tests.

This module provides reusable fixtures and in-memory fakes for the backend
session and the cancellation token. Fixtures are automatically discovered
by pytest.
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from vehicle_backup.cancellation import CancellationToken
from vehicle_backup.common.logger import PACKAGE_LOGGER_NAME
from vehicle_backup.config import StorageConfig
from vehicle_backup.models import GeotabCall, VehicleEntity

# =============================================================================
# Fakes
# =============================================================================


class FakeSession:
    """
    In-memory BackendSession.

    `execute` and `multi_call` pop scripted outcomes in order. An outcome is
    either a result value, an exception instance (raised), or a callable
    taking the call(s) and returning the result. When a script runs out, the
    last outcome repeats.
    """

    def __init__(
        self,
        execute_outcomes: Sequence[Any] = (),
        multi_call_outcomes: Sequence[Any] = (),
    ) -> None:
        self.execute_outcomes: list[Any] = list(execute_outcomes)
        self.multi_call_outcomes: list[Any] = list(multi_call_outcomes)
        self.executed: list[GeotabCall] = []
        self.multi_called: list[list[GeotabCall]] = []

    @staticmethod
    def _next(outcomes: list[Any]) -> Any:
        if not outcomes:
            return []
        return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    @staticmethod
    def _resolve(outcome: Any, argument: Any) -> Any:
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(argument)
        return outcome

    async def execute(self, call: GeotabCall) -> Any:
        self.executed.append(call)
        return self._resolve(self._next(self.execute_outcomes), call)

    async def multi_call(self, calls: Sequence[GeotabCall]) -> list[Any]:
        self.multi_called.append(list(calls))
        return self._resolve(self._next(self.multi_call_outcomes), calls)


class RecordingToken(CancellationToken):
    """CancellationToken whose waits return immediately and are recorded."""

    def __init__(self, cancel_after_waits: int | None = None) -> None:
        super().__init__()
        self.waits: list[float] = []
        self._cancel_after_waits: int | None = cancel_after_waits

    async def sleep(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if (
            self._cancel_after_waits is not None
            and len(self.waits) >= self._cancel_after_waits
        ):
            self.cancel('test')
        return self.cancelled


def device_record(
    device_id: str,
    vin: str | None = None,
    name: str = '',
) -> dict[str, Any]:
    """Raw Device record as returned by Get Device."""
    record: dict[str, Any] = {'id': device_id, 'name': name or f'Truck {device_id}'}
    if vin is not None:
        record['vehicleIdentificationNumber'] = vin
    return record


def sample_results(
    values: dict[str, tuple[float, float, float | None]],
) -> Callable[[Sequence[GeotabCall]], list[Any]]:
    """
    Build a multi_call outcome answering each call from `values`.

    Maps device id to (latitude, longitude, odometer); ids missing from the
    mapping get empty results.
    """

    def _answer(calls: Sequence[GeotabCall]) -> list[Any]:
        results: list[Any] = []
        for call in calls:
            device_id: str = call.params['search']['deviceSearch']['id']
            if device_id not in values:
                results.append([])
                continue
            latitude, longitude, odometer = values[device_id]
            if call.type_name == 'DeviceStatusInfo':
                results.append(
                    [
                        {
                            'device': {'id': device_id},
                            'latitude': latitude,
                            'longitude': longitude,
                        }
                    ]
                )
            elif odometer is None:
                results.append([])
            else:
                results.append([{'device': {'id': device_id}, 'data': odometer}])
        return results

    return _answer


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def sample_timestamp() -> datetime:
    """Fixed capture timestamp (UTC)."""
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def entities() -> list[VehicleEntity]:
    """Three vehicles, one without a VIN."""
    return [
        VehicleEntity(id='b1', name='Truck 1', vin='1FTFW1E50NFA00001'),
        VehicleEntity(id='b2', name='Truck 2', vin='1FTFW1E50NFA00002'),
        VehicleEntity(id='b3', name='Trailer 3'),
    ]


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def output_directory(tmp_path: Path) -> Path:
    """Snapshot output directory inside pytest's temp dir (not created)."""
    return tmp_path / 'VehiclesBackup'


@pytest.fixture
def storage_config(output_directory: Path) -> StorageConfig:
    """StorageConfig pointing at the temp output directory."""
    return StorageConfig(output_directory=output_directory, max_concurrent_writes=4)


# =============================================================================
# HTTP Fixtures
# =============================================================================


@pytest.fixture
def login_response() -> dict[str, Any]:
    """Successful Authenticate response body."""
    return {
        'result': {
            'credentials': {
                'database': 'demo',
                'userName': 'user@example.com',
                'sessionId': 'session-1',
            },
            'path': 'ThisServer',
        }
    }


@pytest.fixture
def json_rpc_error() -> Callable[[str, str], httpx.Response]:
    """Factory for MyGeotab JSON-RPC error responses."""

    def _build(error_name: str, message: str = 'failed') -> httpx.Response:
        return httpx.Response(
            200,
            json={
                'error': {
                    'name': 'JSONRPCError',
                    'message': message,
                    'errors': [{'name': error_name, 'message': message}],
                }
            },
        )

    return _build


# =============================================================================
# Logging Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    """Drop handlers added by setup_logger() so tests never share streams."""
    yield
    package_logger: logging.Logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
