# vehicle_backup/operations/fetch_data.py
"""
Fetch step of a poll cycle.

One cycle issues exactly two backend requests:

1. `Get Device` to list every vehicle currently in the fleet.
2. One `ExecuteMultiCall` holding, for every vehicle, a `Get DeviceStatusInfo`
   (last known position) and a `Get StatusData` (latest odometer reading).

Batching the per-vehicle lookups keeps the round trips at two per cycle
regardless of fleet size.

The multi-call result list mirrors the call list, so each sub-result is
attributed to the vehicle it was requested for. A sample still carries its
own device reference when the backend returns one, and the join matches on
that identifier.
"""

import logging
from abc import abstractmethod
from collections.abc import Awaitable, Sequence
from datetime import datetime
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vehicle_backup.cancellation import CancellationToken
from vehicle_backup.client import ErrorKind, GeotabError
from vehicle_backup.models import (
    Device,
    DeviceStatusInfo,
    GeotabCall,
    OdometerSample,
    PositionSample,
    StatusData,
    VehicleEntity,
    build_device_list_call,
    build_odometer_call,
    build_position_call,
)

__all__: list[str] = [
    'BackendSession',
    'FetchResult',
    'build_sample_calls',
    'fetch_vehicle_records',
    'split_sample_results',
]

logger: logging.Logger = logging.getLogger(__name__)

# Calls per vehicle in the multi-call: position first, odometer second.
CALLS_PER_VEHICLE: int = 2


# =============================================================================
# Protocol Definition
# =============================================================================


@runtime_checkable
class BackendSession(Protocol):
    """
    What the poll cycle needs from an authenticated backend session.

    GeotabSession implements it; tests substitute an in-memory fake.
    """

    @abstractmethod
    async def execute(self, call: GeotabCall) -> Any:
        """Invoke one call and return its JSON result."""
        ...

    @abstractmethod
    async def multi_call(self, calls: Sequence[GeotabCall]) -> list[Any]:
        """Invoke many calls in one request; one result per call, in order."""
        ...


class FetchResult(BaseModel):
    """The three independently fetched record sets of one cycle."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    entities: list[VehicleEntity] = Field(default_factory=list)
    positions: list[PositionSample] = Field(default_factory=list)
    odometers: list[OdometerSample] = Field(default_factory=list)


# =============================================================================
# Helper Functions
# =============================================================================


ResultT = TypeVar('ResultT')


async def _await_guarded(
    awaitable: Awaitable[ResultT],
    cancel_token: CancellationToken | None,
) -> ResultT:
    if cancel_token is None:
        return await awaitable
    return await cancel_token.guard(awaitable)


def _as_record_list(result: Any, description: str) -> list[Any]:
    if result is None:
        return []
    if not isinstance(result, list):
        logger.warning(
            'Expected a list for %s, got %s; treating as empty',
            description,
            type(result).__name__,
        )
        return []
    return result


def _parse_devices(raw_devices: Any) -> list[VehicleEntity]:
    """
    Parse the Get Device result into entities.

    Raises:
        GeotabError: If the result is not a list at all.
    """
    if not isinstance(raw_devices, list):
        raise GeotabError(
            ErrorKind.INVALID_OPERATION,
            f'Get Device returned {type(raw_devices).__name__}, expected a list',
        )

    entities: list[VehicleEntity] = []
    for raw_device in raw_devices:
        try:
            entities.append(Device.model_validate(raw_device).to_entity())
        except ValidationError as error:
            logger.warning('Skipping malformed device record: %s', error)

    return entities


def build_sample_calls(
    entities: Sequence[VehicleEntity],
    as_of: datetime | None = None,
) -> list[GeotabCall]:
    """
    Build the multi-call for a list of vehicles.

    Returns:
        `CALLS_PER_VEHICLE` calls per vehicle, position then odometer, in
        entity order.
    """
    calls: list[GeotabCall] = []
    for entity in entities:
        calls.append(build_position_call(entity.id))
        calls.append(build_odometer_call(entity.id, as_of=as_of))
    return calls


def split_sample_results(
    entities: Sequence[VehicleEntity],
    results: Sequence[Any],
) -> tuple[list[PositionSample], list[OdometerSample]]:
    """
    Turn multi-call results back into position and odometer samples.

    Each sub-result is a list of records; the first record that parses into
    a usable sample is taken. Empty sub-results mean no sample.

    Args:
        entities: Vehicles, in the order their calls were issued.
        results: Multi-call results, `CALLS_PER_VEHICLE` per vehicle.

    Returns:
        (positions, odometers), each with at most one sample per vehicle.

    Raises:
        GeotabError: If the result count does not match the call layout.
    """
    expected: int = len(entities) * CALLS_PER_VEHICLE
    if len(results) != expected:
        raise GeotabError(
            ErrorKind.INVALID_OPERATION,
            f'Expected {expected} multi-call results, got {len(results)}',
        )

    positions: list[PositionSample] = []
    odometers: list[OdometerSample] = []

    for index, entity in enumerate(entities):
        position_records: list[Any] = _as_record_list(
            results[index * CALLS_PER_VEHICLE], f'positions of {entity.id!r}'
        )
        odometer_records: list[Any] = _as_record_list(
            results[index * CALLS_PER_VEHICLE + 1], f'odometer of {entity.id!r}'
        )

        for record in position_records:
            try:
                position: PositionSample | None = DeviceStatusInfo.model_validate(
                    record
                ).to_sample(entity.id)
            except ValidationError as error:
                logger.warning(
                    'Skipping malformed status info for %r: %s', entity.id, error
                )
                continue
            if position is not None:
                positions.append(position)
                break

        for record in odometer_records:
            try:
                odometer: OdometerSample | None = StatusData.model_validate(
                    record
                ).to_sample(entity.id)
            except ValidationError as error:
                logger.warning(
                    'Skipping malformed status data for %r: %s', entity.id, error
                )
                continue
            if odometer is not None:
                odometers.append(odometer)
                break

    return positions, odometers


# =============================================================================
# Fetch Function
# =============================================================================


async def fetch_vehicle_records(
    session: BackendSession,
    cancel_token: CancellationToken | None = None,
    as_of: datetime | None = None,
) -> FetchResult:
    """
    Fetch vehicles, their positions and their odometer readings.

    Both requests are raced against `cancel_token` so a stop request does
    not wait for a slow backend.

    Args:
        session: Authenticated backend session.
        cancel_token: Optional token; cancellation raises OperationCancelledError.
        as_of: Instant to read odometers at; defaults to now.

    Returns:
        FetchResult with the cycle's entities and samples.

    Raises:
        GeotabError: Classified backend failure.
        OperationCancelledError: If the token fired during a request.
    """
    raw_devices: Any = await _await_guarded(
        session.execute(build_device_list_call()), cancel_token
    )
    entities: list[VehicleEntity] = _parse_devices(raw_devices)

    if not entities:
        logger.info('Backend reported no vehicles')
        return FetchResult()

    calls: list[GeotabCall] = build_sample_calls(entities, as_of=as_of)
    results: list[Any] = await _await_guarded(session.multi_call(calls), cancel_token)

    positions, odometers = split_sample_results(entities, results)

    logger.debug(
        'Fetched %d vehicles, %d positions, %d odometer readings',
        len(entities),
        len(positions),
        len(odometers),
    )

    return FetchResult(entities=entities, positions=positions, odometers=odometers)
