# vehicle_backup/operations/join.py
"""
Record joiner: one snapshot per vehicle from three independent result sets.

Vehicles, positions and odometer readings arrive as separate lists whose
order and completeness are not guaranteed to line up. Samples are matched
to vehicles by identifier, never by list position. Every vehicle yields
exactly one snapshot, in the order the vehicles were given, whether or not
any sample was found for it.
"""

import logging
import math
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import TypeVar

from vehicle_backup.models import (
    OdometerSample,
    PositionSample,
    VehicleEntity,
    VehicleSnapshot,
)

__all__: list[str] = ['join_snapshots']

logger: logging.Logger = logging.getLogger(__name__)


SampleT = TypeVar('SampleT', PositionSample, OdometerSample)


def _index_first_seen(
    samples: Iterable[SampleT],
    known_ids: set[str],
    kind: str,
) -> dict[str, SampleT]:
    """
    Map device id to the first sample seen for it.

    Samples for identifiers outside `known_ids` are dropped.
    """
    index: dict[str, SampleT] = {}
    discarded: int = 0

    for sample in samples:
        if sample.device_id not in known_ids:
            discarded += 1
            continue
        index.setdefault(sample.device_id, sample)

    if discarded:
        logger.debug('Discarded %d %s sample(s) for unknown vehicles', discarded, kind)

    return index


def _floor_odometer(sample: OdometerSample | None) -> int:
    if sample is None or not math.isfinite(sample.odometer):
        return 0
    return math.floor(sample.odometer)


def join_snapshots(
    entities: Sequence[VehicleEntity],
    positions: Iterable[PositionSample],
    odometers: Iterable[OdometerSample],
    captured_at: datetime | None = None,
) -> list[VehicleSnapshot]:
    """
    Merge vehicles with their position and odometer samples.

    Pure function: no I/O, and identical inputs (including `captured_at`)
    produce identical output.

    Args:
        entities: Vehicles of the current cycle. Output follows this order.
        positions: Position samples; the first one per vehicle wins.
        odometers: Odometer samples; the first one per vehicle wins.
        captured_at: Capture timestamp stamped on every snapshot. Defaults
            to the current UTC time.

    Returns:
        Exactly one snapshot per entity. Missing positions become (0.0, 0.0),
        a missing odometer becomes 0; odometer values are floored.

    Example:
        >>> join_snapshots(
        ...     [VehicleEntity(id='d1', vin='V1')],
        ...     [PositionSample(device_id='d1', latitude=45.0, longitude=-75.0)],
        ...     [],
        ... )[0].odometer
        0
    """
    if not entities:
        return []

    timestamp: datetime = captured_at if captured_at is not None else datetime.now(UTC)
    known_ids: set[str] = {entity.id for entity in entities}

    position_by_id: dict[str, PositionSample] = _index_first_seen(
        positions, known_ids, 'position'
    )
    odometer_by_id: dict[str, OdometerSample] = _index_first_seen(
        odometers, known_ids, 'odometer'
    )

    snapshots: list[VehicleSnapshot] = []
    for entity in entities:
        position: PositionSample | None = position_by_id.get(entity.id)
        odometer: OdometerSample | None = odometer_by_id.get(entity.id)

        snapshots.append(
            VehicleSnapshot(
                id=entity.id,
                name=entity.name,
                vin=entity.vin,
                latitude=position.latitude if position else 0.0,
                longitude=position.longitude if position else 0.0,
                odometer=_floor_odometer(odometer),
                timestamp=timestamp,
                position_timestamp=position.date_time if position else None,
            )
        )

    logger.debug(
        'Joined %d vehicles: %d with position, %d with odometer',
        len(snapshots),
        len(position_by_id),
        len(odometer_by_id),
    )

    return snapshots
