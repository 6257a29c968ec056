# vehicle_backup/schema.py
"""
Snapshot file schema.

Each vehicle has its own append-only CSV file without a header row. Every
line is one snapshot with the columns below, in this order. The VIN column
is an empty string when the vehicle has no VIN.

Keeping the column order and the line formatting here means the writer and
any downstream reader agree on one definition.
"""

from datetime import UTC, datetime
from typing import Final

from vehicle_backup.models import VehicleSnapshot

__all__: list[str] = [
    'SNAPSHOT_COLUMNS',
    'SNAPSHOT_FILE_SUFFIX',
    'SNAPSHOT_SEPARATOR',
    'format_snapshot_line',
    'parse_snapshot_line',
]

# =============================================================================
# Schema Constants
# =============================================================================

SNAPSHOT_COLUMNS: Final[list[str]] = [
    'id',  # Backend vehicle/device identifier
    'vin',  # Vehicle Identification Number, '' if absent
    'latitude',  # Decimal degrees, WGS84; 0 without a fix
    'longitude',  # Decimal degrees, WGS84; 0 without a fix
    'odometer',  # Whole units as reported by the backend; 0 without a reading
    'timestamp',  # Capture time of the snapshot, ISO-8601 UTC
]

SNAPSHOT_SEPARATOR: Final[str] = ','
SNAPSHOT_FILE_SUFFIX: Final[str] = '.csv'


# =============================================================================
# Schema Functions
# =============================================================================


def _format_timestamp(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC).isoformat()


def format_snapshot_line(snapshot: VehicleSnapshot) -> str:
    """
    Render a snapshot as one CSV line (without the trailing newline).

    Commas and line breaks inside text fields would corrupt the line, so
    they are replaced with spaces.

    Args:
        snapshot: Snapshot to render.

    Returns:
        Line in SNAPSHOT_COLUMNS order.
    """
    values: list[str] = [
        snapshot.id,
        snapshot.vin or '',
        repr(snapshot.latitude),
        repr(snapshot.longitude),
        str(snapshot.odometer),
        _format_timestamp(snapshot.timestamp),
    ]
    cleaned: list[str] = [
        value.replace(SNAPSHOT_SEPARATOR, ' ').replace('\r', ' ').replace('\n', ' ')
        for value in values
    ]
    return SNAPSHOT_SEPARATOR.join(cleaned)


def parse_snapshot_line(line: str) -> dict[str, str]:
    """
    Split a snapshot line back into its named columns.

    Args:
        line: One line from a snapshot file, with or without the newline.

    Returns:
        Mapping of column name to raw text value.

    Raises:
        ValueError: If the line does not have exactly len(SNAPSHOT_COLUMNS) fields.
    """
    fields: list[str] = line.rstrip('\r\n').split(SNAPSHOT_SEPARATOR)
    if len(fields) != len(SNAPSHOT_COLUMNS):
        raise ValueError(
            f'Expected {len(SNAPSHOT_COLUMNS)} fields, got {len(fields)}: {line!r}'
        )
    return dict(zip(SNAPSHOT_COLUMNS, fields, strict=True))
