# vehicle_backup/models/vehicle_models.py
"""
Backend-neutral vehicle records handled by one poll cycle.

Three independently fetched record sets come in (entities, position samples,
odometer samples) and one merged snapshot per entity goes out. All models
are frozen: a cycle reads what it was given and never mutates it.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__: list[str] = [
    'OdometerSample',
    'PositionSample',
    'VehicleEntity',
    'VehicleSnapshot',
]


class VehicleEntity(BaseModel):
    """
    A tracked vehicle as listed by the backend for the current cycle.

    Attributes:
        id: Opaque, stable backend identifier. Never reused for another vehicle.
        name: Display name.
        vin: Vehicle identification number, None when the device reports none.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str = Field(min_length=1)
    name: str = ''
    vin: str | None = None

    @field_validator('vin', mode='before')
    @classmethod
    def blank_vin_to_none(cls, vin: str | None) -> str | None:
        """Treat an empty or whitespace-only VIN as absent."""
        if vin is None:
            return None
        vin = str(vin).strip()
        return vin or None


class PositionSample(BaseModel):
    """Latest GPS fix reported for one vehicle."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    device_id: str
    latitude: float
    longitude: float
    date_time: datetime | None = None


class OdometerSample(BaseModel):
    """Latest odometer reading reported for one vehicle."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    device_id: str
    odometer: float


class VehicleSnapshot(BaseModel):
    """
    Merged per-vehicle record appended to the vehicle's backup file.

    Only exists between the join and the write; the persisted form is the
    CSV line produced by `vehicle_backup.schema.format_snapshot_line`.

    Attributes:
        id: Vehicle identifier (also the output file stem).
        name: Display name, carried for log messages only.
        vin: VIN, or None.
        latitude: Latitude in decimal degrees, 0.0 without a fix.
        longitude: Longitude in decimal degrees, 0.0 without a fix.
        odometer: Odometer reading floored to a whole unit, 0 without a reading.
        timestamp: Moment the snapshot was assembled (UTC).
        position_timestamp: The fix's own timestamp, if any. Not persisted.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    name: str = ''
    vin: str | None = None
    latitude: float = 0.0
    longitude: float = 0.0
    odometer: int = 0
    timestamp: datetime
    position_timestamp: datetime | None = None
