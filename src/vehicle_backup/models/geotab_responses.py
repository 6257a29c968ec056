# vehicle_backup/models/geotab_responses.py
"""
Pydantic response models for MyGeotab entities.

MyGeotab returns camelCase JSON; fields are mapped to snake_case via
aliases. Only the fields the backup needs are modelled, everything else is
ignored. Entity references (e.g. `"device": {"id": "b1"}`) are kept as
small reference models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from vehicle_backup.models.vehicle_models import (
    OdometerSample,
    PositionSample,
    VehicleEntity,
)

__all__: list[str] = [
    'Device',
    'DeviceStatusInfo',
    'EntityReference',
    'GeotabCredentials',
    'LoginResult',
    'StatusData',
]


# =============================================================================
# Base Configuration
# =============================================================================


class GeotabModelBase(BaseModel):
    """
    Base class for all MyGeotab response models.

    Configuration:
        - extra='ignore': Silently ignore unknown fields from API.
        - populate_by_name=True: Allow both alias (camelCase) and field name.
        - str_strip_whitespace=True: Trim whitespace from strings.
    """

    model_config = ConfigDict(
        extra='ignore',
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class EntityReference(GeotabModelBase):
    """Reference to another entity, e.g. the device a status record belongs to."""

    id: str


# =============================================================================
# Authentication
# =============================================================================


class GeotabCredentials(GeotabModelBase):
    """Session credentials returned by Authenticate and sent with every call."""

    database: str
    user_name: str = Field(alias='userName')
    session_id: str = Field(alias='sessionId')

    def to_payload(self) -> dict[str, str]:
        """Credentials in the shape the API expects inside `params`."""
        return {
            'database': self.database,
            'userName': self.user_name,
            'sessionId': self.session_id,
        }


class LoginResult(GeotabModelBase):
    """
    Result of the Authenticate method.

    Attributes:
        credentials: Session credentials for subsequent calls.
        path: 'ThisServer' when the database lives on the server that was
            called, otherwise the host name to use from now on.
    """

    credentials: GeotabCredentials
    path: str = 'ThisServer'


# =============================================================================
# Entities
# =============================================================================


class Device(GeotabModelBase):
    """
    A telematics device installed in a vehicle.

    `vehicleIdentificationNumber` is only present on GO devices; other
    device types omit it.
    """

    id: str
    name: str = ''
    vehicle_identification_number: str | None = Field(
        default=None, alias='vehicleIdentificationNumber'
    )

    def to_entity(self) -> VehicleEntity:
        """Convert to the backend-neutral entity model."""
        return VehicleEntity(
            id=self.id,
            name=self.name,
            vin=self.vehicle_identification_number,
        )


class DeviceStatusInfo(GeotabModelBase):
    """Current status of a device; only the position fields are requested."""

    device: EntityReference | None = None
    latitude: float | None = None
    longitude: float | None = None
    date_time: datetime | None = Field(default=None, alias='dateTime')

    def to_sample(self, fallback_device_id: str) -> PositionSample | None:
        """
        Convert to a position sample.

        Args:
            fallback_device_id: Device the call was issued for, used when the
                record carries no device reference of its own.

        Returns:
            PositionSample, or None when either coordinate is missing.
        """
        if self.latitude is None or self.longitude is None:
            return None
        device_id: str = self.device.id if self.device else fallback_device_id
        return PositionSample(
            device_id=device_id,
            latitude=self.latitude,
            longitude=self.longitude,
            date_time=self.date_time,
        )


class StatusData(GeotabModelBase):
    """A diagnostic reading; used here for the odometer diagnostic."""

    device: EntityReference | None = None
    data: float | None = None
    date_time: datetime | None = Field(default=None, alias='dateTime')

    def to_sample(self, fallback_device_id: str) -> OdometerSample | None:
        """
        Convert to an odometer sample.

        Args:
            fallback_device_id: Device the call was issued for, used when the
                record carries no device reference of its own.

        Returns:
            OdometerSample, or None when the reading is missing.
        """
        if self.data is None:
            return None
        device_id: str = self.device.id if self.device else fallback_device_id
        return OdometerSample(device_id=device_id, odometer=self.data)
