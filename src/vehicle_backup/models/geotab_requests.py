# vehicle_backup/models/geotab_requests.py
"""
MyGeotab JSON-RPC call specifications.

A GeotabCall describes one API method invocation without credentials. The
session injects credentials when it sends the call, either on its own or
as one entry of an ExecuteMultiCall batch. Builders for the three calls a
poll cycle needs live here so the fetch logic never hand-assembles JSON.
"""

from datetime import UTC, datetime
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    'DEVICE_TYPE_NAME',
    'ODOMETER_DIAGNOSTIC_ID',
    'STATUS_DATA_TYPE_NAME',
    'STATUS_INFO_TYPE_NAME',
    'GeotabCall',
    'build_device_list_call',
    'build_odometer_call',
    'build_position_call',
]

DEVICE_TYPE_NAME: Final[str] = 'Device'
STATUS_INFO_TYPE_NAME: Final[str] = 'DeviceStatusInfo'
STATUS_DATA_TYPE_NAME: Final[str] = 'StatusData'

# Known diagnostic carrying the odometer value (including manual adjustments).
ODOMETER_DIAGNOSTIC_ID: Final[str] = 'DiagnosticOdometerAdjustmentId'

POSITION_FIELDS: Final[list[str]] = ['device', 'latitude', 'longitude', 'dateTime']
ODOMETER_FIELDS: Final[list[str]] = ['device', 'data', 'dateTime']


class GeotabCall(BaseModel):
    """
    One JSON-RPC method invocation, minus credentials.

    Attributes:
        method: API method name, e.g. 'Get' or 'Authenticate'.
        params: Method parameters in the API's camelCase shape. `typeName`
            is included here for entity calls.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def type_name(self) -> str | None:
        """Entity type the call targets, if any."""
        type_name: Any = self.params.get('typeName')
        return type_name if isinstance(type_name, str) else None

    def to_payload(self, credentials: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Render the call as a JSON-RPC request body.

        Args:
            credentials: Session credentials to embed, or None for calls that
                travel inside an ExecuteMultiCall (the outer call carries them).

        Returns:
            Dictionary ready to be serialized as the request JSON.
        """
        params: dict[str, Any] = dict(self.params)
        if credentials is not None:
            params['credentials'] = credentials
        return {'method': self.method, 'params': params}


def _property_selector(fields: list[str]) -> dict[str, Any]:
    return {'fields': list(fields), 'isIncluded': True}


def build_device_list_call() -> GeotabCall:
    """Get every device visible to the authenticated user."""
    return GeotabCall(method='Get', params={'typeName': DEVICE_TYPE_NAME})


def build_position_call(device_id: str) -> GeotabCall:
    """
    Get the current status info (last known position) of one device.

    Only the fields the join needs are requested, including the device
    reference so each result can be matched back by identifier.
    """
    return GeotabCall(
        method='Get',
        params={
            'typeName': STATUS_INFO_TYPE_NAME,
            'search': {'deviceSearch': {'id': device_id}},
            'propertySelector': _property_selector(POSITION_FIELDS),
        },
    )


def build_odometer_call(device_id: str, as_of: datetime | None = None) -> GeotabCall:
    """
    Get the latest odometer status data of one device.

    Setting fromDate and toDate to the same instant makes the backend return
    the most recent record at or before that instant.

    Args:
        device_id: Device to query.
        as_of: Instant to read the odometer at; defaults to now (UTC).
    """
    instant: datetime = as_of if as_of is not None else datetime.now(UTC)
    instant_text: str = instant.astimezone(UTC).isoformat().replace('+00:00', 'Z')
    return GeotabCall(
        method='Get',
        params={
            'typeName': STATUS_DATA_TYPE_NAME,
            'search': {
                'deviceSearch': {'id': device_id},
                'diagnosticSearch': {'id': ODOMETER_DIAGNOSTIC_ID},
                'fromDate': instant_text,
                'toDate': instant_text,
            },
            'propertySelector': _property_selector(ODOMETER_FIELDS),
        },
    )
