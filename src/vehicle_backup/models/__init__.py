# vehicle_backup/models/__init__.py

from vehicle_backup.models.geotab_requests import (
    GeotabCall,
    build_device_list_call,
    build_odometer_call,
    build_position_call,
)
from vehicle_backup.models.geotab_responses import (
    Device,
    DeviceStatusInfo,
    EntityReference,
    GeotabCredentials,
    LoginResult,
    StatusData,
)
from vehicle_backup.models.vehicle_models import (
    OdometerSample,
    PositionSample,
    VehicleEntity,
    VehicleSnapshot,
)

__all__: list[str] = [
    'Device',
    'DeviceStatusInfo',
    'EntityReference',
    'GeotabCall',
    'GeotabCredentials',
    'LoginResult',
    'OdometerSample',
    'PositionSample',
    'StatusData',
    'VehicleEntity',
    'VehicleSnapshot',
    'build_device_list_call',
    'build_odometer_call',
    'build_position_call',
]
