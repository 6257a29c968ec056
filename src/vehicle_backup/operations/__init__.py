# vehicle_backup/operations/__init__.py

from vehicle_backup.operations.fetch_data import (
    BackendSession,
    FetchResult,
    fetch_vehicle_records,
)
from vehicle_backup.operations.join import join_snapshots

__all__: list[str] = [
    'BackendSession',
    'FetchResult',
    'fetch_vehicle_records',
    'join_snapshots',
]
