# vehicle_backup/common/__init__.py

from vehicle_backup.common.file_io import SnapshotWriter, WriteReport
from vehicle_backup.common.logger import setup_logger
from vehicle_backup.common.truststore_context import build_truststore_ssl_context

__all__: list[str] = [
    'SnapshotWriter',
    'WriteReport',
    'build_truststore_ssl_context',
    'setup_logger',
]
