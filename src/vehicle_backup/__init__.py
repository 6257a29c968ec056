# vehicle_backup/__init__.py
"""
Vehicle Backup - periodic MyGeotab vehicle snapshot writer.

Every poll cycle lists the vehicles of a MyGeotab database, fetches each
vehicle's last known position and latest odometer reading in one batched
request, joins them into one snapshot per vehicle and appends the snapshot
as a CSV line to `VehiclesBackup/<vehicle id>.csv`.

Quick Start - Command Line:
    $ vehicle-backup my.geotab.com G560 user@example.com secret

Quick Start - Library:
    >>> from vehicle_backup import (
    ...     CancellationToken, GeotabSession, PollCycleRunner, SnapshotWriter
    ... )
    >>> from vehicle_backup.config import resolve_config
    >>>
    >>> config = resolve_config()
    >>> async with GeotabSession(host, database, user, password) as session:
    ...     await session.authenticate()
    ...     runner = PollCycleRunner(session, SnapshotWriter(config.storage))
    ...     summary = await runner.run_forever(CancellationToken(), max_cycles=1)

Features:
    - Two backend round trips per cycle regardless of fleet size
    - Rate-limit backoff and transient-error retry, decided by error kind
    - Cooperative cancellation from Enter, SIGINT or SIGTERM
    - Durable, bounded-concurrency appends isolated per vehicle
"""

__version__ = '0.1.0'

from vehicle_backup.cancellation import (
    CancellationToken,
    OperationCancelledError,
    OperatorInterruptListener,
)
from vehicle_backup.client import (
    AuthenticationError,
    ErrorKind,
    GeotabError,
    GeotabSession,
)
from vehicle_backup.common import SnapshotWriter, WriteReport, setup_logger
from vehicle_backup.config import load_config, resolve_config
from vehicle_backup.operations import fetch_vehicle_records, join_snapshots
from vehicle_backup.pipeline import PollCycleRunner, RunOutcome, RunSummary

__all__: list[str] = [
    'AuthenticationError',
    'CancellationToken',
    'ErrorKind',
    'GeotabError',
    'GeotabSession',
    'OperationCancelledError',
    'OperatorInterruptListener',
    'PollCycleRunner',
    'RunOutcome',
    'RunSummary',
    'SnapshotWriter',
    'WriteReport',
    '__version__',
    'fetch_vehicle_records',
    'join_snapshots',
    'load_config',
    'resolve_config',
    'setup_logger',
]
