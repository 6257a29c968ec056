# vehicle_backup/common/file_io.py
"""
Per-vehicle append-only snapshot files.

Each vehicle's snapshots go to `<output_directory>/<vehicle id>.csv`, one
line per cycle, never rewritten.

Design Philosophy:
------------------
- write() raises on errors (the caller decides what a failure means)
- write_all() never raises: one vehicle's failure is logged and counted,
  the other vehicles are still written
- Every line is flushed and fsync'ed before write() returns
- Blocking file I/O runs in worker threads via asyncio.to_thread()

Concurrency:
------------
Different vehicles are written concurrently, bounded by
`storage.max_concurrent_writes`. Writes to the same file are serialized by a
per-path asyncio.Lock so lines never interleave, even if two batches
overlap. The lock table belongs to one SnapshotWriter and holds locks weakly,
so vehicles that leave the fleet do not keep theirs; use a single writer
per output directory.

Usage:
------
    from vehicle_backup.config import StorageConfig
    from vehicle_backup.common.file_io import SnapshotWriter

    writer = SnapshotWriter(StorageConfig(output_directory='VehiclesBackup'))
    report = await writer.write_all(snapshots)
"""

import asyncio
import logging
import os
import weakref
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vehicle_backup.cancellation import CancellationToken
from vehicle_backup.config import StorageConfig
from vehicle_backup.models import VehicleSnapshot
from vehicle_backup.schema import SNAPSHOT_FILE_SUFFIX, format_snapshot_line

__all__: list[str] = ['SnapshotWriter', 'WriteReport']

logger: logging.Logger = logging.getLogger(__name__)


class WriteReport(BaseModel):
    """
    Outcome of one write_all() batch.

    Attributes:
        written: Vehicle ids whose line was appended.
        failed: Vehicle id to the error that prevented the append.
        skipped: Vehicle ids not attempted because cancellation was requested.
    """

    model_config = ConfigDict(extra='forbid', arbitrary_types_allowed=True)

    written: list[str] = Field(default_factory=list)
    failed: dict[str, Exception] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.written) + len(self.failed) + len(self.skipped)


class SnapshotWriter:
    """
    Appends snapshot lines to one file per vehicle.

    Attributes:
        output_directory: Directory holding the snapshot files (read-only).
    """

    def __init__(self, storage_config: StorageConfig) -> None:
        """
        Initialize the writer.

        The output directory is (re)created before every write, so a
        directory removed while the program runs comes back on the next cycle.

        Args:
            storage_config: Output directory and concurrency limit.
        """
        self._storage_config: StorageConfig = storage_config
        self._path_locks: weakref.WeakValueDictionary[Path, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        logger.debug(
            'Initialized SnapshotWriter: directory=%r, max_concurrent_writes=%d',
            str(storage_config.output_directory),
            storage_config.max_concurrent_writes,
        )

    @property
    def output_directory(self) -> Path:
        """Directory holding the snapshot files."""
        return self._storage_config.output_directory

    def snapshot_path(self, vehicle_id: str) -> Path:
        """
        Resolve the snapshot file of one vehicle.

        Raises:
            ValueError: If the id is empty or would escape the output directory.
        """
        if (
            not vehicle_id
            or vehicle_id in {'.', '..'}
            or '/' in vehicle_id
            or '\\' in vehicle_id
            or '\x00' in vehicle_id
        ):
            raise ValueError(f'Vehicle id cannot be used as a file name: {vehicle_id!r}')
        return self.output_directory / f'{vehicle_id}{SNAPSHOT_FILE_SUFFIX}'

    def _ensure_directory(self) -> None:
        # exist_ok tolerates a directory created concurrently by someone else
        self.output_directory.mkdir(parents=True, exist_ok=True)

    def _lock_for(self, path: Path) -> asyncio.Lock:
        lock: asyncio.Lock | None = self._path_locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._path_locks[path] = lock
        return lock

    @staticmethod
    def _append_line(path: Path, line: str) -> None:
        """Append one line and make it durable. Runs in a worker thread."""
        with path.open('a', encoding='utf-8', newline='') as snapshot_file:
            snapshot_file.write(f'{line}\n')
            snapshot_file.flush()
            os.fsync(snapshot_file.fileno())

    async def write(self, snapshot: VehicleSnapshot) -> Path:
        """
        Append one snapshot to its vehicle's file.

        Args:
            snapshot: Snapshot to persist.

        Returns:
            Path of the file that was appended to.

        Raises:
            ValueError: If the vehicle id is not usable as a file name.
            OSError: File system errors (permissions, disk full, etc).
        """
        path: Path = self.snapshot_path(snapshot.id)
        line: str = format_snapshot_line(snapshot)

        await asyncio.to_thread(self._ensure_directory)

        async with self._lock_for(path):
            await asyncio.to_thread(self._append_line, path, line)

        logger.debug('Appended snapshot for %r to %s', snapshot.id, path)
        return path

    async def write_all(
        self,
        snapshots: Sequence[VehicleSnapshot],
        cancel_token: CancellationToken | None = None,
    ) -> WriteReport:
        """
        Append every snapshot, concurrently across vehicles.

        Waits until every write has settled. Failures are isolated per
        vehicle and not retried. Once `cancel_token` is cancelled, writes
        that have not started yet are skipped; writes already in progress
        complete so no file is left with a partial line.

        Args:
            snapshots: Snapshots of one cycle.
            cancel_token: Optional token checked before each write starts.

        Returns:
            WriteReport describing which vehicles were written, failed or skipped.
        """
        report = WriteReport()
        if not snapshots:
            return report

        limiter = asyncio.Semaphore(self._storage_config.max_concurrent_writes)

        async def _write_one(snapshot: VehicleSnapshot) -> None:
            async with limiter:
                if cancel_token is not None and cancel_token.cancelled:
                    report.skipped.append(snapshot.id)
                    return
                try:
                    await self.write(snapshot)
                except (OSError, ValueError) as write_error:
                    logger.error(
                        'Failed to write snapshot for vehicle %r: %s',
                        snapshot.id,
                        write_error,
                    )
                    report.failed[snapshot.id] = write_error
                else:
                    report.written.append(snapshot.id)

        await asyncio.gather(*(_write_one(snapshot) for snapshot in snapshots))

        if report.failed or report.skipped:
            logger.warning(
                'Snapshot batch: %d written, %d failed, %d skipped',
                len(report.written),
                len(report.failed),
                len(report.skipped),
            )
        else:
            logger.info(
                'Wrote %d vehicle snapshots to %s',
                len(report.written),
                self.output_directory,
            )

        return report
