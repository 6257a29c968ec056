# vehicle_backup/pipeline.py
"""
Poll loop: fetch, join and write vehicle snapshots until told to stop.

Usage:
------
    from vehicle_backup.pipeline import PollCycleRunner

    runner = PollCycleRunner(session, SnapshotWriter(config.storage), config.polling)
    summary = await runner.run_forever(token)

Design Decisions:
-----------------
- Strict cycle ordering: the fetch completes before the join, the join
  before any write, and every write of a cycle settles before the next
  fetch starts. Cycles never overlap.

- Error handling by table: any exception escaping a cycle is classified
  into an ErrorKind (see vehicle_backup.client) and ERROR_POLICIES decides
  whether the loop retries after the normal interval, backs off for the
  rate-limit delay, or stops. Nothing is decided by exception subclass.

- run_forever() never raises. It logs and returns a RunSummary describing
  why it stopped.

- Cancellation is observed before every fetch, during both backend
  requests, before each queued file write and during every wait.
"""

import logging
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from vehicle_backup.cancellation import CancellationToken, OperationCancelledError
from vehicle_backup.client import ErrorKind, GeotabError
from vehicle_backup.common import SnapshotWriter, WriteReport
from vehicle_backup.config import PollingConfig
from vehicle_backup.models import VehicleSnapshot
from vehicle_backup.operations import (
    BackendSession,
    FetchResult,
    fetch_vehicle_records,
    join_snapshots,
)

__all__: list[str] = [
    'ERROR_POLICIES',
    'CycleResult',
    'PolicyAction',
    'PollCycleRunner',
    'RunOutcome',
    'RunSummary',
    'RunnerState',
    'classify_error',
]

logger: logging.Logger = logging.getLogger(__name__)


# =============================================================================
# States, Outcomes and Error Policies
# =============================================================================


class RunnerState(str, Enum):
    """Where the poll loop currently is."""

    IDLE = 'idle'
    FETCHING = 'fetching'
    JOINING = 'joining'
    WRITING = 'writing'
    WAITING = 'waiting'
    STOPPED = 'stopped'


class PolicyAction(str, Enum):
    """What the loop does after a failed cycle."""

    RETRY = 'retry'  # wait the normal interval, then run the next cycle
    BACKOFF = 'backoff'  # wait the rate-limit delay, then run the next cycle
    STOP = 'stop'  # report and end the loop
    STOP_CLEAN = 'stop_clean'  # end the loop without reporting an error


ERROR_POLICIES: Final[dict[ErrorKind, PolicyAction]] = {
    ErrorKind.INVALID_CREDENTIALS: PolicyAction.STOP,
    ErrorKind.BACKEND_UNAVAILABLE: PolicyAction.STOP,
    ErrorKind.RATE_LIMITED: PolicyAction.BACKOFF,
    ErrorKind.INVALID_OPERATION: PolicyAction.STOP,
    ErrorKind.TRANSIENT: PolicyAction.RETRY,
    ErrorKind.CANCELLED: PolicyAction.STOP_CLEAN,
    ErrorKind.UNCLASSIFIED: PolicyAction.STOP,
}


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception raised by a cycle to its ErrorKind."""
    if isinstance(error, OperationCancelledError):
        return ErrorKind.CANCELLED
    if isinstance(error, GeotabError):
        return error.kind
    return ErrorKind.UNCLASSIFIED


class RunOutcome(str, Enum):
    """Why run_forever() returned."""

    CANCELLED = 'cancelled'
    FAILED = 'failed'
    COMPLETED = 'completed'  # max_cycles reached


class CycleResult(BaseModel):
    """Summary of one successful cycle."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    snapshots: list[VehicleSnapshot]
    write_report: WriteReport
    duration_seconds: float


class RunSummary(BaseModel):
    """
    Result of run_forever().

    Attributes:
        outcome: Why the loop stopped.
        cycles_completed: Cycles that reached the end of their write step.
        error_kind: Kind of the error that stopped the loop, if any.
        error: The error that stopped the loop, if any.
        recovered_errors: Kinds of errors the loop recovered from, in order.
    """

    model_config = ConfigDict(extra='forbid', arbitrary_types_allowed=True)

    outcome: RunOutcome
    cycles_completed: int = 0
    error_kind: ErrorKind | None = None
    error: BaseException | None = None
    recovered_errors: list[ErrorKind] = Field(default_factory=list)


# =============================================================================
# Runner
# =============================================================================


class PollCycleRunner:
    """
    Runs fetch, join and write cycles against one authenticated session.

    Attributes:
        state: Current RunnerState (read-only).

    Example:
        token = CancellationToken()
        runner = PollCycleRunner(session, writer, PollingConfig())
        summary = await runner.run_forever(token)
        print(summary.outcome, summary.cycles_completed)
    """

    def __init__(
        self,
        session: BackendSession,
        writer: SnapshotWriter,
        polling_config: PollingConfig | None = None,
    ) -> None:
        self._session: BackendSession = session
        self._writer: SnapshotWriter = writer
        self._polling_config: PollingConfig = polling_config or PollingConfig()
        self._state: RunnerState = RunnerState.IDLE

    @property
    def state(self) -> RunnerState:
        return self._state

    async def run_cycle(self, cancel_token: CancellationToken) -> CycleResult:
        """
        Run one fetch, join and write pass.

        Args:
            cancel_token: Raced against both backend requests and checked
                before each queued write.

        Returns:
            CycleResult with the snapshots and the write report.

        Raises:
            GeotabError: Classified backend failure during the fetch.
            OperationCancelledError: If cancelled during the fetch.
        """
        cycle_start: float = time.monotonic()

        self._state = RunnerState.FETCHING
        fetched: FetchResult = await fetch_vehicle_records(
            self._session, cancel_token
        )

        self._state = RunnerState.JOINING
        snapshots: list[VehicleSnapshot] = join_snapshots(
            fetched.entities,
            fetched.positions,
            fetched.odometers,
            captured_at=datetime.now(UTC),
        )

        self._state = RunnerState.WRITING
        write_report: WriteReport = await self._writer.write_all(
            snapshots, cancel_token
        )

        return CycleResult(
            snapshots=snapshots,
            write_report=write_report,
            duration_seconds=time.monotonic() - cycle_start,
        )

    async def _wait(self, seconds: float, cancel_token: CancellationToken) -> bool:
        """Wait between cycles. Returns True if cancelled meanwhile."""
        self._state = RunnerState.WAITING
        return await cancel_token.sleep(seconds)

    async def run_forever(
        self,
        cancel_token: CancellationToken,
        max_cycles: int | None = None,
    ) -> RunSummary:
        """
        Loop over cycles until cancelled, a fatal error occurs, or
        `max_cycles` successful cycles have run.

        Never raises for errors raised by a cycle; they are classified,
        logged and either recovered from or turned into the returned summary.

        Args:
            cancel_token: Stop signal.
            max_cycles: Optional number of successful cycles after which the
                loop ends with RunOutcome.COMPLETED.

        Returns:
            RunSummary describing why the loop stopped.
        """
        interval: float = self._polling_config.interval_seconds
        backoff: float = self._polling_config.rate_limit_backoff_seconds
        summary = RunSummary(outcome=RunOutcome.CANCELLED)

        logger.info('Starting vehicle backup loop (interval=%.1fs)', interval)

        try:
            while not cancel_token.cancelled:
                try:
                    cycle: CycleResult = await self.run_cycle(cancel_token)
                except Exception as error:
                    kind: ErrorKind = classify_error(error)
                    action: PolicyAction = ERROR_POLICIES[kind]

                    if action is PolicyAction.STOP_CLEAN:
                        break

                    if action is PolicyAction.STOP:
                        if kind is ErrorKind.UNCLASSIFIED:
                            logger.exception('Unexpected error, stopping backup')
                        else:
                            logger.error('Stopping backup (%s): %s', kind.value, error)
                        summary.outcome = RunOutcome.FAILED
                        summary.error_kind = kind
                        summary.error = error
                        break

                    summary.recovered_errors.append(kind)

                    if action is PolicyAction.BACKOFF:
                        logger.warning(
                            'Query limit exceeded, retrying after %.0fs: %s',
                            backoff,
                            error,
                        )
                        if await self._wait(backoff, cancel_token):
                            break
                        logger.info('Restarting backup...')
                    else:
                        logger.warning(
                            'Transient backend error, retrying after %.0fs: %s',
                            interval,
                            error,
                        )
                        if await self._wait(interval, cancel_token):
                            break
                    continue

                summary.cycles_completed += 1
                logger.info(
                    'Cycle %d complete: %d vehicles, %d written, %d failed in %.2fs',
                    summary.cycles_completed,
                    len(cycle.snapshots),
                    len(cycle.write_report.written),
                    len(cycle.write_report.failed),
                    cycle.duration_seconds,
                )

                if max_cycles is not None and summary.cycles_completed >= max_cycles:
                    summary.outcome = RunOutcome.COMPLETED
                    break

                if await self._wait(interval, cancel_token):
                    break
        finally:
            self._state = RunnerState.STOPPED

        logger.info(
            'Vehicle backup loop stopped: %s after %d cycle(s)',
            summary.outcome.value,
            summary.cycles_completed,
        )
        return summary
