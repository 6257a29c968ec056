# vehicle_backup/cancellation.py
"""
Cooperative cancellation for the poll loop.

A CancellationToken is created once per run and handed explicitly to every
component that suspends: backend calls are raced against it, waits between
cycles end early when it fires, and queued file writes are skipped once it
is set. Nothing reads a global flag.

Two producers can set the token:
    - OperatorInterruptListener, when the operator presses Enter (or stdin
      reaches EOF).
    - SIGINT / SIGTERM, where the event loop supports signal handlers.

`race_until_first_completes` runs the poll loop against the listener and
returns as soon as either finishes, cancelling the token so the other side
winds down.
"""

import asyncio
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Awaitable, Coroutine
from enum import Enum
from typing import Any, TextIO, TypeVar

ResultT = TypeVar('ResultT')

__all__: list[str] = [
    'CancellationToken',
    'FirstCompleted',
    'OperationCancelledError',
    'OperatorInterruptListener',
    'install_signal_handlers',
    'race_until_first_completes',
]

logger: logging.Logger = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Raised by CancellationToken.guard() when the token fires first."""


class CancellationToken:
    """
    Broadcast stop signal, settable once, observable by any number of waiters.

    `cancel()` never blocks and is idempotent; only the first reason is kept.
    Must be cancelled from the event loop thread; other threads should go
    through `loop.call_soon_threadsafe(token.cancel, reason)`.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled, or None if it has not been."""
        return self._reason

    def cancel(self, reason: str = 'cancelled') -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug('Cancellation requested: %s', reason)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Wait for `seconds` unless cancelled first.

        Returns:
            True if the token was cancelled before the delay elapsed.
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def guard(self, awaitable: Awaitable[ResultT]) -> ResultT:
        """
        Await `awaitable` unless the token fires first.

        The awaitable runs as its own task; if the token wins the race that
        task is cancelled and awaited before returning.

        Raises:
            OperationCancelledError: If the token was or became cancelled
                before the awaitable completed.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(self._reason or 'cancelled')

        operation: asyncio.Future[ResultT] = asyncio.ensure_future(awaitable)
        stop_waiter: asyncio.Task[Any] = asyncio.ensure_future(self._event.wait())

        try:
            await asyncio.wait(
                {operation, stop_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()
            if not operation.done():
                operation.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await operation

        if operation.done() and not operation.cancelled():
            return operation.result()

        raise OperationCancelledError(self._reason or 'cancelled')


class OperatorInterruptListener:
    """
    Waits for the operator to press Enter, then cancels the token.

    The blocking read runs in a daemon thread so an unread stdin never keeps
    the interpreter alive after the poll loop has stopped.
    """

    def __init__(
        self,
        token: CancellationToken,
        stream: TextIO | None = None,
    ) -> None:
        self._token: CancellationToken = token
        self._stream: TextIO = stream if stream is not None else sys.stdin

    async def wait(self) -> None:
        """Return once a line (or EOF) was read; the token is then cancelled."""
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        line_read: asyncio.Future[None] = loop.create_future()

        def _resolve() -> None:
            if not line_read.done():
                line_read.set_result(None)

        def _read_line() -> None:
            try:
                self._stream.readline()
            except (OSError, ValueError) as error:
                logger.debug('Operator input unavailable: %s', error)
            finally:
                # The loop may already be closed if the poll loop won the race.
                with contextlib.suppress(RuntimeError):
                    loop.call_soon_threadsafe(_resolve)

        threading.Thread(
            target=_read_line,
            name='operator-interrupt',
            daemon=True,
        ).start()

        try:
            await line_read
            logger.info('Finishing the program...')
        finally:
            self._token.cancel('operator interrupt')


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel the token on SIGINT/SIGTERM where the loop supports it."""
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    for signal_number in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                signal_number, token.cancel, f'signal {signal_number.name}'
            )
        except (NotImplementedError, RuntimeError):
            logger.debug('Signal handler for %s not supported', signal_number.name)


class FirstCompleted(str, Enum):
    """Which of the two top-level tasks ended the run."""

    RUNNER = 'runner'
    OPERATOR = 'operator'


async def race_until_first_completes(
    runner: Coroutine[Any, Any, Any],
    listener: OperatorInterruptListener,
    token: CancellationToken,
) -> FirstCompleted:
    """
    Run the poll loop and the operator listener; stop at the first to finish.

    Whichever finishes first, the token is cancelled and the other task is
    wound down before returning: the runner observes the token at its next
    suspension point, the listener is simply cancelled.

    Returns:
        Which task finished first.
    """
    runner_task: asyncio.Task[Any] = asyncio.create_task(runner, name='poll-runner')
    listener_task: asyncio.Task[None] = asyncio.create_task(
        listener.wait(), name='operator-listener'
    )

    done: set[asyncio.Task[Any]]
    done, _ = await asyncio.wait(
        {runner_task, listener_task},
        return_when=asyncio.FIRST_COMPLETED,
    )
    first: FirstCompleted = (
        FirstCompleted.RUNNER if runner_task in done else FirstCompleted.OPERATOR
    )

    token.cancel(f'{first.value} finished')

    if not listener_task.done():
        listener_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await listener_task

    # The runner returns on its own once it sees the token.
    await runner_task

    return first
