"""Waiting for long-running provider operations to reach a terminal state.

An update call returns immediately with an operation handle; the provider
then moves the operation through InProgress to a terminal status. The waiter
polls the status on a fixed interval until one of:

- the status equals the success value (returns the status)
- the status is one of the failure values (raises OperationFailedError)
- the deadline passes (raises OperationTimeoutError)
- describe() raises (the error propagates unchanged, no retry here)

TIMING:
Each iteration sleeps min(interval, time_left) and then runs describe() against
a deadline timer from the same clock, so the deadline fires even when a status
call never returns.
Deadline latency is therefore at most one interval and polling never spins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class WaitState(str, Enum):
    """States of a single wait call. Everything but PENDING is terminal."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class WaitError(Exception):
    """Base class for waiter failures."""

    pass


class OperationFailedError(WaitError):
    """Raised when the operation reaches a known failure status."""

    def __init__(self, resource: str, status: str, operation_id: str | None = None) -> None:
        self.resource = resource
        self.status = status
        self.operation_id = operation_id
        detail = f" (operation {operation_id})" if operation_id else ""
        super().__init__(f'operation on "{resource}"{detail} finished with status "{status}"')


class OperationTimeoutError(WaitError, TimeoutError):
    """Raised when the deadline passes before a terminal status is observed."""

    def __init__(self, resource: str, elapsed_seconds: float) -> None:
        self.resource = resource
        self.elapsed_seconds = elapsed_seconds
        super().__init__(f'timed out waiting for "{resource}" after {elapsed_seconds:.1f}s')


class Clock(Protocol):
    """Source of monotonic time and suspension, injectable for tests."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Clock backed by time.monotonic and asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class OperationWaiter:
    """Poll a status function until success, failure or deadline.

    The waiter keeps no state between calls; one instance can serve many
    concurrent waits.
    """

    def __init__(
        self,
        interval_seconds: float,
        timeout_seconds: float,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the waiter.

        Args:
            interval_seconds: Time between status polls.
            timeout_seconds: Hard deadline for one wait call.
            clock: Time source, defaults to the system clock.

        Raises:
            ValueError: If interval or timeout is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval must be positive: {interval_seconds}")
        if timeout_seconds <= 0:
            raise ValueError(f"timeout must be positive: {timeout_seconds}")

        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._clock: Clock = clock or SystemClock()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def wait(
        self,
        describe: Callable[[], Awaitable[str]],
        *,
        success: str,
        failures: Collection[str],
        resource: str,
        operation_id: str | None = None,
        message: str | None = None,
    ) -> str:
        """Block until the described operation is terminal.

        Args:
            describe: Coroutine function returning the current status.
            success: Status value meaning the operation succeeded.
            failures: Status values meaning the operation failed.
            resource: Name used in errors and logs (e.g. the cluster name).
            operation_id: Optional operation id included in failure errors.
            message: Optional human-readable description logged once.

        Returns:
            The success status.

        Raises:
            OperationFailedError: If a failure status is observed.
            OperationTimeoutError: If the deadline passes first.
            Exception: Anything describe() raises, unchanged.
        """
        start = self._clock.monotonic()
        deadline = start + self._timeout

        if message:
            logger.info(message, extra={"resource": resource, "operation_id": operation_id})

        state = WaitState.PENDING
        status = ""
        while state is WaitState.PENDING:
            state, status = await self._poll_once(describe, deadline, success, failures)
            if state is WaitState.PENDING:
                logger.debug(
                    "Operation not yet terminal",
                    extra={"resource": resource, "operation_id": operation_id, "status": status},
                )

        match state:
            case WaitState.SUCCEEDED:
                return success
            case WaitState.FAILED:
                raise OperationFailedError(resource, status, operation_id)

        elapsed = self._clock.monotonic() - start
        logger.error(
            "Timed out waiting for operation",
            extra={
                "resource": resource,
                "operation_id": operation_id,
                "elapsed_seconds": round(elapsed, 2),
            },
        )
        raise OperationTimeoutError(resource, elapsed)

    async def _poll_once(
        self,
        describe: Callable[[], Awaitable[str]],
        deadline: float,
        success: str,
        failures: Collection[str],
    ) -> tuple[WaitState, str]:
        """Wait for the next tick or the deadline, whichever comes first, then poll.

        The poll races a deadline timer taken from the clock. The loser is
        cancelled and awaited before returning.
        """
        remaining = deadline - self._clock.monotonic()
        if remaining <= 0:
            return WaitState.TIMED_OUT, ""

        await self._clock.sleep(min(self._interval, remaining))

        remaining = deadline - self._clock.monotonic()
        if remaining <= 0:
            return WaitState.TIMED_OUT, ""

        poll = asyncio.ensure_future(describe())
        timer = asyncio.ensure_future(self._clock.sleep(remaining))
        try:
            await asyncio.wait({poll, timer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (poll, timer):
                if not pending.done():
                    pending.cancel()
            await asyncio.gather(poll, timer, return_exceptions=True)

        if poll.cancelled():
            return WaitState.TIMED_OUT, ""

        status = poll.result()
        if status == success:
            return WaitState.SUCCEEDED, status
        if status in failures:
            return WaitState.FAILED, status
        return WaitState.PENDING, status
