"""Composable units of work for multi-step control plane updates.

A Task is a named coroutine that either completes or raises exactly one error.
A TaskTree is itself a Task holding child tasks that run either serially or in
parallel:

- serial: children run strictly in order, the first failure stops the tree and
  later children never start
- parallel: all children start together and every child runs to completion;
  the first failure in completion order is raised once all have finished;
  cancelling the tree cancels and awaits every child still running

COMPLETION SIGNAL:
Task.start() schedules the task and returns its asyncio.Task. done() tells a
running task from a finished one and exception() tells a clean finish from a
failure. asyncio delivers that outcome exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TaskFailure(Exception):
    """Raised by a TaskTree when one of its children fails.

    Attributes:
        task: Description of the failing leaf task.
        error: The exception the task raised (also set as __cause__).
    """

    def __init__(self, task: str, error: Exception) -> None:
        self.task = task
        self.error = error
        super().__init__(f"task {task!r} failed: {error}")


class Task(ABC):
    """A unit of work with a single outcome."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description for logs and plans."""

    @abstractmethod
    async def run(self) -> None:
        """Execute the task, raising on failure."""

    def start(self) -> asyncio.Task[None]:
        """Schedule the task and return its completion handle."""
        return asyncio.ensure_future(self.run())


class FunctionTask(Task):
    """Leaf task wrapping a coroutine function."""

    def __init__(self, info: str, call: Callable[[], Awaitable[object]]) -> None:
        self._info = info
        self._call = call

    def describe(self) -> str:
        return self._info

    async def run(self) -> None:
        await self._call()


class TaskTree(Task):
    """Ordered or concurrent group of tasks with one aggregate outcome."""

    def __init__(self, *, parallel: bool = False, tasks: list[Task] | None = None) -> None:
        self.parallel = parallel
        self.tasks: list[Task] = list(tasks or [])

    def __len__(self) -> int:
        return len(self.tasks)

    def append(self, *tasks: Task) -> None:
        """Add child tasks."""
        self.tasks.extend(tasks)

    def describe(self) -> str:
        """Describe the tree, e.g. '2 sequential tasks: { a, b }'."""
        if not self.tasks:
            return "no tasks"

        children = ", ".join(t.describe() for t in self.tasks)
        if len(self.tasks) == 1:
            return f"1 task: {{ {children} }}"

        mode = "parallel" if self.parallel else "sequential"
        return f"{len(self.tasks)} {mode} tasks: {{ {children} }}"

    async def run(self) -> None:
        """Run children serially or in parallel.

        Raises:
            TaskFailure: For the first failing child.
        """
        if not self.tasks:
            return

        if self.parallel:
            await self._run_parallel()
        else:
            await self._run_serial()

    async def _run_serial(self) -> None:
        for task in self.tasks:
            try:
                await task.run()
            except Exception as e:
                failure = _as_failure(task, e)
                raise failure from failure.error

    async def _run_parallel(self) -> None:
        async def run_child(task: Task) -> tuple[Task, Exception | None]:
            try:
                await task.run()
            except Exception as e:
                return task, e
            return task, None

        children = [asyncio.ensure_future(run_child(t)) for t in self.tasks]
        first_failure: TaskFailure | None = None
        try:
            for completed in asyncio.as_completed(children):
                task, error = await completed
                if error is None:
                    continue
                if first_failure is None:
                    first_failure = _as_failure(task, error)
                else:
                    logger.warning(
                        "Additional parallel task failure",
                        extra={"task": task.describe(), "error": str(error)},
                    )
        finally:
            # children never outlive the tree
            for child in children:
                child.cancel()
            await asyncio.gather(*children, return_exceptions=True)

        if first_failure is not None:
            raise first_failure from first_failure.error


def _as_failure(task: Task, error: Exception) -> TaskFailure:
    if isinstance(error, TaskFailure):
        return error
    description = task.describe()
    logger.error(
        "Task failed",
        extra={"task": description, "error": str(error), "error_type": type(error).__name__},
    )
    return TaskFailure(description, error)

