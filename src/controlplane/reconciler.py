"""Control plane logging reconciliation.

This module implements the reconciliation pattern for control plane logging:
1. Expand and validate the declared log types (no network call yet)
2. Fetch the observed enabled/disabled log types from the provider
3. Compare observed and desired enabled sets
4. If they differ, request the update and wait for it to finish
5. Report whether a change was required

Plan mode stops before step 4 and only reports the intended action.
Running the same desired state twice without external changes reports
no change the second time.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .eks import (
    LOGGING_UPDATE_TASK,
    ControlPlaneClient,
    ControlPlaneError,
    ControlPlaneNotActiveError,
    ControlPlaneNotFoundError,
    OperationHandle,
)
from .facilities import (
    SUPPORTED_LOGGING_TYPES,
    ObservedFacilityState,
    UnknownFacilityError,
    describe_types,
    expand_facilities,
    reconcile,
)
from .models import ClusterConfig
from .tasks import FunctionTask, TaskFailure, TaskTree
from .waiter import OperationFailedError, OperationTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoggingChangeSet:
    """Outcome of one logging reconciliation.

    Attributes:
        to_enable: Log types sent as enabled, in declared order.
        to_disable: Log types sent as disabled, in universe order.
        changed: Whether the observed state differed from the desired state.
        applied: Whether the update was sent and reached success.
    """

    to_enable: tuple[str, ...]
    to_disable: tuple[str, ...]
    changed: bool
    applied: bool = False


async def reconcile_logging(
    desired: list[str],
    fetch_observed: Callable[[], Awaitable[ObservedFacilityState]],
    apply_update: Callable[[Sequence[str], Sequence[str]], Awaitable[OperationHandle]],
    await_operation: Callable[[OperationHandle], Awaitable[Any]],
    *,
    universe: Sequence[str] = SUPPORTED_LOGGING_TYPES,
    plan: bool = False,
    build_tasks: Callable[[Callable[[], Awaitable[None]]], TaskTree] | None = None,
) -> LoggingChangeSet:
    """Move the observed log types to the desired ones.

    Args:
        desired: Declared log types, expanded in place.
        fetch_observed: Returns the provider's current enabled/disabled sets.
        apply_update: Sends the update and returns its operation handle.
        await_operation: Blocks until the operation is terminal.
        universe: Ordered set of known log types.
        plan: Only compute the change, never call apply_update.
        build_tasks: Wraps the update in a task tree with sibling updates.
            Defaults to a tree holding only the logging update.

    Returns:
        LoggingChangeSet describing what changed.

    Raises:
        UnknownFacilityError: Before any provider call, for unknown types.
        OperationFailedError: If the update finishes Failed or Cancelled.
        OperationTimeoutError: If the update does not finish in time.
        Exception: Provider errors from fetch_observed/apply_update, unchanged.
    """
    desired[:] = expand_facilities(desired, universe)

    observed = await fetch_observed()
    diff = reconcile(observed, desired, universe)

    if not diff.changed or plan:
        return LoggingChangeSet(
            to_enable=diff.to_enable, to_disable=diff.to_disable, changed=diff.changed
        )

    async def update() -> None:
        handle = await apply_update(diff.to_enable, diff.to_disable)
        await await_operation(handle)

    if build_tasks is None:
        tasks = TaskTree(parallel=False)
        tasks.append(FunctionTask(LOGGING_UPDATE_TASK, update))
    else:
        tasks = build_tasks(update)

    try:
        await tasks.run()
    except TaskFailure as failure:
        raise failure.error from failure

    return LoggingChangeSet(
        to_enable=diff.to_enable, to_disable=diff.to_disable, changed=True, applied=True
    )


@dataclass
class ReconcileResult:
    """Result of a single logging reconciliation."""

    cluster: str
    region: str
    plan: bool = True
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    changed: bool = False
    applied: bool = False
    to_enable: list[str] = field(default_factory=list)
    to_disable: list[str] = field(default_factory=list)
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form for printing."""
        return {
            "cluster": self.cluster,
            "region": self.region,
            "plan": self.plan,
            "changed": self.changed,
            "applied": self.applied,
            "enableTypes": self.to_enable,
            "disableTypes": self.to_disable,
            "durationSeconds": round(self.duration_seconds, 3),
            "error": str(self.error) if self.error else None,
        }


class LoggingReconciler:
    """Reconciles one cluster's control plane logging against its config.

    Errors never escape reconcile(); they are logged and recorded on the
    returned ReconcileResult so callers can map them to exit codes.
    """

    def __init__(
        self,
        cluster_config: ClusterConfig,
        provider: ControlPlaneClient,
        *,
        plan: bool = True,
    ) -> None:
        """Initialize reconciler.

        Args:
            cluster_config: Desired cluster configuration (mutated in place
                when log type wildcards are expanded).
            provider: Control plane client for the cluster's region.
            plan: Only report the intended change.
        """
        self._cluster_config = cluster_config
        self._provider = provider
        self._plan = plan

    @property
    def cluster_config(self) -> ClusterConfig:
        return self._cluster_config

    async def reconcile(self) -> ReconcileResult:
        """Execute a single logging reconciliation.

        Returns:
            ReconcileResult with details of the operation.
        """
        meta = self._cluster_config.metadata
        result = ReconcileResult(cluster=meta.name, region=meta.region, plan=self._plan)

        try:
            # expanded in place by reconcile_logging
            desired = self._cluster_config.ensure_cluster_logging().enable_types

            change_set = await reconcile_logging(
                desired,
                lambda: self._provider.get_current_logging(meta.name),
                lambda enabled, disabled: self._provider.update_logging(
                    meta.name, enabled, disabled
                ),
                lambda handle: self._provider.wait_for_update(meta.name, handle),
                plan=self._plan,
                build_tasks=self._build_tasks,
            )

            result.changed = change_set.changed
            result.applied = change_set.applied
            result.to_enable = list(change_set.to_enable)
            result.to_disable = list(change_set.to_disable)

            if change_set.changed:
                self._log_intended_action(change_set)
                if change_set.applied:
                    logger.info(
                        f'configured CloudWatch logging for cluster "{meta.name}" in '
                        f'"{meta.region}" ({describe_types("enabled", change_set.to_enable)} & '
                        f'{describe_types("disabled", change_set.to_disable)})',
                        extra={"cluster": meta.name, "region": meta.region},
                    )
                else:
                    logger.warning(
                        "no changes were applied, run again with '--approve' to apply the changes"
                    )
            else:
                logger.info(
                    f'CloudWatch logging for cluster "{meta.name}" in "{meta.region}" '
                    "is already up-to-date",
                    extra={"cluster": meta.name, "region": meta.region},
                )

        except UnknownFacilityError as e:
            logger.error("Invalid log type", extra={"cluster": meta.name, "error": str(e)})
            result.error = e
        except ControlPlaneNotFoundError as e:
            logger.error("Cluster not found", extra={"cluster": meta.name, "error": str(e)})
            result.error = e
        except ControlPlaneNotActiveError as e:
            logger.error(
                "Cluster is not active",
                extra={"cluster": meta.name, "status": e.status},
            )
            result.error = e
        except OperationFailedError as e:
            logger.error(
                "Logging update failed",
                extra={
                    "cluster": meta.name,
                    "status": e.status,
                    "operation_id": e.operation_id,
                },
            )
            result.error = e
        except OperationTimeoutError as e:
            logger.error(
                "Logging update timed out",
                extra={"cluster": meta.name, "elapsed_seconds": round(e.elapsed_seconds, 2)},
            )
            result.error = e
        except ControlPlaneError as e:
            logger.error("Provider error", extra={"cluster": meta.name, "error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def _build_tasks(self, update: Callable[[], Awaitable[None]]) -> TaskTree:
        tasks = self._provider.update_cluster_config_tasks(update)
        logger.debug("Running update tasks", extra={"tasks": tasks.describe()})
        return tasks

    def _log_intended_action(self, change_set: LoggingChangeSet) -> None:
        meta = self._cluster_config.metadata
        prefix = "(plan) " if self._plan else ""
        logger.info(
            f'{prefix}update CloudWatch logging for cluster "{meta.name}" in "{meta.region}" '
            f'({describe_types("enable", change_set.to_enable)} & '
            f'{describe_types("disable", change_set.to_disable)})',
            extra={"cluster": meta.name, "region": meta.region, "plan": self._plan},
        )

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "cluster": result.cluster,
            "region": result.region,
            "plan": result.plan,
            "duration_seconds": result.duration_seconds,
            "changed": result.changed,
            "applied": result.applied,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
