"""EKS control plane client.

This module adapts the synchronous boto3 EKS client to the coroutine-based
interface the reconciler consumes:

- describe the control plane and read its logging configuration
- request logging and version updates, returning an operation handle
- poll an update until it is Successful, Failed or Cancelled
- list clusters page by page, in one region or fanned out across regions

SDK calls run in the default executor so that concurrent waits and per-region
listings never block each other. Transport retries are left to botocore.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config
from .enumeration import PartitionedResult, enumerate_partitions, paginate
from .facilities import ObservedFacilityState
from .tasks import FunctionTask, TaskTree
from .waiter import Clock, OperationWaiter

logger = logging.getLogger(__name__)

R = TypeVar("R")

CLUSTER_STATUS_ACTIVE = "ACTIVE"

UPDATE_STATUS_IN_PROGRESS = "InProgress"
UPDATE_STATUS_SUCCESSFUL = "Successful"
UPDATE_STATUS_FAILED = "Failed"
UPDATE_STATUS_CANCELLED = "Cancelled"
UPDATE_FAILURE_STATUSES = frozenset({UPDATE_STATUS_FAILED, UPDATE_STATUS_CANCELLED})

UPDATE_TYPE_LOGGING = "LoggingUpdate"
UPDATE_TYPE_VERSION = "VersionUpdate"

LOGGING_UPDATE_TASK = "update CloudWatch logging configuration"

RESOURCE_NOT_FOUND_CODE = "ResourceNotFoundException"


class ControlPlaneError(Exception):
    """Raised when a provider call fails."""

    pass


class ControlPlaneNotFoundError(ControlPlaneError):
    """Raised when the cluster does not exist."""

    pass


class ControlPlaneNotActiveError(ControlPlaneError):
    """Raised when the control plane exists but is not ACTIVE."""

    def __init__(self, name: str, status: str) -> None:
        self.name = name
        self.status = status
        super().__init__(
            f'status of cluster "{name}" is "{status}", has to be "{CLUSTER_STATUS_ACTIVE}"'
        )


class UnexpectedResponseError(ControlPlaneError):
    """Raised when the provider returns a malformed payload."""

    pass


@dataclass(frozen=True)
class OperationHandle:
    """Identifies one asynchronous provider-side update."""

    id: str
    type: str
    status: str = UPDATE_STATUS_IN_PROGRESS


@dataclass(frozen=True)
class LogSetup:
    """One entry of the control plane logging configuration."""

    types: tuple[str | None, ...]
    enabled: bool


@dataclass(frozen=True)
class ControlPlaneSnapshot:
    """Control plane state as returned by DescribeCluster."""

    name: str
    status: str
    version: str | None = None
    endpoint: str | None = None
    arn: str | None = None
    created_at: datetime | None = None
    logging: tuple[LogSetup, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, cluster: dict[str, Any]) -> ControlPlaneSnapshot:
        """Build a snapshot from a DescribeCluster "cluster" payload."""
        setups = []
        for setup in (cluster.get("logging") or {}).get("clusterLogging") or []:
            setups.append(
                LogSetup(
                    types=tuple(setup.get("types") or ()),
                    enabled=bool(setup.get("enabled")),
                )
            )
        return cls(
            name=cluster.get("name", ""),
            status=cluster.get("status", ""),
            version=cluster.get("version"),
            endpoint=cluster.get("endpoint"),
            arn=cluster.get("arn"),
            created_at=cluster.get("createdAt"),
            logging=tuple(setups),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "version": self.version,
            "endpoint": self.endpoint,
            "arn": self.arn,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class ClusterSummary:
    """A cluster found by listing."""

    name: str
    region: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "region": self.region}


class ControlPlaneClient(Protocol):
    """Provider operations the reconciler depends on."""

    async def describe_control_plane(self, name: str) -> ControlPlaneSnapshot: ...

    async def get_current_logging(self, name: str) -> ObservedFacilityState: ...

    async def update_logging(
        self, name: str, enabled: Sequence[str], disabled: Sequence[str]
    ) -> OperationHandle: ...

    async def describe_update(self, name: str, update_id: str) -> str: ...

    async def wait_for_update(self, name: str, handle: OperationHandle) -> None: ...

    async def list_clusters_page(self, token: str) -> tuple[list[str], str | None]: ...

    def update_cluster_config_tasks(self, update_logging: Callable[[], Any]) -> TaskTree: ...


def observed_logging(snapshot: ControlPlaneSnapshot) -> ObservedFacilityState:
    """Split a snapshot's logging setups into enabled and disabled sets.

    A type reported in both an enabled and a disabled setup counts as enabled,
    so the two sets never overlap.

    Raises:
        UnexpectedResponseError: If a log type is null.
    """
    enabled: set[str] = set()
    disabled: set[str] = set()
    for setup in snapshot.logging:
        for log_type in setup.types:
            if log_type is None:
                raise UnexpectedResponseError("unexpected response from EKS API - nil string")
            if setup.enabled:
                enabled.add(log_type)
            else:
                disabled.add(log_type)
    return ObservedFacilityState(
        enabled=frozenset(enabled), disabled=frozenset(disabled - enabled)
    )


class EKSClusterProvider:
    """ControlPlaneClient implementation backed by boto3.

    The boto3 client and Config are shared read-only by every concurrent
    coroutine using this provider.
    """

    def __init__(
        self,
        config: Config,
        client: Any | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Validated runtime configuration (region, timing, paging).
            client: Optional pre-built boto3 EKS client.
            clock: Optional time source for update waits.
        """
        self._config = config
        self._client = client or boto3.client("eks", region_name=config.region)
        self._clock = clock
        self._regional: dict[str, EKSClusterProvider] = {}
        self._waiter = OperationWaiter(
            interval_seconds=config.poll_interval_seconds,
            timeout_seconds=config.wait_timeout_seconds,
            clock=clock,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def region(self) -> str:
        return self._config.region

    async def for_region(self, region: str) -> EKSClusterProvider:
        """Return a provider with the same settings in another region.

        Regional boto3 clients are built in the executor and cached, so one
        provider per region is shared by every page of a listing.
        """
        if region == self.region:
            return self
        provider = self._regional.get(region)
        if provider is None:
            client = await self._call(
                f'unable to create EKS client for region "{region}"',
                lambda: boto3.client("eks", region_name=region),
            )
            provider = self._regional.setdefault(
                region,
                EKSClusterProvider(
                    self._config.with_overrides(region=region), client=client, clock=self._clock
                ),
            )
        return provider

    async def _call(self, operation: str, call: Callable[[], R]) -> R:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, call)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == RESOURCE_NOT_FOUND_CODE:
                raise ControlPlaneNotFoundError(f"{operation}: {e}") from e
            raise ControlPlaneError(f"{operation}: {e}") from e
        except BotoCoreError as e:
            raise ControlPlaneError(f"{operation}: {e}") from e

    # -------------------------------------------------------------------------
    # Describe
    # -------------------------------------------------------------------------

    async def describe_control_plane(self, name: str) -> ControlPlaneSnapshot:
        """Describe the cluster control plane.

        Raises:
            ControlPlaneNotFoundError: If the cluster does not exist.
            ControlPlaneError: For any other provider error.
        """
        output = await self._call(
            f'unable to describe cluster control plane "{name}"',
            lambda: self._client.describe_cluster(name=name),
        )
        return ControlPlaneSnapshot.from_api(output["cluster"])

    async def describe_control_plane_must_be_active(self, name: str) -> ControlPlaneSnapshot:
        """Describe the control plane and require it to be ACTIVE."""
        snapshot = await self.describe_control_plane(name)
        if snapshot.status != CLUSTER_STATUS_ACTIVE:
            raise ControlPlaneNotActiveError(snapshot.name or name, snapshot.status)
        return snapshot

    async def get_current_logging(self, name: str) -> ObservedFacilityState:
        """Fetch the current logging configuration as enabled/disabled sets."""
        snapshot = await self.describe_control_plane_must_be_active(name)
        return observed_logging(snapshot)

    async def get_cluster(self, name: str) -> ControlPlaneSnapshot:
        """Describe a single cluster for display."""
        snapshot = await self.describe_control_plane(name)
        logger.debug("Described cluster", extra={"cluster": name, "status": snapshot.status})
        return snapshot

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    async def update_logging(
        self, name: str, enabled: Sequence[str], disabled: Sequence[str]
    ) -> OperationHandle:
        """Request a logging update. Types keep the order they are given in."""
        cluster_logging = [
            {"types": list(enabled), "enabled": True},
            {"types": list(disabled), "enabled": False},
        ]
        output = await self._call(
            f'unable to update logging for cluster "{name}"',
            lambda: self._client.update_cluster_config(
                name=name, logging={"clusterLogging": cluster_logging}
            ),
        )
        return _handle_from_api(output)

    async def update_cluster_version(self, name: str, version: str) -> OperationHandle:
        """Request a control plane version update."""
        output = await self._call(
            f'unable to update version of cluster "{name}"',
            lambda: self._client.update_cluster_version(name=name, version=version),
        )
        return _handle_from_api(output)

    async def update_cluster_version_blocking(self, name: str, version: str) -> None:
        """Update the control plane version and wait for it to succeed."""
        handle = await self.update_cluster_version(name, version)
        await self.wait_for_update(name, handle)
        logger.info(
            "Control plane version updated",
            extra={"cluster": name, "region": self.region, "version": version},
        )

    async def describe_update(self, name: str, update_id: str) -> str:
        """Return the current status of an update."""
        output = await self._call(
            f'unable to describe update "{update_id}" of cluster "{name}"',
            lambda: self._client.describe_update(name=name, updateId=update_id),
        )
        status = (output.get("update") or {}).get("status")
        if not status:
            raise UnexpectedResponseError(f'update "{update_id}" has no status')
        return status

    async def wait_for_update(self, name: str, handle: OperationHandle) -> None:
        """Block until the update is Successful.

        Raises:
            OperationFailedError: If the update is Failed or Cancelled.
            OperationTimeoutError: If the wait timeout elapses.
        """
        await self._waiter.wait(
            lambda: self.describe_update(name, handle.id),
            success=UPDATE_STATUS_SUCCESSFUL,
            failures=UPDATE_FAILURE_STATUSES,
            resource=name,
            operation_id=handle.id,
            message=f'waiting for requested "{handle.type}" in cluster "{name}" to succeed',
        )

    def update_cluster_config_tasks(self, update_logging: Callable[[], Any]) -> TaskTree:
        """Build the serial task tree for updating cluster configuration.

        Args:
            update_logging: Coroutine function applying the logging update
                and waiting for it.
        """
        tasks = TaskTree(parallel=False)
        tasks.append(FunctionTask(LOGGING_UPDATE_TASK, update_logging))
        return tasks

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    async def list_clusters_page(self, token: str) -> tuple[list[str], str | None]:
        """Fetch one page of cluster names."""
        kwargs: dict[str, Any] = {"maxResults": self._config.list_chunk_size}
        if token:
            kwargs["nextToken"] = token
        output = await self._call(
            "listing control planes",
            lambda: self._client.list_clusters(**kwargs),
        )
        return list(output.get("clusters") or []), output.get("nextToken")

    async def list_clusters(self) -> list[ClusterSummary]:
        """List every cluster in this provider's region."""
        names = await paginate(self.list_clusters_page)
        return [ClusterSummary(name=n, region=self.region) for n in names]

    async def list_clusters_in_regions(
        self, regions: Sequence[str] | None = None
    ) -> PartitionedResult[ClusterSummary, str]:
        """List clusters in several regions, skipping regions that fail."""

        def list_page_for(region: str) -> Callable[[str], Any]:
            async def list_page(token: str) -> tuple[list[ClusterSummary], str | None]:
                provider = await self.for_region(region)
                names, next_token = await provider.list_clusters_page(token)
                return [ClusterSummary(name=n, region=region) for n in names], next_token

            return list_page

        return await enumerate_partitions(
            regions or self._config.regions,
            list_page_for,
            max_concurrency=self._config.max_partition_concurrency,
        )


def _handle_from_api(output: dict[str, Any]) -> OperationHandle:
    update = output.get("update") or {}
    update_id = update.get("id")
    if not update_id:
        raise UnexpectedResponseError("update response has no id")
    return OperationHandle(
        id=update_id,
        type=update.get("type", ""),
        status=update.get("status", UPDATE_STATUS_IN_PROGRESS),
    )
