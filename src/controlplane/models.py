"""Pydantic models for the cluster configuration document.

These models provide:
1. Type-safe YAML/JSON parsing
2. Validation at the boundary (fail fast, fail loudly)
3. The declared facility list consumed by the reconciler
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .config import MAX_CLUSTER_NAME_LENGTH
from .facilities import SUPPORTED_LOGGING_TYPES, expand_facilities

API_VERSION = "controlplane.io/v1alpha1"
CLUSTER_CONFIG_KIND = "ClusterConfig"


class ClusterMeta(BaseModel):
    """Cluster identity."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=MAX_CLUSTER_NAME_LENGTH)]
    region: str = ""
    version: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)


class ClusterLogging(BaseModel):
    """Declared control plane log types.

    enable_types may contain the wildcards "all" or "*" until expand() runs.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    enable_types: list[str] = Field(default_factory=list, alias="enableTypes")

    def expand(self) -> None:
        """Expand wildcards in place and validate every type.

        Raises:
            UnknownFacilityError: For the first unknown log type.
        """
        self.enable_types = expand_facilities(self.enable_types, SUPPORTED_LOGGING_TYPES)


class ClusterCloudWatch(BaseModel):
    """CloudWatch settings for the control plane."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_logging: ClusterLogging = Field(
        default_factory=ClusterLogging, alias="clusterLogging"
    )


class ClusterConfig(BaseModel):
    """Top-level cluster configuration document."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: str = CLUSTER_CONFIG_KIND
    metadata: ClusterMeta
    cloud_watch: ClusterCloudWatch | None = Field(None, alias="cloudWatch")

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v != CLUSTER_CONFIG_KIND:
            raise ValueError(f"kind must be {CLUSTER_CONFIG_KIND}, got {v}")
        return v

    @property
    def declared_log_types(self) -> list[str]:
        """Declared log types, empty when no logging section is present."""
        if self.cloud_watch is None:
            return []
        return self.cloud_watch.cluster_logging.enable_types

    def ensure_cluster_logging(self) -> ClusterLogging:
        """Return the logging section, creating an empty one if missing."""
        if self.cloud_watch is None:
            self.cloud_watch = ClusterCloudWatch()
        return self.cloud_watch.cluster_logging

    def set_defaults(self) -> None:
        """Fill defaults and expand the declared log types in place.

        Raises:
            UnknownFacilityError: If a declared log type is unknown.
        """
        self.ensure_cluster_logging().expand()


def new_cluster_config(
    name: str,
    region: str,
    enable_types: list[str] | None = None,
    version: str | None = None,
) -> ClusterConfig:
    """Build a ClusterConfig from command line values."""
    return ClusterConfig(
        metadata=ClusterMeta(name=name, region=region, version=version),
        cloud_watch=ClusterCloudWatch(
            cluster_logging=ClusterLogging(enable_types=list(enable_types or []))
        ),
    )
