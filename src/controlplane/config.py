"""Configuration management with validation.

Bounds are enforced at load time so that a misconfigured wait timeout or
polling interval fails before any provider call is made.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_WAIT_TIMEOUT_SECONDS = 25 * 60
MIN_WAIT_TIMEOUT_SECONDS = 1
MAX_WAIT_TIMEOUT_SECONDS = 2 * 60 * 60

DEFAULT_POLL_INTERVAL_SECONDS = 20
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 300

# The provider caps list pages at 100 entries
DEFAULT_LIST_CHUNK_SIZE = 100
MAX_LIST_CHUNK_SIZE = 100

DEFAULT_MAX_PARTITION_CONCURRENCY = 4

MAX_CLUSTER_NAME_LENGTH = 100

# Input validation patterns
VALID_CLUSTER_NAME_PATTERN = r"^[0-9A-Za-z][A-Za-z0-9\-_]*$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-gov)?-[a-z]+-\d+$"

# Regions searched when listing clusters everywhere
SUPPORTED_REGIONS: tuple[str, ...] = (
    "us-east-1",
    "us-east-2",
    "us-west-2",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "eu-north-1",
    "eu-central-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-south-1",
)


@dataclass(frozen=True)
class Config:
    """Runtime configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    region: str

    # Empty for region-wide commands such as listing
    cluster_name: str = ""

    # Timing
    wait_timeout_seconds: int = DEFAULT_WAIT_TIMEOUT_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

    # Enumeration
    list_chunk_size: int = DEFAULT_LIST_CHUNK_SIZE
    regions: tuple[str, ...] = field(default_factory=lambda: SUPPORTED_REGIONS)
    max_partition_concurrency: int = DEFAULT_MAX_PARTITION_CONCURRENCY

    # Behavior
    plan: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid region: {self.region}")

        if self.cluster_name:
            if len(self.cluster_name) > MAX_CLUSTER_NAME_LENGTH:
                errors.append(
                    f"CLUSTER_NAME exceeds maximum length of {MAX_CLUSTER_NAME_LENGTH}"
                )
            elif not re.match(VALID_CLUSTER_NAME_PATTERN, self.cluster_name):
                errors.append(
                    f"CLUSTER_NAME must match pattern {VALID_CLUSTER_NAME_PATTERN}: "
                    f"{self.cluster_name}"
                )

        # Timing validation
        if not (
            MIN_WAIT_TIMEOUT_SECONDS <= self.wait_timeout_seconds <= MAX_WAIT_TIMEOUT_SECONDS
        ):
            errors.append(
                f"WAIT_TIMEOUT must be between {MIN_WAIT_TIMEOUT_SECONDS} "
                f"and {MAX_WAIT_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"UPDATE_POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )
        elif self.poll_interval_seconds > self.wait_timeout_seconds:
            errors.append("UPDATE_POLL_INTERVAL cannot exceed WAIT_TIMEOUT")

        # Enumeration validation
        if not (1 <= self.list_chunk_size <= MAX_LIST_CHUNK_SIZE):
            errors.append(f"LIST_CHUNK_SIZE must be between 1 and {MAX_LIST_CHUNK_SIZE}")

        if not self.regions:
            errors.append("ENUMERATION_REGIONS must name at least one region")
        for region in self.regions:
            if not re.match(VALID_REGION_PATTERN, region):
                errors.append(f"ENUMERATION_REGIONS contains an invalid region: {region}")

        if self.max_partition_concurrency < 1:
            errors.append("MAX_PARTITION_CONCURRENCY must be at least 1")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"LOG_LEVEL is not a logging level: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables.

        Keyword overrides that are not None replace the environment values,
        so command line flags win over the environment.

        Environment Variables:
            CLUSTER_NAME: Cluster to reconcile (optional for listing)
            AWS_REGION: Region of the cluster (falls back to AWS_DEFAULT_REGION)
            WAIT_TIMEOUT: Deadline for one long-running update in seconds (default: 1500)
            UPDATE_POLL_INTERVAL: Seconds between update status polls (default: 20)
            LIST_CHUNK_SIZE: Page size for cluster listing (default: 100)
            ENUMERATION_REGIONS: Comma separated regions for all-region listing
            MAX_PARTITION_CONCURRENCY: Regions listed at once (default: 4)
            APPROVE: If "true", apply changes; otherwise only plan (default: false)
            LOG_LEVEL: Logging level name (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_regions(value: str | None) -> tuple[str, ...]:
            if not value:
                return SUPPORTED_REGIONS
            return tuple(r.strip() for r in value.split(",") if r.strip())

        values: dict[str, Any] = dict(
            cluster_name=os.environ.get("CLUSTER_NAME", ""),
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", ""),
            wait_timeout_seconds=get_int("WAIT_TIMEOUT", DEFAULT_WAIT_TIMEOUT_SECONDS),
            poll_interval_seconds=get_int("UPDATE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            list_chunk_size=get_int("LIST_CHUNK_SIZE", DEFAULT_LIST_CHUNK_SIZE),
            regions=get_regions(os.environ.get("ENUMERATION_REGIONS")),
            max_partition_concurrency=get_int(
                "MAX_PARTITION_CONCURRENCY", DEFAULT_MAX_PARTITION_CONCURRENCY
            ),
            plan=not get_bool("APPROVE", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **changes: object) -> Config:
        """Return a validated copy with some fields replaced."""
        return replace(self, **changes)
