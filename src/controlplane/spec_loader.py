"""Cluster configuration file loading with validation.

SECURITY: File reads enforce a size limit and YAML is parsed with safe_load.
JSON documents are accepted as well since they are valid YAML.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ClusterConfig

logger = logging.getLogger(__name__)

MAX_CLUSTER_CONFIG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max config file


class SpecLoadError(Exception):
    """Raised when the cluster configuration cannot be loaded or validated."""

    pass


def load_cluster_config(path: Path) -> ClusterConfig:
    """Load and validate a cluster configuration document.

    Args:
        path: YAML or JSON file.

    Returns:
        Validated ClusterConfig. Log types are not expanded yet.

    Raises:
        SpecLoadError: If the file cannot be read, parsed or validated.
    """
    if not path.exists():
        raise SpecLoadError(f"Cluster config file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat cluster config file {path}: {e}") from e

    if file_size > MAX_CLUSTER_CONFIG_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Cluster config file exceeds maximum size of "
            f"{MAX_CLUSTER_CONFIG_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read cluster config file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Cluster config file must contain a mapping: {path}")

    try:
        cluster_config = ClusterConfig.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info(
        "Loaded cluster config '%s' from %s",
        cluster_config.metadata.name,
        path,
    )
    return cluster_config
