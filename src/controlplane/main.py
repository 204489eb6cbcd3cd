"""Environment-driven entry point for one logging reconciliation.

Intended for jobs and containers: configuration comes from environment
variables (see Config.from_env) and, optionally, a cluster config file named
by CLUSTER_CONFIG_FILE. Without a file, every supported log type is enabled,
or the comma separated list in ENABLE_LOG_TYPES.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from .config import Config, ConfigurationError
from .eks import EKSClusterProvider
from .facilities import SUPPORTED_LOGGING_TYPES
from .models import ClusterConfig, new_cluster_config
from .reconciler import LoggingReconciler
from .spec_loader import SpecLoadError, load_cluster_config

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_LOG_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure structured logging with JSON output (stdout by default)."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from the AWS SDK
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_desired_config(config: Config) -> ClusterConfig:
    """Build the desired cluster config from CLUSTER_CONFIG_FILE or the environment.

    Raises:
        SpecLoadError: If the file cannot be loaded.
        ConfigurationError: If no cluster name is available.
    """
    config_file = os.environ.get("CLUSTER_CONFIG_FILE")
    if config_file:
        cluster_config = load_cluster_config(Path(config_file))
        if config.cluster_name:
            cluster_config.metadata.name = config.cluster_name
        cluster_config.metadata.region = cluster_config.metadata.region or config.region
        return cluster_config

    if not config.cluster_name:
        raise ConfigurationError("CLUSTER_NAME is required without CLUSTER_CONFIG_FILE")

    raw_types = os.environ.get("ENABLE_LOG_TYPES")
    if raw_types is None:
        enable_types = list(SUPPORTED_LOGGING_TYPES)
    else:
        enable_types = [t.strip() for t in raw_types.split(",") if t.strip()]

    return new_cluster_config(config.cluster_name, config.region, enable_types)


async def main() -> int:
    """Run one logging reconciliation.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    try:
        cluster_config = load_desired_config(config)
        region = cluster_config.metadata.region or config.region
        if region != config.region:
            config = config.with_overrides(region=region)
    except (ConfigurationError, SpecLoadError) as e:
        logger.error("Failed to load cluster config", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting logging reconciliation",
        extra={
            "cluster": cluster_config.metadata.name,
            "region": config.region,
            "plan": config.plan,
        },
    )

    provider = EKSClusterProvider(config)
    reconciler = LoggingReconciler(cluster_config, provider, plan=config.plan)
    result = await reconciler.reconcile()

    return 0 if result.success else 1


def run() -> None:
    """Entry point for the one-shot reconciliation."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
