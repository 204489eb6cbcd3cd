"""Control plane CLI (cpctl).

Usage:
    cpctl utils update-cluster-logging --name demo --region us-west-2
    cpctl utils update-cluster-logging -f cluster.yaml --approve
    cpctl get cluster --region us-west-2
    cpctl get cluster --all-regions -o yaml
    cpctl upgrade cluster --name demo --version 1.29 --approve

Commands that change the control plane only plan by default and apply the
change when --approve is given.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
from collections.abc import Callable, Coroutine, Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

import click
import yaml
from click.core import ParameterSource

from .config import Config, ConfigurationError
from .eks import (
    ClusterSummary,
    ControlPlaneError,
    EKSClusterProvider,
)
from .facilities import SUPPORTED_LOGGING_TYPES
from .main import setup_logging
from .models import ClusterConfig, new_cluster_config
from .reconciler import LoggingReconciler
from .spec_loader import SpecLoadError, load_cluster_config
from .waiter import WaitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OUTPUT_FORMATS = ("table", "json", "yaml")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def facility_param_name(log_type: str) -> str:
    """Python parameter name for a log type flag (controllerManager -> controller_manager)."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", log_type).lower()


def enable_types_from_flags(
    enable_all: bool | None,
    facility_flags: Mapping[str, bool | None],
    universe: Sequence[str] = SUPPORTED_LOGGING_TYPES,
) -> list[str]:
    """Compute the declared log types from command line flags.

    Args:
        enable_all: Value of --all/--no-all, None when not given (defaults to on).
        facility_flags: Per log type flag values, None when not given.
        universe: Ordered set of known log types.

    Returns:
        Log types to enable. Naming a type with --<type> switches the --all
        default off unless --all was given explicitly. --no-<type> excludes a
        type from --all.
    """
    all_given = enable_all is not None
    include_all = True if enable_all is None else enable_all

    enable_types: list[str] = []
    disabled: set[str] = set()
    for log_type in universe:
        value = facility_flags.get(log_type)
        if value:
            enable_types.append(log_type)
            if not all_given:
                include_all = False
        elif value is not None:
            disabled.add(log_type)

    if include_all:
        for log_type in universe:
            if log_type not in disabled and log_type not in enable_types:
                enable_types.append(log_type)

    return enable_types


def facility_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add --all/--no-all and one --<type>/--no-<type> flag per log type."""
    for log_type in reversed(SUPPORTED_LOGGING_TYPES):
        func = click.option(
            f"--{log_type}/--no-{log_type}",
            facility_param_name(log_type),
            default=False,
            help=f'Enable "{log_type}" log type',
        )(func)
    return click.option(
        "--all/--no-all",
        "enable_all",
        default=True,
        help=f"Enable all supported log types ({', '.join(SUPPORTED_LOGGING_TYPES)})",
    )(func)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning provider and wait errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except (ControlPlaneError, WaitError) as e:
        raise click.ClickException(str(e)) from e


def load_config(**overrides: Any) -> Config:
    """Load Config from the environment with command line overrides."""
    try:
        return Config.from_env(**overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def echo_records(records: list[dict[str, Any]], output: str, columns: Sequence[str]) -> None:
    """Print records as a table, JSON or YAML."""
    if output == "json":
        click.echo(json.dumps(records, indent=2, default=str))
        return
    if output == "yaml":
        click.echo(yaml.safe_dump(records, sort_keys=False, default_flow_style=False), nl=False)
        return

    if not records:
        click.echo("No clusters found")
        return

    widths = {c: len(c) for c in columns}
    for record in records:
        for c in columns:
            widths[c] = max(widths[c], len(str(record.get(c) or "")))

    click.echo("\t".join(c.upper().ljust(widths[c]) for c in columns).rstrip())
    for record in records:
        click.echo("\t".join(str(record.get(c) or "").ljust(widths[c]) for c in columns).rstrip())


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="cpctl")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level",
)
def cli(log_level: str) -> None:
    """Control plane CLI (cpctl).

    Reconciles control plane logging and inspects clusters.

    \b
    Quick Start:
        cpctl get cluster --region us-west-2
        cpctl utils update-cluster-logging --name demo --region us-west-2
    """
    # logs go to stderr, command output to stdout
    setup_logging(log_level, stream=sys.stderr)


# =============================================================================
# Utility Commands
# =============================================================================


@cli.group()
def utils() -> None:
    """Utility commands: update-cluster-logging."""
    pass


@utils.command("update-cluster-logging")
@click.option("--name", "-n", help="Cluster name")
@click.option("--region", "-r", help="AWS region")
@click.option(
    "--config-file",
    "-f",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Load the cluster config from a YAML or JSON file",
)
@click.option("--approve", is_flag=True, help="Apply the changes (default is plan only)")
@facility_options
@click.pass_context
def update_cluster_logging(
    ctx: click.Context,
    name: str | None,
    region: str | None,
    config_file: Path | None,
    approve: bool,
    enable_all: bool,
    **flags: bool,
) -> None:
    """Update cluster logging configuration."""

    def given(param: str) -> bool:
        return ctx.get_parameter_source(param) is ParameterSource.COMMANDLINE

    facility_flags: dict[str, bool | None] = {}
    for log_type in SUPPORTED_LOGGING_TYPES:
        param = facility_param_name(log_type)
        facility_flags[log_type] = flags[param] if given(param) else None
    all_flag = enable_all if given("enable_all") else None

    cluster_config: ClusterConfig
    if config_file is not None:
        if name:
            raise click.UsageError("--name cannot be used with --config-file")
        if all_flag is not None or any(v is not None for v in facility_flags.values()):
            raise click.UsageError("log type flags cannot be used with --config-file")
        try:
            cluster_config = load_cluster_config(config_file)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e
        name = cluster_config.metadata.name
        region = region or cluster_config.metadata.region or None
    elif not name:
        raise click.UsageError("--name must be set")
    else:
        cluster_config = new_cluster_config(
            name, region or "", enable_types_from_flags(all_flag, facility_flags)
        )

    config = load_config(cluster_name=name, region=region, plan=False if approve else None)
    cluster_config.metadata.region = config.region
    logger.info("using region %s", config.region)

    provider = EKSClusterProvider(config)
    reconciler = LoggingReconciler(cluster_config, provider, plan=config.plan)
    result = run_async(reconciler.reconcile())

    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        sys.exit(1)


# =============================================================================
# Get Commands
# =============================================================================


@cli.group()
def get() -> None:
    """Inspect resources: cluster."""
    pass


@get.command("cluster")
@click.option("--name", "-n", help="Describe a single cluster")
@click.option("--region", "-r", help="AWS region")
@click.option("--all-regions", "-A", is_flag=True, help="List clusters in all regions")
@click.option("--chunk-size", type=int, help="Clusters requested per page (1-100)")
@click.option(
    "--output",
    "-o",
    type=click.Choice(OUTPUT_FORMATS),
    default="table",
    show_default=True,
    help="Output format",
)
def get_cluster(
    name: str | None,
    region: str | None,
    all_regions: bool,
    chunk_size: int | None,
    output: str,
) -> None:
    """Describe a cluster or list clusters."""
    if name and all_regions:
        raise click.UsageError("--name cannot be used with --all-regions")

    config = load_config(cluster_name=name, region=region, list_chunk_size=chunk_size)
    provider = EKSClusterProvider(config)

    if name:
        snapshot = run_async(provider.get_cluster(name))
        record = {**snapshot.to_dict(), "region": config.region}
        echo_records([record], output, ("name", "region", "status", "version"))
        return

    summaries: list[ClusterSummary]
    if all_regions:
        partitioned = run_async(provider.list_clusters_in_regions())
        summaries = partitioned.items
        for failure in partitioned.failures:
            click.echo(
                f"warning: failed to list clusters in region {failure.partition}: {failure.error}",
                err=True,
            )
    else:
        summaries = run_async(provider.list_clusters())

    echo_records([s.to_dict() for s in summaries], output, ("name", "region"))


# =============================================================================
# Upgrade Commands
# =============================================================================


@cli.group()
def upgrade() -> None:
    """Upgrade resources: cluster."""
    pass


@upgrade.command("cluster")
@click.option("--name", "-n", required=True, help="Cluster name")
@click.option("--region", "-r", help="AWS region")
@click.option("--version", "target_version", required=True, help="Target Kubernetes version")
@click.option("--approve", is_flag=True, help="Apply the upgrade (default is plan only)")
def upgrade_cluster(
    name: str,
    region: str | None,
    target_version: str,
    approve: bool,
) -> None:
    """Upgrade the control plane version and wait for it to finish."""
    config = load_config(cluster_name=name, region=region, plan=False if approve else None)
    provider = EKSClusterProvider(config)

    snapshot = run_async(provider.describe_control_plane_must_be_active(name))
    if snapshot.version == target_version:
        logger.info(
            f'cluster "{name}" in "{config.region}" is already at version {target_version}'
        )
        return

    prefix = "(plan) " if config.plan else ""
    logger.info(
        f'{prefix}upgrade cluster "{name}" in "{config.region}" control plane '
        f"from version {snapshot.version} to {target_version}"
    )
    if config.plan:
        logger.warning("no changes were applied, run again with '--approve' to apply the changes")
        return

    run_async(provider.update_cluster_version_blocking(name, target_version))
    click.echo(f'cluster "{name}" upgraded to version {target_version}')
