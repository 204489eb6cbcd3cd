"""Tests for the cpctl command line."""

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml
from aws_mock import MockAWSContext
from click.testing import CliRunner

from controlplane.cli import cli, enable_types_from_flags, facility_param_name
from controlplane.facilities import SUPPORTED_LOGGING_TYPES
from controlplane.main import JsonFormatter

REGION = "us-west-2"
ALL = list(SUPPORTED_LOGGING_TYPES)


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Drop the JSON handler bound to the runner's stderr after each test."""
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestEnableTypesFromFlags:
    """Tests for mapping log type flags to declared types."""

    @pytest.mark.parametrize(
        "enable_all,flags,expected",
        [
            (None, {}, ALL),
            (None, {"api": True}, ["api"]),
            (True, {"api": True}, ALL),
            (True, {"scheduler": True}, ["scheduler", "api", "audit", "authenticator", "controllerManager"]),
            (None, {"api": False}, ["audit", "authenticator", "controllerManager", "scheduler"]),
            (False, {}, []),
            (False, {"scheduler": True}, ["scheduler"]),
            (None, {"controllerManager": True, "api": False}, ["controllerManager"]),
        ],
    )
    def test_flag_combinations(
        self, enable_all: bool | None, flags: dict[str, bool], expected: list[str]
    ) -> None:
        """Test the --all default and its interaction with per-type flags."""
        assert enable_types_from_flags(enable_all, flags) == expected

    def test_param_names(self) -> None:
        """Test parameter names derived from camelCase log types."""
        assert facility_param_name("controllerManager") == "controller_manager"
        assert facility_param_name("api") == "api"


class TestUpdateClusterLogging:
    """Tests for cpctl utils update-cluster-logging."""

    def test_plan_by_default(self, runner: CliRunner, instant_waits) -> None:
        """Test that without --approve nothing is applied."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION)
            result = runner.invoke(
                cli, ["utils", "update-cluster-logging", "--name", "demo", "--region", REGION, "--api"]
            )

            assert ctx.state.calls_to("UpdateClusterConfig") == []

        assert result.exit_code == 0, result.output
        output = json.loads(result.stdout)
        assert output["plan"] is True
        assert output["changed"] is True
        assert output["applied"] is False
        assert output["enableTypes"] == ["api"]

    def test_approve_applies(self, runner: CliRunner, instant_waits) -> None:
        """Test that --approve applies the update and waits for it."""
        with MockAWSContext(update_polls_to_complete=2) as ctx:
            ctx.state.add_cluster("demo", REGION, enabled_types=["api"])
            result = runner.invoke(
                cli,
                [
                    "utils",
                    "update-cluster-logging",
                    "-n",
                    "demo",
                    "-r",
                    REGION,
                    "--no-all",
                    "--controllerManager",
                    "--approve",
                ],
            )
            cluster = ctx.state.get_cluster(REGION, "demo")

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["applied"] is True
        assert cluster is not None and cluster.enabled_types == ["controllerManager"]

    def test_all_by_default(self, runner: CliRunner, instant_waits) -> None:
        """Test that no flags means every log type."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION)
            result = runner.invoke(
                cli, ["utils", "update-cluster-logging", "--name", "demo", "--region", REGION]
            )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["enableTypes"] == ALL

    def test_name_required(self, runner: CliRunner) -> None:
        """Test that a cluster name or config file is required."""
        result = runner.invoke(cli, ["utils", "update-cluster-logging", "--region", REGION])

        assert result.exit_code == 2
        assert "--name must be set" in result.output

    def test_config_file(self, runner: CliRunner, instant_waits, tmp_path: Path) -> None:
        """Test reconciling from a cluster config file."""
        path = tmp_path / "cluster.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "apiVersion": "controlplane.io/v1alpha1",
                    "kind": "ClusterConfig",
                    "metadata": {"name": "demo", "region": REGION},
                    "cloudWatch": {"clusterLogging": {"enableTypes": ["*"]}},
                }
            )
        )

        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION)
            result = runner.invoke(cli, ["utils", "update-cluster-logging", "-f", str(path), "--approve"])
            cluster = ctx.state.get_cluster(REGION, "demo")

        assert result.exit_code == 0, result.output
        assert cluster is not None and cluster.enabled_types == ALL

    def test_config_file_with_name_rejected(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that --name and --config-file are mutually exclusive."""
        path = tmp_path / "cluster.yaml"
        path.write_text(yaml.safe_dump({"metadata": {"name": "demo"}}))

        result = runner.invoke(
            cli, ["utils", "update-cluster-logging", "-f", str(path), "--name", "other"]
        )

        assert result.exit_code == 2

    def test_config_file_with_type_flags_rejected(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that log type flags cannot be combined with a config file."""
        path = tmp_path / "cluster.yaml"
        path.write_text(yaml.safe_dump({"metadata": {"name": "demo"}}))

        result = runner.invoke(cli, ["utils", "update-cluster-logging", "-f", str(path), "--api"])

        assert result.exit_code == 2

    def test_unknown_type_in_file_fails(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that an unknown log type exits non-zero without touching the cluster."""
        path = tmp_path / "cluster.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "metadata": {"name": "demo", "region": REGION},
                    "cloudWatch": {"clusterLogging": {"enableTypes": ["kubelet"]}},
                }
            )
        )

        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION)
            result = runner.invoke(cli, ["utils", "update-cluster-logging", "-f", str(path)])

            assert ctx.state.calls == []

        assert result.exit_code == 1
        assert 'log type "kubelet" is unknown' in json.loads(result.stdout)["error"]

    def test_missing_cluster_fails(self, runner: CliRunner) -> None:
        """Test that a missing cluster exits non-zero."""
        with MockAWSContext():
            result = runner.invoke(
                cli, ["utils", "update-cluster-logging", "--name", "ghost", "--region", REGION]
            )

        assert result.exit_code == 1

    def test_invalid_region(self, runner: CliRunner) -> None:
        """Test that configuration errors are reported as CLI errors."""
        result = runner.invoke(
            cli, ["utils", "update-cluster-logging", "--name", "demo", "--region", "moon"]
        )

        assert result.exit_code == 1
        assert "AWS_REGION" in result.output


class TestGetCluster:
    """Tests for cpctl get cluster."""

    def test_list_table(self, runner: CliRunner) -> None:
        """Test listing clusters in one region as a table."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("alpha", REGION)
            ctx.state.add_cluster("beta", REGION)
            result = runner.invoke(cli, ["get", "cluster", "--region", REGION, "--chunk-size", "1"])
            pages = len(ctx.state.calls_to("ListClusters"))

        assert result.exit_code == 0, result.output
        lines = result.stdout.splitlines()
        assert lines[0].split() == ["NAME", "REGION"]
        assert [line.split()[0] for line in lines[1:]] == ["alpha", "beta"]
        assert pages == 2

    def test_list_empty(self, runner: CliRunner) -> None:
        """Test the message for a region without clusters."""
        with MockAWSContext():
            result = runner.invoke(cli, ["get", "cluster", "--region", REGION])

        assert result.exit_code == 0
        assert "No clusters found" in result.stdout

    def test_all_regions_partial(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a failing region is reported and does not fail the command."""
        monkeypatch.setenv("ENUMERATION_REGIONS", "us-east-1,eu-west-1")
        with MockAWSContext(failing_regions={"eu-west-1"}) as ctx:
            ctx.state.add_cluster("east", "us-east-1")
            ctx.state.add_cluster("west", "eu-west-1")
            result = runner.invoke(
                cli, ["get", "cluster", "--region", REGION, "--all-regions", "-o", "json"]
            )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [{"name": "east", "region": "us-east-1"}]
        assert "eu-west-1" in result.stderr

    def test_describe_yaml(self, runner: CliRunner) -> None:
        """Test describing a single cluster as YAML."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION, version="1.29")
            result = runner.invoke(
                cli, ["get", "cluster", "--name", "demo", "--region", REGION, "-o", "yaml"]
            )

        assert result.exit_code == 0, result.output
        records = yaml.safe_load(result.stdout)
        assert records[0]["name"] == "demo"
        assert records[0]["status"] == "ACTIVE"
        assert records[0]["version"] == "1.29"

    def test_describe_missing(self, runner: CliRunner) -> None:
        """Test that describing a missing cluster fails."""
        with MockAWSContext():
            result = runner.invoke(cli, ["get", "cluster", "--name", "ghost", "--region", REGION])

        assert result.exit_code == 1
        assert "ghost" in result.output


class TestUpgradeCluster:
    """Tests for cpctl upgrade cluster."""

    def test_plan(self, runner: CliRunner) -> None:
        """Test that the upgrade is only planned without --approve."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION, version="1.28")
            result = runner.invoke(
                cli, ["upgrade", "cluster", "--name", "demo", "--region", REGION, "--version", "1.29"]
            )

            assert ctx.state.calls_to("UpdateClusterVersion") == []

        assert result.exit_code == 0, result.output

    def test_approve(self, runner: CliRunner, instant_waits) -> None:
        """Test that --approve upgrades and waits for the update."""
        with MockAWSContext(update_polls_to_complete=3) as ctx:
            ctx.state.add_cluster("demo", REGION, version="1.28")
            result = runner.invoke(
                cli,
                ["upgrade", "cluster", "-n", "demo", "-r", REGION, "--version", "1.29", "--approve"],
            )
            cluster = ctx.state.get_cluster(REGION, "demo")

        assert result.exit_code == 0, result.output
        assert cluster is not None and cluster.version == "1.29"
        assert "upgraded to version 1.29" in result.stdout

    def test_failed_upgrade(self, runner: CliRunner, instant_waits) -> None:
        """Test that a failed version update exits non-zero."""
        with MockAWSContext(update_terminal_status="Failed") as ctx:
            ctx.state.add_cluster("demo", REGION, version="1.28")
            result = runner.invoke(
                cli,
                ["upgrade", "cluster", "-n", "demo", "-r", REGION, "--version", "1.29", "--approve"],
            )

        assert result.exit_code == 1
        assert "Failed" in result.output

    def test_inactive_cluster(self, runner: CliRunner) -> None:
        """Test that clusters that are not ACTIVE cannot be upgraded."""
        with MockAWSContext() as ctx:
            ctx.state.add_cluster("demo", REGION, status="UPDATING")
            result = runner.invoke(
                cli, ["upgrade", "cluster", "-n", "demo", "-r", REGION, "--version", "1.29"]
            )

        assert result.exit_code == 1
