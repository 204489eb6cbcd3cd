"""Integration tests for the reconciliation flow.

These tests use MockAWSContext to run reconciliation, waiting and listing
together without AWS connectivity.
"""

from __future__ import annotations

import asyncio

import pytest
from aws_mock import MockAWSContext

from controlplane.config import Config
from controlplane.eks import EKSClusterProvider
from controlplane.models import new_cluster_config
from controlplane.reconciler import LoggingReconciler

REGIONS = ("us-east-1", "us-west-2", "eu-west-1")


class TestReconcilerIntegration:
    """Integration tests for LoggingReconciler with mocked EKS APIs."""

    @pytest.mark.asyncio
    async def test_reconcile_every_listed_cluster(self, fake_clock) -> None:
        """Test listing clusters across regions and reconciling each one concurrently."""
        with MockAWSContext(update_polls_to_complete=3, failing_regions={"eu-west-1"}) as ctx:
            ctx.state.add_cluster("a", "us-east-1", enabled_types=["api"])
            ctx.state.add_cluster("b", "us-west-2")
            ctx.state.add_cluster("c", "us-west-2", enabled_types=["audit"])
            ctx.state.add_cluster("hidden", "eu-west-1")

            config = Config(region="us-east-1", regions=REGIONS, poll_interval_seconds=5)
            provider = EKSClusterProvider(config, clock=fake_clock)

            listing = await provider.list_clusters_in_regions()

            async def reconcile(name: str, region: str):
                regional = EKSClusterProvider(config.with_overrides(region=region), clock=fake_clock)
                cluster_config = new_cluster_config(name, region, ["audit"])
                return await LoggingReconciler(cluster_config, regional, plan=False).reconcile()

            results = await asyncio.gather(
                *(reconcile(summary.name, summary.region) for summary in listing.items)
            )

            enabled = {
                (c.region, c.name): c.enabled_types
                for c in (
                    ctx.state.get_cluster("us-east-1", "a"),
                    ctx.state.get_cluster("us-west-2", "b"),
                    ctx.state.get_cluster("us-west-2", "c"),
                )
                if c is not None
            }
            hidden = ctx.state.get_cluster("eu-west-1", "hidden")
            update_count = len(ctx.state.calls_to("UpdateClusterConfig"))

        assert [f.partition for f in listing.failures] == ["eu-west-1"]
        assert [(r.cluster, r.changed, r.success) for r in results] == [
            ("a", True, True),
            ("b", True, True),
            ("c", False, True),
        ]
        assert set(map(tuple, enabled.values())) == {("audit",)}
        assert hidden is not None and hidden.enabled_types == []
        assert update_count == 2

    @pytest.mark.asyncio
    async def test_converges_after_failed_update(self, fake_clock) -> None:
        """Test that a failed update can simply be retried by reconciling again."""
        with MockAWSContext(update_terminal_status="Failed") as ctx:
            ctx.state.add_cluster("demo", "us-west-2")
            provider = EKSClusterProvider(Config(region="us-west-2"), clock=fake_clock)

            first = await LoggingReconciler(
                new_cluster_config("demo", "us-west-2", ["api"]), provider, plan=False
            ).reconcile()

            ctx.state.update_terminal_status = "Successful"
            second = await LoggingReconciler(
                new_cluster_config("demo", "us-west-2", ["api"]), provider, plan=False
            ).reconcile()
            third = await LoggingReconciler(
                new_cluster_config("demo", "us-west-2", ["api"]), provider, plan=False
            ).reconcile()

        assert first.success is False
        assert second.success is True and second.changed is True
        assert third.changed is False
