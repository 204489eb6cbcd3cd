"""AWS EKS API Mock for Integration Testing.

This module provides a mock implementation of the EKS APIs the provider
uses, so the full reconciliation can run without AWS connectivity.

Key Features:
- In-memory clusters per region
- Update lifecycle simulation (InProgress → Successful/Failed/Cancelled)
- Token-based ListClusters paging
- Per-region listing failures

Usage:
    from aws_mock import MockAWSContext

    with MockAWSContext(update_polls_to_complete=2) as ctx:
        ctx.state.add_cluster("demo", "us-west-2", enabled_types=["api"])
        ...
        assert ctx.state.get_cluster("us-west-2", "demo").enabled_types == ["api", "audit"]
"""

from .client import MockEKSClient, client_error
from .context import MockAWSContext, mock_aws_context
from .state import MockCluster, MockEKSState, MockUpdate

__all__ = [
    "MockAWSContext",
    "MockCluster",
    "MockEKSClient",
    "MockEKSState",
    "MockUpdate",
    "client_error",
    "mock_aws_context",
]
