"""
Jira Xray Client Module.

Provides synchronization with the Jira and Xray (raven) REST APIs:
- Building HTTP command descriptors from canonical test cases.
- Mapping tracker responses back into canonical test cases.
- Bounded-parallel dispatch with per-item failure isolation.
- Best-effort propagation of results, evidence and defects.
- Test execution creation and teardown.
"""

from xraysync.jira_client.commands import HttpCommand
from xraysync.jira_client.coordinator import (
    BatchFailedError,
    BatchOutcome,
    BucketedCoordinator,
    ItemResult,
)
from xraysync.jira_client.propagator import (
    PropagationEntry,
    PropagationReport,
    ResultPropagator,
)
from xraysync.jira_client.response_mapper import NOT_FOUND
from xraysync.jira_client.synchronizer import TeardownReport, XraySynchronizer
from xraysync.jira_client.transport import (
    ClientConfig,
    JiraTransport,
    TransportResult,
    XrayClientError,
)

__all__ = [
    "BatchFailedError",
    "BatchOutcome",
    "BucketedCoordinator",
    "ClientConfig",
    "HttpCommand",
    "ItemResult",
    "JiraTransport",
    "NOT_FOUND",
    "PropagationEntry",
    "PropagationReport",
    "ResultPropagator",
    "TeardownReport",
    "TransportResult",
    "XrayClientError",
    "XraySynchronizer",
]
