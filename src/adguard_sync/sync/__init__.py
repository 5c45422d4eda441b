"""Reconciliation engine that converges replica instances onto an origin."""

from adguard_sync.sync.client import InstanceClient, TransportError, classify_error
from adguard_sync.sync.domains import (
    CancelToken,
    ClientSynchronizer,
    CustomRulesSynchronizer,
    DomainSynchronizer,
    FilterSynchronizer,
    RewriteSynchronizer,
    ServiceSynchronizer,
    SnapshotCache,
    ToggleSynchronizer,
    build_synchronizers,
)
from adguard_sync.sync.orchestrator import probe_instances, run_all, run_replica
from adguard_sync.sync.reconcile import DiffResult, diff
from adguard_sync.sync.report import DomainOutcome, ItemError, ReplicaOutcome, SyncReport

__all__ = [
    "InstanceClient",
    "TransportError",
    "classify_error",
    "CancelToken",
    "ClientSynchronizer",
    "CustomRulesSynchronizer",
    "DomainSynchronizer",
    "FilterSynchronizer",
    "RewriteSynchronizer",
    "ServiceSynchronizer",
    "SnapshotCache",
    "ToggleSynchronizer",
    "build_synchronizers",
    "probe_instances",
    "run_all",
    "run_replica",
    "DiffResult",
    "diff",
    "DomainOutcome",
    "ItemError",
    "ReplicaOutcome",
    "SyncReport",
]
