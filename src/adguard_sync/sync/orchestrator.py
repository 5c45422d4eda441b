"""Origin-to-replica sync orchestration and replica fan-out."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, Sequence

from adguard_sync.models import ALL_DOMAINS
from adguard_sync.sync.client import InstanceClient
from adguard_sync.sync.domains import (
    CancelToken,
    DomainSynchronizer,
    SnapshotCache,
    as_snapshot_cache,
    build_synchronizers,
)
from adguard_sync.sync.report import DomainOutcome, ReplicaOutcome, SyncReport, now_utc

logger = logging.getLogger(__name__)


def _host_of(instance: InstanceClient) -> str:
    try:
        return instance.host()
    except Exception:
        return "<unknown>"


def _required_sources(synchronizers: Iterable[DomainSynchronizer]) -> list[str]:
    sources: list[str] = []
    for synchronizer in synchronizers:
        for source in synchronizer.sources:
            if source not in sources:
                sources.append(source)
    return sources


def run_replica(
    origin: SnapshotCache | InstanceClient,
    replica: InstanceClient,
    enabled_domains: Iterable[str] = ALL_DOMAINS,
    cancel: CancelToken | None = None,
    origin_version: str | None = None,
) -> ReplicaOutcome:
    """Converge one replica onto the origin state.

    The replica status probe runs first; when it fails the replica is reported
    unreachable and no domain is attempted. Past the probe, failures stay
    inside the domain that raised them.
    """
    origin_cache = as_snapshot_cache(origin)
    token = cancel or CancelToken()
    synchronizers = build_synchronizers(enabled_domains)
    outcome = ReplicaOutcome(host=_host_of(replica))

    try:
        status = replica.read_status()
    except Exception as exc:
        outcome.error = f"replica unreachable: {exc}"
        logger.error("Replica %s unreachable, skipping all domains: %s", outcome.host, exc)
        return outcome

    if origin_version and status.version and status.version != origin_version:
        outcome.warnings.append(
            f"version mismatch: origin={origin_version} replica={status.version}"
        )
        logger.warning(
            "Replica %s runs version %s, origin runs %s",
            outcome.host,
            status.version,
            origin_version,
        )

    replica_cache = SnapshotCache(replica)
    for synchronizer in synchronizers:
        try:
            domain_outcome = synchronizer.sync(origin_cache, replica_cache, token)
        except Exception as exc:
            logger.exception("Domain %s crashed on %s", synchronizer.domain, outcome.host)
            domain_outcome = DomainOutcome(
                domain=synchronizer.domain,
                error=f"unexpected failure: {exc}",
            )
        outcome.domains.append(domain_outcome)
    return outcome


def run_all(
    origin: InstanceClient,
    replicas: Sequence[InstanceClient],
    concurrency_limit: int = 0,
    enabled_domains: Iterable[str] = ALL_DOMAINS,
    deadline_seconds: float | None = None,
    cancel: CancelToken | None = None,
) -> SyncReport:
    """Sync every replica from one origin snapshot and collect a report.

    Origin state is captured once, before any worker starts, and shared
    read-only. ``concurrency_limit`` <= 0 means one worker per replica.
    """
    domains = tuple(enabled_domains)
    synchronizers = build_synchronizers(domains)
    token = cancel or CancelToken()
    token.apply_deadline(deadline_seconds)
    report = SyncReport(origin_host=_host_of(origin))

    try:
        origin_status = origin.read_status()
    except Exception as exc:
        report.origin_error = f"origin unreachable: {exc}"
        report.finished_at_utc = now_utc()
        logger.error("Origin %s unreachable, nothing to sync: %s", report.origin_host, exc)
        return report

    origin_cache = SnapshotCache(origin)
    for source, exc in origin_cache.prefetch(_required_sources(synchronizers)).items():
        logger.warning("Origin read of %s failed on %s: %s", source, report.origin_host, exc)

    outcomes: list[ReplicaOutcome | None] = [None] * len(replicas)
    if replicas:
        workers = len(replicas)
        if concurrency_limit > 0:
            workers = min(concurrency_limit, len(replicas))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="adguard-sync") as executor:
            futures = {
                executor.submit(
                    run_replica,
                    origin_cache,
                    replica,
                    domains,
                    token,
                    origin_status.version,
                ): index
                for index, replica in enumerate(replicas)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    outcomes[index] = future.result()
                except Exception as exc:
                    logger.exception("Sync worker for %s failed", _host_of(replicas[index]))
                    outcomes[index] = ReplicaOutcome(
                        host=_host_of(replicas[index]),
                        error=f"worker failed: {exc}",
                    )

    report.replicas = [outcome for outcome in outcomes if outcome is not None]
    report.finished_at_utc = now_utc()
    summary = report.summary()
    report.cancelled = token.cancelled and summary["skipped"] > 0
    logger.info(
        "Sync complete: replicas=%d failed=%d added=%d updated=%d removed=%d errors=%d",
        summary["replicas"],
        summary["replicas_failed"],
        summary["added"],
        summary["updated"],
        summary["removed"],
        summary["errors"],
    )
    return report


def probe_instances(
    origin: InstanceClient,
    replicas: Sequence[InstanceClient],
) -> list[dict[str, Any]]:
    """Read the status of every instance, origin first."""
    results: list[dict[str, Any]] = []
    for role, instance in [("origin", origin)] + [("replica", replica) for replica in replicas]:
        entry: dict[str, Any] = {"role": role, "host": _host_of(instance), "reachable": True}
        try:
            status = instance.read_status()
        except Exception as exc:
            entry["reachable"] = False
            entry["error"] = str(exc)
        else:
            entry["version"] = status.version
            entry["running"] = status.running
            entry["protection_enabled"] = status.protection_enabled
        results.append(entry)
    return results
