"""Structured outcome of a sync run, per replica and per resource domain."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from adguard_sync.sync.client import classify_error


def now_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ItemError:
    domain: str
    operation: str
    key: str
    cause: str
    kind: str
    retryable: bool


@dataclass
class DomainOutcome:
    domain: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    calls: int = 0
    errors: list[ItemError] = field(default_factory=list)
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None or bool(self.errors)

    def record_failure(self, operation: str, key: str, exc: BaseException) -> ItemError:
        kind, retryable = classify_error(exc)
        item_error = ItemError(
            domain=self.domain,
            operation=operation,
            key=key,
            cause=str(exc),
            kind=kind,
            retryable=retryable,
        )
        self.errors.append(item_error)
        return item_error

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["failed"] = self.failed
        return payload


@dataclass
class ReplicaOutcome:
    host: str
    domains: list[DomainOutcome] = field(default_factory=list)
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None or any(outcome.failed for outcome in self.domains)

    def domain(self, name: str) -> DomainOutcome | None:
        for outcome in self.domains:
            if outcome.domain == name:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "error": self.error,
            "warnings": list(self.warnings),
            "failed": self.failed,
            "domains": [outcome.to_dict() for outcome in self.domains],
        }


@dataclass
class SyncReport:
    origin_host: str
    started_at_utc: str = field(default_factory=now_utc)
    finished_at_utc: str | None = None
    origin_error: str | None = None
    cancelled: bool = False
    replicas: list[ReplicaOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.origin_error is not None or any(replica.failed for replica in self.replicas)

    def replica(self, host: str) -> ReplicaOutcome | None:
        for outcome in self.replicas:
            if outcome.host == host:
                return outcome
        return None

    def summary(self) -> dict[str, int]:
        totals = {
            "replicas": len(self.replicas),
            "replicas_failed": 0,
            "added": 0,
            "updated": 0,
            "removed": 0,
            "skipped": 0,
            "errors": 0,
        }
        for replica in self.replicas:
            if replica.failed:
                totals["replicas_failed"] += 1
            for outcome in replica.domains:
                totals["added"] += outcome.added
                totals["updated"] += outcome.updated
                totals["removed"] += outcome.removed
                totals["skipped"] += outcome.skipped
                totals["errors"] += len(outcome.errors) + (1 if outcome.error else 0)
            if replica.error:
                totals["errors"] += 1
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin_host": self.origin_host,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "origin_error": self.origin_error,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "summary": self.summary(),
            "replicas": [replica.to_dict() for replica in self.replicas],
        }
