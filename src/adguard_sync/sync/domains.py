"""Per-domain synchronizers built on the shared snapshot differ."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Generic, Iterable, TypeVar

from adguard_sync.models import (
    ALL_DOMAINS,
    DOMAIN_CLIENTS,
    DOMAIN_CUSTOM_RULES,
    DOMAIN_FILTERS,
    DOMAIN_REWRITES,
    DOMAIN_SERVICES,
    DOMAIN_TOGGLES,
    TOGGLE_MODES,
    Client,
    Filter,
    FilteringStatus,
    RewriteEntry,
    normalize_rules,
)
from adguard_sync.sync.client import InstanceClient, TransportError, classify_error
from adguard_sync.sync.reconcile import DiffResult, diff
from adguard_sync.sync.report import DomainOutcome

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")

SOURCE_REWRITES = "rewrites"
SOURCE_FILTERING = "filtering"
SOURCE_SERVICES = "services"
SOURCE_CLIENTS = "clients"


def toggle_source(mode: str) -> str:
    return f"toggle:{mode}"


def _read_toggle(mode: str) -> Callable[[InstanceClient], bool]:
    return lambda client: bool(client.read_toggle(mode))


_READERS: dict[str, Callable[[InstanceClient], Any]] = {
    SOURCE_REWRITES: lambda client: tuple(client.read_rewrites()),
    SOURCE_FILTERING: lambda client: client.read_filtering(),
    SOURCE_SERVICES: lambda client: tuple(client.read_services()),
    SOURCE_CLIENTS: lambda client: tuple(client.read_clients()),
}
for _mode in TOGGLE_MODES:
    _READERS[toggle_source(_mode)] = _read_toggle(_mode)


class CancelToken:
    """Cooperative cancellation shared by every worker of one run."""

    def __init__(self, deadline_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline: float | None = None
        self.apply_deadline(deadline_seconds)

    def apply_deadline(self, deadline_seconds: float | None) -> None:
        """Tighten the deadline to ``deadline_seconds`` from now; an earlier one is kept."""
        if deadline_seconds is None or deadline_seconds <= 0:
            return
        deadline = time.monotonic() + deadline_seconds
        if self._deadline is None or deadline < self._deadline:
            self._deadline = deadline

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False


class SnapshotCache:
    """Memoized snapshot reads of one instance.

    Each source is read at most once; a failed read is remembered and raised
    again to every later caller so all domains see the same state.
    """

    def __init__(self, client: InstanceClient) -> None:
        self.client = client
        self._values: dict[str, Any] = {}
        self._errors: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def host(self) -> str:
        return self.client.host()

    def get(self, source: str) -> Any:
        with self._lock:
            if source not in self._values and source not in self._errors:
                try:
                    self._values[source] = _READERS[source](self.client)
                except Exception as exc:
                    self._errors[source] = exc
            if source in self._errors:
                stored = self._errors[source]
                raise _replay_error(stored) from stored
            return self._values[source]

    def prefetch(self, sources: Iterable[str]) -> dict[str, Exception]:
        failures: dict[str, Exception] = {}
        for source in sources:
            try:
                self.get(source)
            except Exception as exc:
                failures[source] = exc
        return failures


def _replay_error(exc: Exception) -> TransportError:
    if isinstance(exc, TransportError):
        return TransportError(exc.kind, exc.detail, status=exc.status)
    kind, _ = classify_error(exc)
    return TransportError(kind, str(exc))


def as_snapshot_cache(instance: SnapshotCache | InstanceClient) -> SnapshotCache:
    if isinstance(instance, SnapshotCache):
        return instance
    return SnapshotCache(instance)


class DomainSynchronizer:
    domain: str = ""
    sources: tuple[str, ...] = ()

    def sync(
        self,
        origin: SnapshotCache | InstanceClient,
        replica: SnapshotCache | InstanceClient,
        cancel: CancelToken | None = None,
    ) -> DomainOutcome:
        origin_cache = as_snapshot_cache(origin)
        replica_cache = as_snapshot_cache(replica)
        token = cancel or CancelToken()
        outcome = DomainOutcome(domain=self.domain)
        try:
            desired = self.read(origin_cache)
        except Exception as exc:
            outcome.error = f"origin read failed: {exc}"
            logger.warning("Skipping %s: %s", self.domain, outcome.error)
            return outcome
        try:
            current = self.read(replica_cache)
        except Exception as exc:
            outcome.error = f"replica read failed: {exc}"
            logger.warning("Skipping %s on %s: %s", self.domain, replica_cache.host(), outcome.error)
            return outcome
        self.apply(desired, current, replica_cache.client, outcome, token)
        return outcome

    def read(self, cache: SnapshotCache) -> Any:
        raise NotImplementedError

    def apply(
        self,
        desired: Any,
        current: Any,
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> None:
        raise NotImplementedError

    def _call(
        self,
        operation: str,
        key: str,
        action: Callable[[], None],
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> bool:
        if cancel.cancelled:
            outcome.skipped += 1
            return False
        outcome.calls += 1
        try:
            action()
        except Exception as exc:
            item_error = outcome.record_failure(operation, key, exc)
            logger.warning(
                "%s %s failed for %s on %s (retryable=%s): %s",
                self.domain,
                operation,
                key,
                replica.host(),
                item_error.retryable,
                exc,
            )
            return False
        logger.debug("%s %s %s on %s", self.domain, operation, key, replica.host())
        return True


class KeyedSynchronizer(DomainSynchronizer, Generic[K, T]):
    """Diff-driven synchronizer for collections of individually keyed items."""

    def key_of(self, item: T) -> K:
        raise NotImplementedError

    def equal(self, desired: T, current: T) -> bool:
        return desired == current

    def format_key(self, key: K) -> str:
        return str(key)

    def add(self, replica: InstanceClient, item: T) -> None:
        raise NotImplementedError

    def update(self, replica: InstanceClient, item: T) -> None:
        raise NotImplementedError

    def delete(self, replica: InstanceClient, item: T) -> None:
        raise NotImplementedError

    def compute(self, desired: Iterable[T], current: Iterable[T]) -> DiffResult[K, T]:
        return diff(desired, current, self.key_of, self.equal)

    def apply(
        self,
        desired: Iterable[T],
        current: Iterable[T],
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> None:
        result = self.compute(desired, current)
        outcome.unchanged = result.unchanged
        self._warn_duplicates(result, outcome)
        outcome.removed = self._run_batch("delete", result.removals, self.delete, replica, outcome, cancel)
        outcome.added = self._run_batch("add", result.additions, self.add, replica, outcome, cancel)
        outcome.updated = self._run_batch("update", result.updates, self.update, replica, outcome, cancel)
        self.after_apply(replica, outcome, cancel)

    def after_apply(self, replica: InstanceClient, outcome: DomainOutcome, cancel: CancelToken) -> None:
        return None

    def _run_batch(
        self,
        operation: str,
        items: dict[K, T],
        call: Callable[[InstanceClient, T], None],
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> int:
        succeeded = 0
        for key, item in items.items():
            if self._call(
                operation,
                self.format_key(key),
                lambda item=item: call(replica, item),
                replica,
                outcome,
                cancel,
            ):
                succeeded += 1
        return succeeded

    def _warn_duplicates(self, result: DiffResult[K, T], outcome: DomainOutcome) -> None:
        for side, keys in (("origin", result.origin_duplicates), ("replica", result.replica_duplicates)):
            for key in keys:
                outcome.warnings.append(f"duplicate key in {side} snapshot: {self.format_key(key)}")


class RewriteSynchronizer(KeyedSynchronizer[tuple[str, str], RewriteEntry]):
    """DNS rewrites keyed by the whole entry, so a changed answer is a delete plus an add."""

    domain = DOMAIN_REWRITES
    sources = (SOURCE_REWRITES,)

    def read(self, cache: SnapshotCache) -> tuple[RewriteEntry, ...]:
        return cache.get(SOURCE_REWRITES)

    def key_of(self, item: RewriteEntry) -> tuple[str, str]:
        return item.key()

    def format_key(self, key: tuple[str, str]) -> str:
        return f"{key[0]} -> {key[1]}"

    def add(self, replica: InstanceClient, item: RewriteEntry) -> None:
        replica.add_rewrite(item)

    def delete(self, replica: InstanceClient, item: RewriteEntry) -> None:
        replica.delete_rewrite(item)


class FilterSynchronizer(KeyedSynchronizer[str, Filter]):
    """Filter subscriptions of one partition; URLs are only unique per partition."""

    sources = (SOURCE_FILTERING,)

    def __init__(self, whitelist: bool) -> None:
        self.whitelist = whitelist
        self.domain = f"{DOMAIN_FILTERS}.{'whitelist' if whitelist else 'blacklist'}"

    def read(self, cache: SnapshotCache) -> tuple[Filter, ...]:
        status: FilteringStatus = cache.get(SOURCE_FILTERING)
        return status.partition(self.whitelist)

    def key_of(self, item: Filter) -> str:
        return item.key()

    def equal(self, desired: Filter, current: Filter) -> bool:
        return desired.same_settings(current)

    def add(self, replica: InstanceClient, item: Filter) -> None:
        replica.add_filter(self.whitelist, item)

    def update(self, replica: InstanceClient, item: Filter) -> None:
        replica.update_filter(self.whitelist, item)

    def delete(self, replica: InstanceClient, item: Filter) -> None:
        replica.delete_filter(self.whitelist, item)

    def after_apply(self, replica: InstanceClient, outcome: DomainOutcome, cancel: CancelToken) -> None:
        if outcome.added + outcome.updated == 0:
            return
        self._call(
            "refresh",
            "*",
            lambda: replica.refresh_filters(self.whitelist),
            replica,
            outcome,
            cancel,
        )


class ClientSynchronizer(KeyedSynchronizer[str, Client]):
    domain = DOMAIN_CLIENTS
    sources = (SOURCE_CLIENTS,)

    def read(self, cache: SnapshotCache) -> tuple[Client, ...]:
        return cache.get(SOURCE_CLIENTS)

    def key_of(self, item: Client) -> str:
        return item.key()

    def equal(self, desired: Client, current: Client) -> bool:
        return desired.equivalent(current)

    def add(self, replica: InstanceClient, item: Client) -> None:
        replica.add_client(item)

    def update(self, replica: InstanceClient, item: Client) -> None:
        # Full replacement object, never a delta.
        replica.update_client(item)

    def delete(self, replica: InstanceClient, item: Client) -> None:
        replica.delete_client(item)


class ServiceSynchronizer(KeyedSynchronizer[str, str]):
    """Blocked services, diffed by id but written back as one whole list."""

    domain = DOMAIN_SERVICES
    sources = (SOURCE_SERVICES,)

    def read(self, cache: SnapshotCache) -> tuple[str, ...]:
        return cache.get(SOURCE_SERVICES)

    def key_of(self, item: str) -> str:
        return item

    def apply(
        self,
        desired: tuple[str, ...],
        current: tuple[str, ...],
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> None:
        result = self.compute(desired, current)
        outcome.unchanged = result.unchanged
        self._warn_duplicates(result, outcome)
        if result.is_empty:
            return
        wanted = tuple(sorted(set(desired)))
        if self._call(
            "set",
            "*",
            lambda: replica.set_services(wanted),
            replica,
            outcome,
            cancel,
        ):
            outcome.added = len(result.additions)
            outcome.removed = len(result.removals)


class CustomRulesSynchronizer(DomainSynchronizer):
    """Free-text user rules, replaced as a whole list when the text differs."""

    domain = DOMAIN_CUSTOM_RULES
    sources = (SOURCE_FILTERING,)

    def read(self, cache: SnapshotCache) -> str:
        status: FilteringStatus = cache.get(SOURCE_FILTERING)
        return status.custom_rules_text()

    def apply(
        self,
        desired: str,
        current: str,
        replica: InstanceClient,
        outcome: DomainOutcome,
        cancel: CancelToken,
    ) -> None:
        if normalize_rules(desired) == normalize_rules(current):
            outcome.unchanged = 1
            return
        if self._call("set", "*", lambda: replica.set_custom_rules(desired), replica, outcome, cancel):
            outcome.updated = 1


class ToggleSynchronizer(DomainSynchronizer):
    """Feature switches: one conditional call per toggle, nothing to add or remove."""

    domain = DOMAIN_TOGGLES
    sources = (SOURCE_FILTERING,) + tuple(toggle_source(mode) for mode in TOGGLE_MODES)

    def sync(
        self,
        origin: SnapshotCache | InstanceClient,
        replica: SnapshotCache | InstanceClient,
        cancel: CancelToken | None = None,
    ) -> DomainOutcome:
        origin_cache = as_snapshot_cache(origin)
        replica_cache = as_snapshot_cache(replica)
        token = cancel or CancelToken()
        outcome = DomainOutcome(domain=self.domain)
        client = replica_cache.client

        for mode in TOGGLE_MODES:
            values = self._read_pair(toggle_source(mode), mode, origin_cache, replica_cache, outcome)
            if values is None:
                continue
            desired, current = values
            if desired == current:
                outcome.unchanged += 1
                continue
            if self._call(
                "toggle",
                mode,
                lambda mode=mode, desired=desired: client.toggle(mode, desired),
                client,
                outcome,
                token,
            ):
                outcome.updated += 1

        values = self._read_pair(SOURCE_FILTERING, "filtering", origin_cache, replica_cache, outcome)
        if values is not None:
            desired_status, current_status = values
            wanted = (desired_status.enabled, desired_status.interval)
            if wanted == (current_status.enabled, current_status.interval):
                outcome.unchanged += 1
            elif self._call(
                "toggle",
                "filtering",
                lambda: client.toggle_filtering(*wanted),
                client,
                outcome,
                token,
            ):
                outcome.updated += 1
        return outcome

    def _read_pair(
        self,
        source: str,
        key: str,
        origin: SnapshotCache,
        replica: SnapshotCache,
        outcome: DomainOutcome,
    ) -> tuple[Any, Any] | None:
        try:
            desired = origin.get(source)
        except Exception as exc:
            outcome.record_failure("read_origin", key, exc)
            return None
        try:
            current = replica.get(source)
        except Exception as exc:
            outcome.record_failure("read_replica", key, exc)
            return None
        return desired, current


def build_synchronizers(features: Iterable[str] = ALL_DOMAINS) -> list[DomainSynchronizer]:
    """Return synchronizers for the enabled domains in execution order."""
    enabled = set(features)
    unknown = enabled - set(ALL_DOMAINS)
    if unknown:
        raise ValueError(f"Unknown sync domains: {', '.join(sorted(unknown))}")
    synchronizers: list[DomainSynchronizer] = []
    for domain in ALL_DOMAINS:
        if domain not in enabled:
            continue
        if domain == DOMAIN_REWRITES:
            synchronizers.append(RewriteSynchronizer())
        elif domain == DOMAIN_FILTERS:
            synchronizers.append(FilterSynchronizer(whitelist=False))
            synchronizers.append(FilterSynchronizer(whitelist=True))
        elif domain == DOMAIN_CUSTOM_RULES:
            synchronizers.append(CustomRulesSynchronizer())
        elif domain == DOMAIN_SERVICES:
            synchronizers.append(ServiceSynchronizer())
        elif domain == DOMAIN_CLIENTS:
            synchronizers.append(ClientSynchronizer())
        elif domain == DOMAIN_TOGGLES:
            synchronizers.append(ToggleSynchronizer())
    return synchronizers
