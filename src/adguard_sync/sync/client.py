"""Instance client capability interface and transport error classification."""

from __future__ import annotations

from typing import Protocol

from adguard_sync.models import Client, Filter, FilteringStatus, RewriteEntry, Status

ERROR_NETWORK = "network"
ERROR_TIMEOUT = "timeout"
ERROR_HTTP = "http"
ERROR_DECODE = "decode"
ERROR_UNEXPECTED = "unexpected"

_RETRYABLE_KINDS = frozenset({ERROR_NETWORK, ERROR_TIMEOUT})


class TransportError(Exception):
    """A single instance call failed on the wire or was rejected by the appliance."""

    def __init__(self, kind: str, detail: str, status: int | None = None) -> None:
        self.kind = kind
        self.detail = detail
        self.status = status
        if status is not None:
            message = f"{kind} error (HTTP {status}): {detail}"
        else:
            message = f"{kind} error: {detail}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.kind in _RETRYABLE_KINDS:
            return True
        if self.kind == ERROR_HTTP and self.status is not None:
            return self.status >= 500 or self.status == 429
        return False


def classify_error(exc: BaseException) -> tuple[str, bool]:
    """Return ``(kind, retryable)`` for any exception raised by an instance call."""
    if isinstance(exc, TransportError):
        return exc.kind, exc.retryable
    if isinstance(exc, TimeoutError):
        return ERROR_TIMEOUT, True
    if isinstance(exc, ConnectionError):
        return ERROR_NETWORK, True
    return ERROR_UNEXPECTED, False


class InstanceClient(Protocol):
    def host(self) -> str:
        ...

    def read_status(self) -> Status:
        ...

    def read_rewrites(self) -> tuple[RewriteEntry, ...]:
        ...

    def add_rewrite(self, entry: RewriteEntry) -> None:
        ...

    def delete_rewrite(self, entry: RewriteEntry) -> None:
        ...

    def read_filtering(self) -> FilteringStatus:
        ...

    def add_filter(self, whitelist: bool, item: Filter) -> None:
        ...

    def update_filter(self, whitelist: bool, item: Filter) -> None:
        ...

    def delete_filter(self, whitelist: bool, item: Filter) -> None:
        ...

    def refresh_filters(self, whitelist: bool) -> None:
        ...

    def set_custom_rules(self, rules: str) -> None:
        ...

    def toggle_filtering(self, enabled: bool, interval: int) -> None:
        ...

    def read_services(self) -> tuple[str, ...]:
        ...

    def set_services(self, services: tuple[str, ...]) -> None:
        ...

    def read_clients(self) -> tuple[Client, ...]:
        ...

    def add_client(self, client: Client) -> None:
        ...

    def update_client(self, client: Client) -> None:
        ...

    def delete_client(self, client: Client) -> None:
        ...

    def read_toggle(self, mode: str) -> bool:
        ...

    def toggle(self, mode: str, enabled: bool) -> None:
        ...
