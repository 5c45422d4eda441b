"""Typed snapshots of AdGuard Home configuration shared across sync layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DOMAIN_REWRITES = "rewrites"
DOMAIN_FILTERS = "filters"
DOMAIN_CUSTOM_RULES = "custom_rules"
DOMAIN_SERVICES = "services"
DOMAIN_CLIENTS = "clients"
DOMAIN_TOGGLES = "toggles"

# Execution order inside one replica.
ALL_DOMAINS: tuple[str, ...] = (
    DOMAIN_REWRITES,
    DOMAIN_FILTERS,
    DOMAIN_CUSTOM_RULES,
    DOMAIN_SERVICES,
    DOMAIN_CLIENTS,
    DOMAIN_TOGGLES,
)

TOGGLE_SAFEBROWSING = "safebrowsing"
TOGGLE_PARENTAL = "parental"
TOGGLE_SAFESEARCH = "safesearch"
TOGGLE_MODES: tuple[str, ...] = (TOGGLE_SAFEBROWSING, TOGGLE_PARENTAL, TOGGLE_SAFESEARCH)


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None)


@dataclass(frozen=True)
class Status:
    version: str = ""
    running: bool = True
    protection_enabled: bool = True
    dns_port: int = 53
    http_port: int = 80
    language: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Status":
        return cls(
            version=str(payload.get("version", "")),
            running=bool(payload.get("running", True)),
            protection_enabled=bool(payload.get("protection_enabled", True)),
            dns_port=int(payload.get("dns_port", 53) or 0),
            http_port=int(payload.get("http_port", 80) or 0),
            language=str(payload.get("language", "")),
        )


@dataclass(frozen=True)
class RewriteEntry:
    domain: str
    answer: str

    def key(self) -> tuple[str, str]:
        return (self.domain, self.answer)

    def to_payload(self) -> dict[str, Any]:
        return {"domain": self.domain, "answer": self.answer}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RewriteEntry":
        return cls(domain=str(payload.get("domain", "")), answer=str(payload.get("answer", "")))


@dataclass(frozen=True)
class Filter:
    url: str
    name: str = ""
    enabled: bool = True
    id: int = 0
    rules_count: int = 0

    def key(self) -> str:
        return self.url

    def same_settings(self, other: "Filter") -> bool:
        """Compare the fields a replica can be told to change; id and rule count are local."""
        return (self.name, self.url, self.enabled) == (other.name, other.url, other.enabled)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Filter":
        return cls(
            url=str(payload.get("url", "")),
            name=str(payload.get("name", "")),
            enabled=bool(payload.get("enabled", True)),
            id=int(payload.get("id", 0) or 0),
            rules_count=int(payload.get("rules_count", 0) or 0),
        )


def normalize_rules(rules: tuple[str, ...] | list[str] | str) -> str:
    if isinstance(rules, str):
        lines = rules.splitlines()
    else:
        lines = [str(line) for line in rules]
    return "\n".join(line.rstrip() for line in lines).strip()


@dataclass(frozen=True)
class FilteringStatus:
    enabled: bool = True
    interval: int = 24
    filters: tuple[Filter, ...] = ()
    whitelist_filters: tuple[Filter, ...] = ()
    user_rules: tuple[str, ...] = ()

    def partition(self, whitelist: bool) -> tuple[Filter, ...]:
        return self.whitelist_filters if whitelist else self.filters

    def custom_rules_text(self) -> str:
        return normalize_rules(self.user_rules)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FilteringStatus":
        filters = payload.get("filters") or []
        whitelist_filters = payload.get("whitelist_filters") or []
        return cls(
            enabled=bool(payload.get("enabled", True)),
            interval=int(payload.get("interval", 24) or 0),
            filters=tuple(Filter.from_payload(item) for item in filters if isinstance(item, dict)),
            whitelist_filters=tuple(
                Filter.from_payload(item) for item in whitelist_filters if isinstance(item, dict)
            ),
            user_rules=_str_tuple(payload.get("user_rules")),
        )


@dataclass(frozen=True)
class Client:
    name: str
    ids: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    upstreams: tuple[str, ...] = ()
    blocked_services: tuple[str, ...] = ()
    use_global_settings: bool = True
    use_global_blocked_services: bool = True
    filtering_enabled: bool = False
    parental_enabled: bool = False
    safebrowsing_enabled: bool = False
    safesearch_enabled: bool = False

    def key(self) -> str:
        return self.name

    def normalized(self) -> "Client":
        # The appliance does not preserve the order of these lists; upstream order is significant.
        return Client(
            name=self.name,
            ids=tuple(sorted(self.ids)),
            tags=tuple(sorted(self.tags)),
            upstreams=self.upstreams,
            blocked_services=tuple(sorted(self.blocked_services)),
            use_global_settings=self.use_global_settings,
            use_global_blocked_services=self.use_global_blocked_services,
            filtering_enabled=self.filtering_enabled,
            parental_enabled=self.parental_enabled,
            safebrowsing_enabled=self.safebrowsing_enabled,
            safesearch_enabled=self.safesearch_enabled,
        )

    def equivalent(self, other: "Client") -> bool:
        return self.normalized() == other.normalized()

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ids": list(self.ids),
            "tags": list(self.tags),
            "upstreams": list(self.upstreams),
            "blocked_services": list(self.blocked_services),
            "use_global_settings": self.use_global_settings,
            "use_global_blocked_services": self.use_global_blocked_services,
            "filtering_enabled": self.filtering_enabled,
            "parental_enabled": self.parental_enabled,
            "safebrowsing_enabled": self.safebrowsing_enabled,
            "safesearch_enabled": self.safesearch_enabled,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Client":
        return cls(
            name=str(payload.get("name", "")),
            ids=_str_tuple(payload.get("ids")),
            tags=_str_tuple(payload.get("tags")),
            upstreams=_str_tuple(payload.get("upstreams")),
            blocked_services=_str_tuple(payload.get("blocked_services")),
            use_global_settings=bool(payload.get("use_global_settings", True)),
            use_global_blocked_services=bool(payload.get("use_global_blocked_services", True)),
            filtering_enabled=bool(payload.get("filtering_enabled", False)),
            parental_enabled=bool(payload.get("parental_enabled", False)),
            safebrowsing_enabled=bool(payload.get("safebrowsing_enabled", False)),
            safesearch_enabled=bool(payload.get("safesearch_enabled", False)),
        )
