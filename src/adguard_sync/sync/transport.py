"""AdGuard Home REST client implementing the instance capability interface."""

from __future__ import annotations

import base64
import json
import logging
import socket
import ssl
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from adguard_sync.config import InstanceConfig
from adguard_sync.models import TOGGLE_MODES, Client, Filter, FilteringStatus, RewriteEntry, Status
from adguard_sync.sync.client import (
    ERROR_DECODE,
    ERROR_HTTP,
    ERROR_NETWORK,
    ERROR_TIMEOUT,
    TransportError,
)

logger = logging.getLogger(__name__)


def _check_mode(mode: str) -> str:
    if mode not in TOGGLE_MODES:
        raise ValueError(f"Unsupported toggle mode: {mode}")
    return mode


class HttpInstanceClient:
    def __init__(self, config: InstanceConfig) -> None:
        self.config = config
        self.base_url = config.api_url()
        self._host = urlparse(self.base_url).netloc
        self._auth_header: str | None = None
        if config.username and config.password:
            token = base64.b64encode(f"{config.username}:{config.password}".encode("utf-8")).decode("ascii")
            self._auth_header = f"Basic {token}"
        self._ssl_context: ssl.SSLContext | None = None
        if config.insecure_skip_verify:
            self._ssl_context = ssl.create_default_context()
            self._ssl_context.check_hostname = False
            self._ssl_context.verify_mode = ssl.CERT_NONE

    def host(self) -> str:
        return self._host

    def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        text: str | None = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers: dict[str, str] = {}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        elif text is not None:
            data = text.encode("utf-8")
            headers["Content-Type"] = "text/plain"
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        request = Request(url=url, data=data, method=method, headers=headers)
        try:
            with urlopen(request, timeout=self.config.timeout_seconds, context=self._ssl_context) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            try:
                detail = exc.read().decode("utf-8", errors="replace").strip()
            except Exception:
                detail = ""
            raise TransportError(ERROR_HTTP, detail or str(exc.reason), status=int(exc.code)) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransportError(ERROR_TIMEOUT, f"{method} {url} timed out") from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise TransportError(ERROR_TIMEOUT, f"{method} {url} timed out") from exc
            raise TransportError(ERROR_NETWORK, f"{method} {url}: {exc.reason}") from exc
        except OSError as exc:
            raise TransportError(ERROR_NETWORK, f"{method} {url}: {exc}") from exc
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            # Mutating endpoints answer with a bare "OK".
            if method == "GET":
                raise TransportError(ERROR_DECODE, f"GET {url} returned non-JSON body") from None
            return body

    def _get_object(self, path: str) -> dict[str, Any]:
        payload = self._request("GET", path)
        if not isinstance(payload, dict):
            raise TransportError(ERROR_DECODE, f"GET {path} did not return an object")
        return payload

    def _get_list(self, path: str) -> list[Any]:
        payload = self._request("GET", path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError(ERROR_DECODE, f"GET {path} did not return a list")
        return payload

    def read_status(self) -> Status:
        return Status.from_payload(self._get_object("status"))

    def read_rewrites(self) -> tuple[RewriteEntry, ...]:
        return tuple(
            RewriteEntry.from_payload(item) for item in self._get_list("rewrite/list") if isinstance(item, dict)
        )

    def add_rewrite(self, entry: RewriteEntry) -> None:
        logger.info("Add rewrite entry on %s: domain=%s answer=%s", self._host, entry.domain, entry.answer)
        self._request("POST", "rewrite/add", payload=entry.to_payload())

    def delete_rewrite(self, entry: RewriteEntry) -> None:
        logger.info("Delete rewrite entry on %s: domain=%s answer=%s", self._host, entry.domain, entry.answer)
        self._request("POST", "rewrite/delete", payload=entry.to_payload())

    def read_filtering(self) -> FilteringStatus:
        return FilteringStatus.from_payload(self._get_object("filtering/status"))

    def add_filter(self, whitelist: bool, item: Filter) -> None:
        logger.info("Add filter on %s: url=%s whitelist=%s", self._host, item.url, whitelist)
        self._request(
            "POST",
            "filtering/add_url",
            payload={"name": item.name, "url": item.url, "whitelist": whitelist},
        )
        if not item.enabled:
            # add_url always creates an enabled filter.
            self.update_filter(whitelist, item)

    def update_filter(self, whitelist: bool, item: Filter) -> None:
        logger.info(
            "Update filter on %s: url=%s enabled=%s whitelist=%s",
            self._host,
            item.url,
            item.enabled,
            whitelist,
        )
        self._request(
            "POST",
            "filtering/set_url",
            payload={
                "url": item.url,
                "whitelist": whitelist,
                "data": {"name": item.name, "url": item.url, "enabled": item.enabled},
            },
        )

    def delete_filter(self, whitelist: bool, item: Filter) -> None:
        logger.info("Delete filter on %s: url=%s whitelist=%s", self._host, item.url, whitelist)
        self._request("POST", "filtering/remove_url", payload={"url": item.url, "whitelist": whitelist})

    def refresh_filters(self, whitelist: bool) -> None:
        logger.info("Refresh filters on %s: whitelist=%s", self._host, whitelist)
        self._request("POST", "filtering/refresh", payload={"whitelist": whitelist})

    def set_custom_rules(self, rules: str) -> None:
        logger.info("Set user rules on %s: lines=%d", self._host, len(rules.splitlines()))
        self._request("POST", "filtering/set_rules", text=rules)

    def toggle_filtering(self, enabled: bool, interval: int) -> None:
        logger.info("Toggle filtering on %s: enabled=%s interval=%d", self._host, enabled, interval)
        self._request("POST", "filtering/config", payload={"enabled": enabled, "interval": interval})

    def read_services(self) -> tuple[str, ...]:
        return tuple(str(item) for item in self._get_list("blocked_services/list"))

    def set_services(self, services: tuple[str, ...]) -> None:
        logger.info("Set blocked services on %s: count=%d", self._host, len(services))
        self._request("POST", "blocked_services/set", payload=list(services))

    def read_clients(self) -> tuple[Client, ...]:
        payload = self._request("GET", "clients")
        if payload is None:
            return ()
        if not isinstance(payload, dict):
            raise TransportError(ERROR_DECODE, "GET clients did not return an object")
        return tuple(
            Client.from_payload(item) for item in payload.get("clients") or [] if isinstance(item, dict)
        )

    def add_client(self, client: Client) -> None:
        logger.info("Add client on %s: name=%s", self._host, client.name)
        self._request("POST", "clients/add", payload=client.to_payload())

    def update_client(self, client: Client) -> None:
        logger.info("Update client on %s: name=%s", self._host, client.name)
        self._request("POST", "clients/update", payload={"name": client.name, "data": client.to_payload()})

    def delete_client(self, client: Client) -> None:
        logger.info("Delete client on %s: name=%s", self._host, client.name)
        self._request("POST", "clients/delete", payload={"name": client.name})

    def read_toggle(self, mode: str) -> bool:
        payload = self._get_object(f"{_check_mode(mode)}/status")
        return bool(payload.get("enabled", False))

    def toggle(self, mode: str, enabled: bool) -> None:
        logger.info("Toggle %s on %s: enabled=%s", mode, self._host, enabled)
        target = "enable" if enabled else "disable"
        self._request("POST", f"{_check_mode(mode)}/{target}")
