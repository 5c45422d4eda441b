from __future__ import annotations

import base64
import json
import socket
import unittest
from dataclasses import replace

from adguard_sync.config import InstanceConfig
from adguard_sync.models import Client, Filter, RewriteEntry
from adguard_sync.sync.client import ERROR_DECODE, ERROR_HTTP, ERROR_NETWORK, ERROR_TIMEOUT, TransportError
from adguard_sync.sync.transport import HttpInstanceClient
from tests.appliance import FakeApplianceServer


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


class HttpInstanceClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.server = FakeApplianceServer()
        self.server.start()
        self.addCleanup(self.server.stop)

    def _client(self, **overrides) -> HttpInstanceClient:
        config = InstanceConfig(url=self.server.url, username="admin", password="secret", timeout_seconds=2.0)
        if overrides:
            config = replace(config, **overrides)
        return HttpInstanceClient(config)

    def test_reads_status_with_basic_auth(self) -> None:
        self.server.route("GET", "/control/status", {"version": "v0.107.43", "running": True, "dns_port": 53})
        status = self._client().read_status()
        self.assertEqual(status.version, "v0.107.43")
        request = self.server.requests[0]
        expected = "Basic " + base64.b64encode(b"admin:secret").decode("ascii")
        self.assertEqual(request["headers"].get("authorization"), expected)

    def test_custom_api_path_is_used(self) -> None:
        self.server.route("GET", "/adguard/api/status", {"version": "v1"})
        client = self._client(api_path="adguard/api")
        self.assertEqual(client.read_status().version, "v1")

    def test_reads_filtering_partitions_and_rules(self) -> None:
        self.server.route(
            "GET",
            "/control/filtering/status",
            {
                "enabled": True,
                "interval": 24,
                "filters": [{"url": "https://a.example/list.txt", "name": "a", "enabled": True, "id": 1}],
                "whitelist_filters": None,
                "user_rules": ["||ads.example^"],
            },
        )
        status = self._client().read_filtering()
        self.assertEqual([item.url for item in status.filters], ["https://a.example/list.txt"])
        self.assertEqual(status.whitelist_filters, ())
        self.assertEqual(status.custom_rules_text(), "||ads.example^")

    def test_empty_rewrite_list(self) -> None:
        self.server.route("GET", "/control/rewrite/list", [])
        self.assertEqual(self._client().read_rewrites(), ())

    def test_add_rewrite_posts_json(self) -> None:
        self._client().add_rewrite(RewriteEntry(domain="nas.lan", answer="10.0.0.5"))
        request = self.server.requests[-1]
        self.assertEqual((request["method"], request["path"]), ("POST", "/control/rewrite/add"))
        self.assertEqual(json.loads(request["body"]), {"domain": "nas.lan", "answer": "10.0.0.5"})

    def test_disabled_filter_is_added_then_disabled(self) -> None:
        self._client().add_filter(True, Filter(url="https://b.example/allow.txt", name="allow", enabled=False))
        paths = [request["path"] for request in self.server.requests]
        self.assertEqual(paths, ["/control/filtering/add_url", "/control/filtering/set_url"])
        update = json.loads(self.server.requests[1]["body"])
        self.assertTrue(update["whitelist"])
        self.assertFalse(update["data"]["enabled"])

    def test_custom_rules_are_sent_as_plain_text(self) -> None:
        self._client().set_custom_rules("||a.example^\n@@||b.example^")
        request = self.server.requests[-1]
        self.assertEqual(request["path"], "/control/filtering/set_rules")
        self.assertEqual(request["headers"].get("content-type"), "text/plain")
        self.assertEqual(request["body"], "||a.example^\n@@||b.example^")

    def test_update_client_wraps_full_object(self) -> None:
        client = Client(name="tv", ids=("10.0.0.7",), tags=("device_tv",))
        self._client().update_client(client)
        body = json.loads(self.server.requests[-1]["body"])
        self.assertEqual(body["name"], "tv")
        self.assertEqual(body["data"]["ids"], ["10.0.0.7"])
        self.assertEqual(body["data"]["tags"], ["device_tv"])

    def test_read_clients_unwraps_object(self) -> None:
        self.server.route("GET", "/control/clients", {"clients": [{"name": "tv", "ids": ["10.0.0.7"]}]})
        clients = self._client().read_clients()
        self.assertEqual([(client.name, client.ids) for client in clients], [("tv", ("10.0.0.7",))])

    def test_toggle_hits_mode_endpoint(self) -> None:
        self.server.route("GET", "/control/parental/status", {"enabled": True, "sensitivity": 13})
        client = self._client()
        self.assertTrue(client.read_toggle("parental"))
        client.toggle("safesearch", False)
        self.assertEqual(self.server.requests[-1]["path"], "/control/safesearch/disable")
        with self.assertRaises(ValueError):
            client.toggle("dhcp", True)

    def test_blocked_services_set_posts_list(self) -> None:
        self._client().set_services(("facebook", "tiktok"))
        self.assertEqual(json.loads(self.server.requests[-1]["body"]), ["facebook", "tiktok"])

    def test_client_error_is_not_retryable(self) -> None:
        self.server.route("POST", "/control/filtering/add_url", "invalid url", status=400)
        with self.assertRaises(TransportError) as ctx:
            self._client().add_filter(False, Filter(url="nope"))
        self.assertEqual(ctx.exception.kind, ERROR_HTTP)
        self.assertEqual(ctx.exception.status, 400)
        self.assertFalse(ctx.exception.retryable)
        self.assertIn("invalid url", str(ctx.exception))

    def test_server_error_is_retryable(self) -> None:
        self.server.route("POST", "/control/rewrite/delete", "boom", status=503)
        with self.assertRaises(TransportError) as ctx:
            self._client().delete_rewrite(RewriteEntry(domain="a", answer="b"))
        self.assertTrue(ctx.exception.retryable)

    def test_non_json_read_is_a_decode_error(self) -> None:
        self.server.route("GET", "/control/status", "<html>login</html>")
        with self.assertRaises(TransportError) as ctx:
            self._client().read_status()
        self.assertEqual(ctx.exception.kind, ERROR_DECODE)

    def test_slow_response_is_a_timeout(self) -> None:
        self.server.route("GET", "/control/status", {"version": "v1"})
        self.server.delays[("GET", "/control/status")] = 1.0
        with self.assertRaises(TransportError) as ctx:
            self._client(timeout_seconds=0.2).read_status()
        self.assertEqual(ctx.exception.kind, ERROR_TIMEOUT)
        self.assertTrue(ctx.exception.retryable)


class HttpInstanceClientConnectivityTests(unittest.TestCase):
    def test_refused_connection_is_retryable_network_error(self) -> None:
        client = HttpInstanceClient(InstanceConfig(url=f"http://127.0.0.1:{_unused_port()}", timeout_seconds=2.0))
        with self.assertRaises(TransportError) as ctx:
            client.read_status()
        self.assertEqual(ctx.exception.kind, ERROR_NETWORK)
        self.assertTrue(ctx.exception.retryable)

    def test_host_is_taken_from_url(self) -> None:
        client = HttpInstanceClient(InstanceConfig(url="https://dns.example:3000/"))
        self.assertEqual(client.host(), "dns.example:3000")
        self.assertEqual(client.base_url, "https://dns.example:3000/control")


if __name__ == "__main__":
    unittest.main()
