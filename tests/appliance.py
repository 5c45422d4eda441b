from __future__ import annotations

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any


class FakeApplianceServer:
    """Scripted AdGuard Home HTTP endpoint recording every request it receives."""

    def __init__(self, host: str = "127.0.0.1") -> None:
        self.host = host
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.delays: dict[tuple[str, str], float] = {}
        self.requests: list[dict[str, Any]] = []
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def route(self, method: str, path: str, payload: Any, status: int = 200) -> None:
        self.routes[(method, path)] = (status, payload)

    def start(self) -> str:
        httpd = ThreadingHTTPServer((self.host, 0), self._build_handler())
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        return self.url

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._httpd = None
        self._thread = None

    @property
    def url(self) -> str:
        assert self._httpd is not None
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    def _build_handler(self):
        server = self

        class _Handler(BaseHTTPRequestHandler):
            def _respond(self, method: str) -> None:
                length = int(self.headers.get("Content-Length", "0") or 0)
                body = self.rfile.read(length).decode("utf-8") if length else ""
                with server._lock:
                    server.requests.append(
                        {
                            "method": method,
                            "path": self.path,
                            "headers": {name.lower(): value for name, value in self.headers.items()},
                            "body": body,
                        }
                    )
                key = (method, self.path)
                delay = server.delays.get(key, 0.0)
                if delay:
                    time.sleep(delay)
                status, payload = server.routes.get(key, (200, "OK" if method == "POST" else None))
                if payload is None:
                    self.send_response(404)
                    self.end_headers()
                    return
                if isinstance(payload, str):
                    encoded = payload.encode("utf-8")
                    content_type = "text/plain"
                else:
                    encoded = json.dumps(payload).encode("utf-8")
                    content_type = "application/json"
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

            def do_GET(self) -> None:  # noqa: N802
                self._respond("GET")

            def do_POST(self) -> None:  # noqa: N802
                self._respond("POST")

            def log_message(self, format: str, *args: Any) -> None:
                return

        return _Handler
