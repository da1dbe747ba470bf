#!/usr/bin/env python3
"""
In-memory License Registry

This module provides:
- LicenseRegistry: a lock-guarded, dict-backed store of issued licenses
- LicenseHTTPHandler: HTTP request handler exposing the license API
- start_license_server: launches a ThreadingHTTPServer in a daemon thread
- LicenseRegistryClient: thin HTTP client matching the API shape
"""

import json
import math
import re
import threading
import time
import urllib.parse
import urllib.request
import urllib.error
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, List, Optional, Any, Tuple
from dataclasses import dataclass, asdict
from enum import Enum
from uuid import uuid4

from ..admin import render_admin_page


DEFAULT_TTL_MS = 3 * 24 * 60 * 60 * 1000
DEFAULT_KEY_LENGTH = 6
DEFAULT_MAX_BODY_BYTES = 64 * 1024

_HEX_DIGITS = re.compile(rb"[0-9A-Fa-f]+")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class ValidationOutcome(Enum):
    """Result of validating a key against a host"""
    VALID = "License valid"
    INVALID = "Invalid License"
    EXPIRED = "Expired License"
    WRONG_PRODUCT = "License for incorrect product"

    @property
    def ok(self) -> bool:
        return self is ValidationOutcome.VALID


class LicenseError(Exception):
    """Base class for request-level registry errors."""


class ValidationError(LicenseError):
    """Create request is missing or has malformed fields."""


class NotFoundError(LicenseError):
    """No license stored under the requested key."""


@dataclass
class License:
    """License record dataclass"""
    key: str
    host: str
    expires: int

    def is_expired(self, now: int) -> bool:
        return self.expires < now

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serialisable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'License':
        """Create from dictionary."""
        return cls(key=str(data['key']), host=str(data['host']), expires=int(data['expires']))


# ---------------------------------------------------------------------------
# In-memory registry
# ---------------------------------------------------------------------------

class LicenseRegistry:
    """Thread-safe, dict-backed license registry.

    Expired records stay in the map until they are touched by
    :meth:`validate_license` or removed in bulk by :meth:`sweep_expired`.
    """

    def __init__(self, default_ttl_ms: int = DEFAULT_TTL_MS,
                 key_length: int = DEFAULT_KEY_LENGTH,
                 clock: Callable[[], int] = now_ms):
        if key_length < 1 or key_length > 32:
            raise ValueError(f"key_length must be between 1 and 32, got {key_length}")
        self._lock = threading.Lock()
        self._licenses: Dict[str, License] = {}
        self._default_ttl_ms = default_ttl_ms
        self._key_length = key_length
        self._clock = clock

    def _new_key(self) -> str:
        # caller holds the lock
        while True:
            key = uuid4().hex[:self._key_length]
            if key not in self._licenses:
                return key

    def list_licenses(self) -> List[License]:
        with self._lock:
            return list(self._licenses.values())

    def get_license(self, key: str) -> Optional[License]:
        with self._lock:
            return self._licenses.get(key)

    def get_license_count(self) -> int:
        with self._lock:
            return len(self._licenses)

    def create_license(self, host: Any, expires: Any = None) -> License:
        if not isinstance(host, str) or not host.strip():
            raise ValidationError("No host defined in request body")
        if expires is not None and (isinstance(expires, bool)
                                    or not isinstance(expires, (int, float))
                                    or not math.isfinite(expires)):
            raise ValidationError("expires must be a timestamp in milliseconds")

        with self._lock:
            if not expires:
                expires = self._clock() + self._default_ttl_ms
            lic = License(key=self._new_key(), host=host, expires=int(expires))
            self._licenses[lic.key] = lic
        return lic

    def delete_license(self, key: str) -> None:
        with self._lock:
            if self._licenses.pop(key, None) is None:
                raise NotFoundError("License not found")

    def validate_license(self, key: Optional[str], host: Optional[str]) -> ValidationOutcome:
        with self._lock:
            lic = self._licenses.get(key) if key is not None else None
            if lic is None:
                return ValidationOutcome.INVALID
            if lic.is_expired(self._clock()):
                del self._licenses[key]
                return ValidationOutcome.EXPIRED
            if lic.host != host:
                return ValidationOutcome.WRONG_PRODUCT
        return ValidationOutcome.VALID

    def sweep_expired(self) -> int:
        """Drop every expired record. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, lic in self._licenses.items() if lic.is_expired(now)]
            for key in expired:
                del self._licenses[key]
        return len(expired)


# ---------------------------------------------------------------------------
# HTTP handler
# ---------------------------------------------------------------------------

class BadRequest(Exception):
    """Request body could not be parsed (400)."""


class PayloadTooLarge(Exception):
    """Request body exceeds the configured limit (413)."""


def _make_handler(registry: LicenseRegistry,
                  max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
                  admin_ui: bool = True,
                  access_log: bool = False):
    """Create a handler class bound to the given registry instance."""

    class LicenseHTTPHandler(BaseHTTPRequestHandler):

        def log_message(self, format, *args):
            if access_log:
                super().log_message(format, *args)

        def end_headers(self):
            for name, value in CORS_HEADERS.items():
                self.send_header(name, value)
            super().end_headers()

        def _send(self, body: bytes, status: int, content_type: Optional[str]):
            self.send_response(status)
            if content_type:
                self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

        def _json_response(self, data: Any, status: int = 200):
            self._send(json.dumps(data).encode("utf-8"), status, "application/json")

        def _error(self, message: str, status: int):
            self._json_response({"error": message}, status=status)

        def _invalid_route(self):
            self._error("Invalid route", 404)

        def _read_chunked(self) -> bytes:
            chunks = []
            total = 0
            while True:
                line = self.rfile.readline(1024)
                size_field = line.split(b";", 1)[0].strip()
                if not _HEX_DIGITS.fullmatch(size_field):
                    raise BadRequest("Malformed chunked body")
                size = int(size_field, 16)
                if size == 0:
                    # discard trailers up to the blank line
                    while self.rfile.readline(1024) not in (b"\r\n", b"\n", b""):
                        pass
                    break
                total += size
                if total > max_body_bytes:
                    raise PayloadTooLarge()
                chunks.append(self.rfile.read(size))
                self.rfile.readline(1024)
            return b"".join(chunks)

        def _read_body(self) -> bytes:
            """Accumulate the full request body before it is parsed."""
            if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
                return self._read_chunked()
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                raise BadRequest("Invalid Content-Length")
            if length > max_body_bytes:
                # drain so the client sees the response, not a reset
                while length > 0:
                    piece = self.rfile.read(min(length, 65536))
                    if not piece:
                        break
                    length -= len(piece)
                raise PayloadTooLarge()
            return self.rfile.read(length) if length > 0 else b""

        def _read_json(self) -> Dict[str, Any]:
            raw = self._read_body()
            try:
                data = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                raise BadRequest("Malformed JSON body")
            if not isinstance(data, dict):
                raise BadRequest("Malformed JSON body")
            return data

        def _route(self):
            parsed = urllib.parse.urlparse(self.path)
            path = parsed.path.rstrip("/") or "/"
            qs = urllib.parse.parse_qs(parsed.query)
            return path, qs

        def do_OPTIONS(self):
            self._send(b"", 200, None)

        def do_GET(self):
            path, qs = self._route()

            if path == "/licenses":
                self._json_response([lic.to_dict() for lic in registry.list_licenses()])

            elif path == "/validate":
                key = qs.get("license", [None])[0]
                host = qs.get("host", [None])[0]
                outcome = registry.validate_license(key, host)
                if outcome.ok:
                    self._json_response({"status": outcome.value})
                else:
                    self._error(outcome.value, 403)

            elif path == "/admin" and admin_ui:
                page = render_admin_page(registry.list_licenses(), now_ms())
                self._send(page.encode("utf-8"), 200, "text/html; charset=utf-8")

            else:
                self._invalid_route()

        def do_POST(self):
            path, _ = self._route()
            if path != "/licenses":
                self._invalid_route()
                return

            try:
                data = self._read_json()
                lic = registry.create_license(data.get("host"), data.get("expires"))
            except PayloadTooLarge:
                self.close_connection = True
                self._error("Request body too large", 413)
            except BadRequest as exc:
                self.close_connection = True
                self._error(str(exc), 400)
            except ValidationError as exc:
                self._error(str(exc), 500)
            else:
                self._json_response(lic.to_dict())

        def do_DELETE(self):
            path, _ = self._route()
            if not path.startswith("/licenses/"):
                self._invalid_route()
                return

            key = urllib.parse.unquote(path[len("/licenses/"):])
            try:
                registry.delete_license(key)
            except NotFoundError as exc:
                self._error(str(exc), 500)
            else:
                self._json_response({"success": True})

        def __getattr__(self, name):
            # any other method, HEAD and custom verbs included
            if name.startswith("do_"):
                return self._invalid_route
            raise AttributeError(name)

    return LicenseHTTPHandler


def start_license_server(
    registry: LicenseRegistry,
    host: str = "0.0.0.0",
    port: int = 8004,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    admin_ui: bool = True,
    access_log: bool = False,
) -> ThreadingHTTPServer:
    """Start a ThreadingHTTPServer in a daemon thread and return the server."""
    handler = _make_handler(
        registry,
        max_body_bytes=max_body_bytes,
        admin_ui=admin_ui,
        access_log=access_log,
    )
    server = ThreadingHTTPServer((host, port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server


# ---------------------------------------------------------------------------
# HTTP client (used by the CLI to talk to a running server)
# ---------------------------------------------------------------------------

class LicenseAPIError(Exception):
    """The server answered with an error status."""

    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class LicenseRegistryClient:
    """Thin HTTP client for the license API."""

    def __init__(self, host: str = "localhost", port: int = 8004):
        self._base = f"http://{host}:{port}"
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(f"{self._base}{path}", data=data, method=method)
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with self._opener.open(req, timeout=10) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise LicenseAPIError(exc.code, _error_message(exc)) from None

    def list_licenses(self) -> List[License]:
        return [License.from_dict(d) for d in self._request("GET", "/licenses")]

    def create_license(self, host: str, expires: Optional[int] = None) -> License:
        payload: Dict[str, Any] = {"host": host}
        if expires is not None:
            payload["expires"] = expires
        return License.from_dict(self._request("POST", "/licenses", payload))

    def delete_license(self, key: str) -> None:
        self._request("DELETE", f"/licenses/{urllib.parse.quote(key, safe='')}")

    def validate_license(self, key: str, host: str) -> Tuple[bool, str]:
        qs = urllib.parse.urlencode({"license": key, "host": host})
        try:
            data = self._request("GET", f"/validate?{qs}")
        except LicenseAPIError as exc:
            if exc.status == 403:
                return False, exc.message
            raise
        return True, data.get("status", "")


def _error_message(exc: urllib.error.HTTPError) -> str:
    try:
        data = json.loads(exc.read().decode("utf-8"))
    except (ValueError, OSError):
        return exc.reason or "request failed"
    if isinstance(data, dict) and "error" in data:
        return str(data["error"])
    return exc.reason or "request failed"
