"""
Pytest configuration and shared fixtures.
"""

import pytest

from licman.registry import LicenseRegistry, LicenseRegistryClient, start_license_server


START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    """Fixture for a controllable clock."""
    return FakeClock()


@pytest.fixture
def registry(clock):
    """Fixture for a LicenseRegistry driven by the fake clock."""
    return LicenseRegistry(clock=clock)


@pytest.fixture
def live_registry():
    """Fixture for a LicenseRegistry on the wall clock."""
    return LicenseRegistry()


@pytest.fixture
def server(live_registry):
    """Fixture for a running license server on an ephemeral port."""
    srv = start_license_server(live_registry, host="127.0.0.1", port=0, max_body_bytes=1024)
    yield srv
    srv.shutdown()
    srv.server_close()


@pytest.fixture
def server_port(server):
    return server.server_address[1]


@pytest.fixture
def client(server_port):
    """Fixture for a client talking to the running server."""
    return LicenseRegistryClient(host="127.0.0.1", port=server_port)
