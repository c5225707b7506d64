"""Pytest configuration and fixtures for path-parity tests.

This file provides:
- make_capture / make_case: Model builders with sensible defaults
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock reference/candidate servers
- Fixtures: Shared test infrastructure (servers, corpus files)
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Generator

import pytest

from path_parity.models import EndpointRole, ResponseCapture, TestCase

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def make_case(path: str = "geohack.php?pagename=Test&params=10_N_20_E", index: int = 1) -> TestCase:
    """Create a TestCase for testing."""
    return TestCase(index=index, path=path)


def make_capture(
    body: bytes = b"",
    role: EndpointRole = EndpointRole.REFERENCE,
    status_code: int = 200,
    elapsed_ms: float = 10.0,
) -> ResponseCapture:
    """Create a ResponseCapture for testing.

    Prefer this over constructing ResponseCapture directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return ResponseCapture(
        role=role,
        body=body,
        status_code=status_code,
        elapsed_ms=elapsed_ms,
    )


def write_corpus(directory: Path, *lines: str, name: str = "corpus.txt") -> Path:
    """Write a corpus file with one line per argument."""
    path = directory / name
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    find_free_port() has a race window: another process can grab the port
    between when we find it and when our server binds. This class keeps the
    socket open until just before the server starts.

    Usage:
        reservation = PortReservation()
        server = MockServer(reservation, variant="reference")
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def find_free_port() -> int:
    """Find an available port on localhost (nothing listens on it afterwards)."""
    with PortReservation() as reservation:
        return reservation.port


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages a mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess. The "reference"
    variant renders pretty-printed HTML; the "candidate" variant renders the
    same content compactly and drifts on specific pages.
    """

    def __init__(self, port: int | PortReservation, variant: str = "reference") -> None:
        if isinstance(port, PortReservation):
            self._reservation: PortReservation | None = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.variant = variant
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}/"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
                "--variant", self.variant,
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer(variant={self.variant}) failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess (SIGTERM, then SIGKILL after 5s)."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable process; nothing more to do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def fixture_dual_mock_servers() -> Generator[dict[str, MockServer], None, None]:
    """Start the reference and candidate mock servers.

    Session-scoped: servers start once per test session.
    Yields dict with keys "reference" and "candidate".
    """
    reservation_ref = PortReservation()
    reservation_cand = PortReservation()

    with MockServer(reservation_ref, variant="reference") as reference:
        with MockServer(reservation_cand, variant="candidate") as candidate:
            yield {"reference": reference, "candidate": candidate}


@pytest.fixture
def unreachable_base_url() -> str:
    """Base URL of a port with nothing listening on it."""
    return f"http://127.0.0.1:{find_free_port()}/"


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests with markers based on their directory.

    Enables running subsets via:
        pytest -m integration
        pytest -m unit
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
