"""Pytest configuration and fixtures for http-dispatch tests.

This file provides:
- make_request: HttpRequest factory with sensible defaults
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock HTTP server
- Fixtures: Shared test infrastructure (executor, live servers, throwaway CA)
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Generator

import pytest
import trustme

from http_dispatch.executor import Executor
from http_dispatch.models import (
    BodyType,
    ExecutorConfig,
    HttpRequest,
    KeyValueItem,
    RequestSettings,
)

# Project root for subprocess cwd
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def make_request(
    method: str = "GET",
    url: str = "http://test.local/resource",
    headers: list[tuple[str, str]] | None = None,
    body_type: BodyType | str = BodyType.NONE,
    body: str | None = None,
    form_data: list[KeyValueItem] | None = None,
    follow_redirects: bool = True,
    verify_ssl: bool = True,
) -> HttpRequest:
    """Create an HttpRequest for testing.

    Prefer this over constructing HttpRequest directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return HttpRequest(
        method=method,
        url=url,
        headers=headers or [],
        body_type=body_type,
        body=body,
        form_data=form_data or [],
        settings=RequestSettings(
            follow_redirects=follow_redirects, verify_ssl=verify_ssl
        ),
    )


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    Usage:
        reservation = PortReservation()
        # port is held exclusively until release()
        server = MockServer(reservation)
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
    """Find a port nothing is listening on (used for connection-refused tests)."""
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
    """Manages the mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess, over HTTPS when
    given a certificate and key.
    """

    def __init__(
        self,
        port: int | PortReservation,
        certfile: Path | None = None,
        keyfile: Path | None = None,
    ) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self._certfile = certfile
        self._keyfile = keyfile
        scheme = "https" if certfile else "http"
        self.base_url = f"{scheme}://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        args = [
            sys.executable, "-m", MOCK_SERVER_MODULE,
            "--host", self.host,
            "--port", str(self.port),
        ]
        if self._certfile and self._keyfile:
            args += ["--ssl-certfile", str(self._certfile), "--ssl-keyfile", str(self._keyfile)]

        self._process = subprocess.Popen(
            args,
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
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable, nothing more to do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture
def executor() -> Executor:
    """Executor with default config."""
    return Executor(ExecutorConfig())


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Live mock server, started once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


@pytest.fixture(scope="session")
def tls_ca() -> trustme.CA:
    """Throwaway certificate authority no system trust store knows about."""
    return trustme.CA()


@pytest.fixture(scope="session")
def tls_ca_file(tls_ca: trustme.CA, tmp_path_factory: pytest.TempPathFactory) -> Path:
    """PEM file holding the throwaway CA, usable as ExecutorConfig.ca_bundle."""
    path = tmp_path_factory.mktemp("tls-ca") / "ca.pem"
    path.write_bytes(tls_ca.cert_pem.bytes())
    return path


@pytest.fixture(scope="session")
def tls_mock_server(
    tls_ca: trustme.CA, tmp_path_factory: pytest.TempPathFactory
) -> Generator[MockServer, None, None]:
    """Live mock server over HTTPS with a certificate from tls_ca."""
    cert = tls_ca.issue_cert("127.0.0.1", "localhost")
    tls_dir = tmp_path_factory.mktemp("tls-server")
    certfile = tls_dir / "server.pem"
    keyfile = tls_dir / "server.key"
    certfile.write_bytes(b"".join(blob.bytes() for blob in cert.cert_chain_pems))
    keyfile.write_bytes(cert.private_key_pem.bytes())

    with MockServer(PortReservation(), certfile=certfile, keyfile=keyfile) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
