"""Executor - Fetches each TestCase from both endpoints and captures the bodies.

The Executor issues GET <base_url><path> against the reference and the
candidate endpoint and returns the raw body bytes of both, whatever the
status code. Transport failures (timeout, connection refused, DNS) are
collected per endpoint and raised together as a FetchError so the caller
can tell "unreachable" apart from "returned an empty body".
"""

from __future__ import annotations

import re
import ssl
import time
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any

import httpx

from path_parity.models import EndpointRole, ResponseCapture, TargetConfig, TestCase

DEFAULT_TIMEOUT = 30.0

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class ExecutorError(Exception):
    """Base class for executor errors."""


class FetchError(ExecutorError):
    """Raised when one or both endpoints could not be fetched.

    Attributes:
        failures: Error message per endpoint role that failed.
        captures: Captures from endpoints that did respond.
    """

    def __init__(
        self,
        failures: dict[EndpointRole, str],
        captures: dict[EndpointRole, ResponseCapture] | None = None,
    ) -> None:
        self.failures = failures
        self.captures = captures or {}
        message = "; ".join(f"{role.value}: {msg}" for role, msg in failures.items())
        super().__init__(message)


def _percent_encode_control_chars(path: str) -> str:
    """Percent-encode ASCII control characters, which httpx rejects in URLs.

    Everything else (spaces, unicode, brackets) is left for httpx to handle.
    """
    return _CONTROL_CHARS.sub(lambda m: f"%{ord(m.group()):02X}", path)


def build_url(base_url: str, path: str) -> str:
    """Join base_url and path by plain concatenation."""
    return base_url + _percent_encode_control_chars(path)


class Executor:
    """Executes each case against the reference and candidate endpoints.

    Usage:
        with Executor(reference_config, candidate_config) as executor:
            reference, candidate = executor.execute(case)
    """

    def __init__(
        self,
        reference: TargetConfig,
        candidate: TargetConfig,
        timeout: float = DEFAULT_TIMEOUT,
        requests_per_second: float | None = None,
        concurrent_fetch: bool = False,
        jobs: int = 1,
    ) -> None:
        """Initialize the executor.

        Args:
            reference: Configuration for the reference endpoint.
            candidate: Configuration for the candidate endpoint.
            timeout: Per-request timeout in seconds.
            requests_per_second: Maximum requests per second across both
                                 endpoints. If None, no rate limiting is applied.
            concurrent_fetch: Fetch both endpoints at the same time instead of
                              reference first, then candidate.
            jobs: Number of cases that may call execute() at the same time.
                  With concurrent_fetch the pool holds two workers per case.
        """
        if jobs < 1:
            raise ValueError(f"jobs must be >= 1, got {jobs}")
        self._targets = {
            EndpointRole.REFERENCE: reference,
            EndpointRole.CANDIDATE: candidate,
        }
        self._timeout = timeout

        # Rate limiting state
        self._min_interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._last_request_time: float = 0.0
        self._rate_limit_lock = Lock()

        self._pool: ThreadPoolExecutor | None = None

        # If the second client cannot be created, close the first one.
        self._clients: dict[EndpointRole, httpx.Client] = {}
        try:
            for role, target in self._targets.items():
                self._clients[role] = httpx.Client(**self._build_client_kwargs(target, timeout))
        except Exception:
            self.close()
            raise

        if concurrent_fetch:
            self._pool = ThreadPoolExecutor(max_workers=2 * jobs, thread_name_prefix="fetch")

    def __enter__(self) -> "Executor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close HTTP clients and the fetch pool."""
        try:
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
                self._pool = None
        finally:
            reference_client = self._clients.pop(EndpointRole.REFERENCE, None)
            candidate_client = self._clients.pop(EndpointRole.CANDIDATE, None)
            # Both clients are closed even if the first close() raises.
            try:
                if reference_client is not None:
                    reference_client.close()
            finally:
                if candidate_client is not None:
                    candidate_client.close()

    def _build_client_kwargs(self, target: TargetConfig, timeout: float) -> dict[str, Any]:
        """Build kwargs for httpx.Client including TLS configuration."""
        kwargs: dict[str, Any] = {
            "headers": target.headers,
            "timeout": timeout,
            "follow_redirects": False,
        }

        if target.ca_bundle:
            try:
                kwargs["verify"] = ssl.create_default_context(cafile=target.ca_bundle)
            except (OSError, ssl.SSLError) as e:
                raise ExecutorError(f"Cannot load CA bundle '{target.ca_bundle}': {e}") from e
        elif not target.verify_ssl:
            kwargs["verify"] = False

        return kwargs

    def execute(self, case: TestCase) -> tuple[ResponseCapture, ResponseCapture]:
        """Fetch case.path from both endpoints.

        Both endpoints are always attempted, even when the first one fails.

        Returns:
            Tuple of (reference_capture, candidate_capture).

        Raises:
            FetchError: If either endpoint could not be fetched.
        """
        roles = (EndpointRole.REFERENCE, EndpointRole.CANDIDATE)
        results: dict[EndpointRole, ResponseCapture | ExecutorError] = {}

        if self._pool is not None:
            futures = {role: self._pool.submit(self._fetch_or_error, role, case) for role in roles}
            for role, future in futures.items():
                results[role] = future.result()
        else:
            for role in roles:
                results[role] = self._fetch_or_error(role, case)

        failures = {
            role: str(result) for role, result in results.items()
            if isinstance(result, ExecutorError)
        }
        captures = {
            role: result for role, result in results.items()
            if isinstance(result, ResponseCapture)
        }
        if failures:
            raise FetchError(failures, captures)

        return captures[EndpointRole.REFERENCE], captures[EndpointRole.CANDIDATE]

    def _fetch_or_error(self, role: EndpointRole, case: TestCase) -> ResponseCapture | ExecutorError:
        try:
            return self._fetch_single(role, case)
        except ExecutorError as e:
            return e

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limit."""
        if self._min_interval <= 0:
            return

        with self._rate_limit_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _fetch_single(self, role: EndpointRole, case: TestCase) -> ResponseCapture:
        """Fetch case.path from one endpoint.

        Raises:
            ExecutorError: If the request fails.
        """
        client = self._clients[role]
        url = build_url(self._targets[role].base_url, case.path)

        self._wait_for_rate_limit()

        try:
            start_time = time.perf_counter()
            http_response = client.get(url, timeout=self._timeout)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.TimeoutException as e:
            raise ExecutorError(f"request timeout after {self._timeout}s: {e}") from e
        except httpx.ConnectError as e:
            raise ExecutorError(f"connection error: {e}") from e
        except httpx.HTTPError as e:
            raise ExecutorError(f"request error: {e}") from e
        except httpx.InvalidURL as e:
            raise ExecutorError(f"invalid URL {url!r}: {e}") from e
        except UnicodeEncodeError as e:
            raise ExecutorError(
                f"encoding error: character {e.object[e.start:e.end]!r} at position "
                f"{e.start} cannot be sent in a URL"
            ) from e

        return ResponseCapture(
            role=role,
            body=http_response.content,
            status_code=http_response.status_code,
            elapsed_ms=elapsed_ms,
        )
