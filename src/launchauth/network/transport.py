"""Retrying HTTP transport shared by every network step.

:class:`RetryingTransport` wraps :class:`httpx.Client` and retries requests
that fail at the network level (connection refused, reset, timeouts). Before
each retry it waits for connectivity to come back, then applies an
exponential backoff with a ceiling. HTTP status codes are never interpreted
here; a 400 or 500 response is returned to the caller like any other.

See Also:
    :mod:`launchauth.network.connectivity` -- the captive-portal checker
    consulted between retries.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from launchauth import cancel as cancellation
from launchauth.cancel import CancelToken
from launchauth.exceptions import ConnectionError_, ServerError
from launchauth.models import NetworkConfig
from launchauth.network.connectivity import (
    ConnectivityChecker,
    MozillaConnectivityChecker,
    wait_for_connection,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TRANSIENT_ERRORS: tuple[type[httpx.HTTPError], ...] = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    httpx.TimeoutException,
)


class RetryingTransport:
    """Perform HTTP requests with network-error retries.

    Args:
        client: Underlying :class:`httpx.Client`. A default client with a
            30 s timeout is created when omitted.
        max_retries: Retries per request; ``0`` retries indefinitely.
        retry_delay: Base delay in seconds.
        retry_delay_multiplier: Growth factor applied per retry.
        retry_delay_max: Upper bound for a single delay.
        checker: Connectivity checker consulted before retrying. ``None``
            skips the connectivity wait.

    Example::

        with RetryingTransport(max_retries=3) as transport:
            response = transport.request("GET", "https://example.com")
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        retry_delay_multiplier: float = 2.0,
        retry_delay_max: float = 60.0,
        checker: Optional[ConnectivityChecker] = None,
    ) -> None:
        self._client = client or httpx.Client(timeout=30.0)
        self._max_retries = max(0, max_retries)
        self._retry_delay = max(0.0, retry_delay)
        self._multiplier = max(1.0, retry_delay_multiplier)
        self._retry_delay_max = max(self._retry_delay, retry_delay_max)
        self._checker = checker

    def __enter__(self) -> RetryingTransport:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client and the connectivity checker, if it has a client."""
        self._client.close()
        close_checker = getattr(self._checker, "close", None)
        if close_checker is not None:
            close_checker()

    def backoff_delay(self, retries: int) -> float:
        """Delay before retry number ``retries + 1``."""
        delay = self._retry_delay * max(1.0, self._multiplier * retries)
        return min(delay, self._retry_delay_max)

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        data: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
        cancel: Optional[CancelToken] = None,
    ) -> httpx.Response:
        """Build a request on the underlying client and :meth:`perform` it."""
        request = self._client.build_request(
            method, url, params=params, headers=headers, data=data, json=json
        )
        return self.perform(request, cancel=cancel)

    def perform(self, request: httpx.Request, cancel: Optional[CancelToken] = None) -> httpx.Response:
        """Send *request*, retrying transient network failures.

        Raises:
            ConnectionError_: On a non-transient transport error, or once
                ``max_retries`` retries are exhausted.
            FlowCancelledError: If *cancel* fires while waiting.
        """
        retries = 0
        while True:
            cancellation.check(cancel)
            remaining = cancel.remaining() if cancel is not None else None
            if remaining is not None:
                request.extensions["timeout"] = _clamp_timeout(
                    request.extensions.get("timeout"), remaining
                )
            try:
                return self._client.send(request)
            except TRANSIENT_ERRORS as exc:
                # a timeout caused by the deadline reports as cancellation
                cancellation.check(cancel)
                if self._max_retries and retries >= self._max_retries:
                    raise ConnectionError_(
                        f"{request.method} {request.url} failed after "
                        f"{retries + 1} attempts: {exc}"
                    ) from exc

                delay = self.backoff_delay(retries)
                logger.debug(
                    "Network error on %s %s: %s; retry %d in %.1fs",
                    request.method, request.url, exc, retries + 1, delay,
                )

                if self._checker is not None:
                    started = time.monotonic()
                    wait_for_connection(self._checker, cancel)
                    if time.monotonic() - started > delay:
                        delay = 0

                if delay > 0:
                    cancellation.sleep(delay, cancel)
                retries += 1
            except httpx.HTTPError as exc:
                raise ConnectionError_(f"{request.method} {request.url} failed: {exc}") from exc


def _clamp_timeout(timeout: Optional[dict[str, Optional[float]]], limit: float) -> dict[str, float]:
    """Cap every phase of an httpx timeout dict at *limit* seconds."""
    phases = timeout or {"connect": None, "read": None, "write": None, "pool": None}
    return {
        phase: limit if value is None else min(value, limit)
        for phase, value in phases.items()
    }


def decode_json(response: httpx.Response) -> dict[str, Any]:
    """Return the JSON object in *response* or raise :class:`ServerError`."""
    try:
        body = response.json()
    except ValueError as exc:
        raise ServerError(
            f"Invalid JSON from {response.request.url} (HTTP {response.status_code})"
        ) from exc
    if not isinstance(body, dict):
        raise ServerError(f"Unexpected JSON from {response.request.url}: expected an object")
    return body


def parse_model(response: httpx.Response, model: type[M]) -> M:
    """Validate the JSON body of *response* as *model*."""
    try:
        return model.model_validate(decode_json(response))
    except ValidationError as exc:
        raise ServerError(
            f"Malformed response from {response.request.url}: {exc.error_count()} invalid field(s)"
        ) from exc


def unexpected_status(response: httpx.Response) -> ServerError:
    """Build the error for a response whose status code the caller does not handle."""
    return ServerError(
        f"Unexpected response from {response.request.url}: "
        f"HTTP {response.status_code} {response.reason_phrase}"
    )


def build_transport(config: NetworkConfig) -> RetryingTransport:
    """Assemble a :class:`RetryingTransport` from the network settings."""
    return RetryingTransport(
        httpx.Client(timeout=config.timeout),
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        retry_delay_multiplier=config.retry_delay_multiplier,
        retry_delay_max=config.retry_delay_max,
        checker=MozillaConnectivityChecker() if config.check_connectivity else None,
    )
