"""Internet connectivity and captive-portal detection.

:class:`MozillaConnectivityChecker` fetches Firefox's captive-portal probe,
which answers ``200 success\\n`` on an open network and is redirected by
hotel and airport portals. :func:`wait_for_connection` blocks until the
checker reports an open network, backing off between probes.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from launchauth import cancel as cancellation
from launchauth.cancel import CancelToken

logger = logging.getLogger(__name__)

PROBE_URL = "http://detectportal.firefox.com/success.txt"
PROBE_BODY = b"success\n"


class ConnectionStatus(str, enum.Enum):
    UNKNOWN = "unknown"
    CAPTIVE = "captive"
    OK = "ok"


@dataclass
class CheckResult:
    status: ConnectionStatus
    redirect: Optional[str] = None


class ConnectivityChecker(Protocol):
    def run(self) -> CheckResult:
        """Probe the network once."""
        ...


class MozillaConnectivityChecker:
    """Probe ``detectportal.firefox.com`` without following redirects."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 5.0) -> None:
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=False)

    def run(self) -> CheckResult:
        try:
            response = self._client.get(PROBE_URL, follow_redirects=False)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe failed: %s", exc)
            return CheckResult(ConnectionStatus.UNKNOWN)

        if response.status_code in (302, 307):
            return CheckResult(ConnectionStatus.CAPTIVE, response.headers.get("Location"))
        if response.status_code == 200 and response.content == PROBE_BODY:
            return CheckResult(ConnectionStatus.OK)
        return CheckResult(ConnectionStatus.UNKNOWN)

    def close(self) -> None:
        self._client.close()


def wait_for_connection(
    checker: ConnectivityChecker,
    cancel: Optional[CancelToken] = None,
    initial_delay: float = 1.0,
    max_delay: float = 32.0,
) -> None:
    """Block until *checker* reports :attr:`ConnectionStatus.OK`.

    The delay between probes starts at *initial_delay* and doubles up to
    *max_delay*; a captive portal jumps straight to *max_delay* since the
    user has to go log in somewhere first.

    Raises:
        FlowCancelledError: If *cancel* fires while waiting.
    """
    delay = initial_delay
    waited = False

    while True:
        cancellation.check(cancel)
        result = checker.run()

        if result.status == ConnectionStatus.OK:
            break

        if result.status == ConnectionStatus.CAPTIVE:
            delay = max_delay
            logger.warning(
                "Your network connection is limited. Please visit %s to restore it; "
                "retrying in %.0f seconds",
                result.redirect or "the captive portal page",
                delay,
            )
        else:
            logger.warning(
                "There appears to be a problem with your network connection; "
                "retrying in %.0f seconds",
                delay,
            )

        waited = True
        cancellation.sleep(delay, cancel)
        delay = min(max(delay * 2, initial_delay), max_delay)

    if waited:
        logger.info("Network connection restored")
