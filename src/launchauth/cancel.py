"""Cooperative cancellation for flow runs.

A :class:`CancelToken` is handed to
:meth:`~launchauth.accounts.flow.AuthFlow.create_account` or
:meth:`~launchauth.accounts.flow.AuthFlow.refresh_account` and travels with
the run's :class:`~launchauth.accounts.flow.FlowState`. Every blocking wait in
the flow (device-code polling, retry backoff, connectivity checks) sleeps
through :meth:`CancelToken.sleep`, so a Ctrl-C handler or a deadline can
interrupt a device-code wait the user walked away from.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from launchauth.exceptions import FlowCancelledError


class CancelToken:
    """Cancellation signal with an optional deadline.

    Args:
        timeout: Seconds from now after which the token counts as cancelled.
            ``None`` means no deadline.

    Example::

        token = CancelToken(timeout=900)
        signal.signal(signal.SIGINT, lambda *_: token.cancel())
        flow.create_account(cancel=token)
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        """Signal cancellation to every waiter."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether :meth:`cancel` was called or the deadline has passed."""
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """Raise :class:`FlowCancelledError` if the token is cancelled."""
        if self._event.is_set():
            raise FlowCancelledError("operation cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise FlowCancelledError("operation timed out")

    def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, waking early and raising if cancelled."""
        self.raise_if_cancelled()
        wait = max(0.0, seconds)
        remaining = self.remaining()
        if remaining is not None:
            wait = min(wait, remaining)
        self._event.wait(wait)
        self.raise_if_cancelled()


def sleep(seconds: float, cancel: Optional[CancelToken] = None) -> None:
    """Sleep on *cancel* when given, otherwise a plain :func:`time.sleep`."""
    if cancel is None:
        time.sleep(seconds)
    else:
        cancel.sleep(seconds)


def check(cancel: Optional[CancelToken]) -> None:
    """Raise if *cancel* is set; no-op for ``None``."""
    if cancel is not None:
        cancel.raise_if_cancelled()
