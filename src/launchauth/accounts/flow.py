"""Step-pipelined authentication flow engine.

An :class:`AuthFlow` is an ordered, immutable list of :class:`FlowStep`
strategies plus a factory for the flow-private scratch state ``S``. Running
a flow walks every step in registration order against a shared
:class:`FlowState`:

- :meth:`AuthFlow.create_account` calls each step's
  :meth:`~FlowStep.authorize` against a brand-new :class:`~launchauth.models.Account`.
- :meth:`AuthFlow.refresh_account` calls each step's
  :meth:`~FlowStep.refresh` against an existing account. The scratch state
  starts empty, so steps that need prior data (keys, decrypted secrets) must
  rebuild it from the account's persisted fields.

The first failing step aborts the run with a
:class:`~launchauth.exceptions.StepError` naming that step. The engine never
retries; retry policy belongs to the steps' network collaborators.

See Also:
    :mod:`launchauth.flows.xbox` -- device-code cloud flow.
    :mod:`launchauth.flows.offline` -- local-only flow.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar

from launchauth.cancel import CancelToken
from launchauth.exceptions import StepError
from launchauth.models import Account

logger = logging.getLogger(__name__)

S = TypeVar("S")


@dataclass
class FlowState(Generic[S]):
    """Working memory of a single flow run.

    Attributes:
        account: The account being authorized or refreshed. Steps mutate it
            in place.
        data: Flow-specific scratch state, discarded after the run.
        cancel: Cancellation token for the run, if any.
    """

    account: Account
    data: S
    cancel: Optional[CancelToken] = None


class FlowStep(ABC, Generic[S]):
    """A single step of an :class:`AuthFlow`.

    Steps are stateless strategies: they hold only their own configuration
    (callbacks, API clients, secret stores) and keep everything run-specific
    in the :class:`FlowState` they are handed.
    """

    @property
    @abstractmethod
    def step_id(self) -> str:
        """Stable identifier used in :class:`~launchauth.exceptions.StepError`."""
        ...

    @abstractmethod
    def authorize(self, state: FlowState[S]) -> None:
        """Run the step for a first-time login."""
        ...

    @abstractmethod
    def refresh(self, state: FlowState[S]) -> None:
        """Run the step for a silent renewal of an existing account."""
        ...


class AuthFlow(Generic[S]):
    """Ordered chain of :class:`FlowStep` objects for one account type.

    Flows are built once at startup and reused for every account of their
    type.

    Args:
        account_type: ``Account.type`` assigned to accounts this flow creates.
        steps: Steps to run, in order.
        state_factory: Zero-argument callable returning a fresh scratch state
            for every run.

    Example::

        flow = AuthFlow("offline", [ReadProperties(), ...], OfflineFlowData)
        account = flow.create_account()
    """

    def __init__(
        self,
        account_type: str,
        steps: Iterable[FlowStep[S]],
        state_factory: Callable[[], S],
    ) -> None:
        self._account_type = account_type
        self._steps: tuple[FlowStep[S], ...] = tuple(steps)
        self._state_factory = state_factory

    @property
    def account_type(self) -> str:
        return self._account_type

    @property
    def steps(self) -> tuple[FlowStep[S], ...]:
        return self._steps

    def step_ids(self) -> list[str]:
        return [step.step_id for step in self._steps]

    def create_account(self, cancel: Optional[CancelToken] = None) -> Account:
        """Authorize a brand-new account by running every step's ``authorize``.

        Args:
            cancel: Optional token that aborts the run between steps and
                interrupts blocking waits inside them.

        Returns:
            The fully authorized account, with ``authorization`` populated.

        Raises:
            StepError: For the first failing step. The partially built
                account is attached as ``exc.account``; callers should not
                persist it unless they want to keep side effects that earlier
                steps already flushed.
        """
        account = Account(type=self._account_type)
        state = FlowState(account=account, data=self._state_factory(), cancel=cancel)
        try:
            self._run(state, authorize=True)
        except StepError as exc:
            exc.account = account  # type: ignore[attr-defined]
            raise
        return account

    def refresh_account(self, account: Account, cancel: Optional[CancelToken] = None) -> None:
        """Silently renew *account* in place by running every step's ``refresh``.

        Raises:
            StepError: For the first failing step.
        """
        state = FlowState(account=account, data=self._state_factory(), cancel=cancel)
        self._run(state, authorize=False)

    def _run(self, state: FlowState[S], authorize: bool) -> None:
        mode = "authorize" if authorize else "refresh"
        for step in self._steps:
            step_id = step.step_id
            try:
                if state.cancel is not None:
                    state.cancel.raise_if_cancelled()
                logger.debug("%s flow: %s %s", self._account_type, mode, step_id)
                if authorize:
                    step.authorize(state)
                else:
                    step.refresh(state)
            except Exception as exc:
                logger.debug(
                    "%s flow: step %s failed: %s", self._account_type, step_id, exc
                )
                raise StepError(step_id, exc) from exc
