"""Exception hierarchy for launchauth.

All exceptions inherit from :class:`LaunchAuthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`launchauth.exit_codes`.
The top-level error handler in :func:`launchauth.app.main` catches
``LaunchAuthError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    LaunchAuthError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- ConfigError              (exit 1)
    +-- AuthError                (exit 3)
    |   +-- StepError
    |   +-- TokenError
    |   +-- XboxTokenError
    |   +-- GameAPIError
    |   +-- EntitlementMissingError
    +-- AccountNotFoundError     (exit 4)
    +-- ServerError              (exit 5)
    +-- ConnectionError_         (exit 6)
    +-- SecretStoreError         (exit 7)
    |   +-- SecretNotFoundError
    |   +-- CodecError
    +-- StoreError               (exit 1)
    |   +-- StoreLockedError     (exit 8)
    +-- FlowCancelledError       (exit 130)
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from launchauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SECRET_STORE_ERROR,
    EXIT_SERVER_ERROR,
    EXIT_STORE_LOCKED,
)


class LaunchAuthError(Exception):
    """Base exception for all launchauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`launchauth.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(LaunchAuthError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(LaunchAuthError):
    """Raised for configuration problems (invalid JSON, missing client id)."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(LaunchAuthError):
    """Raised when authentication or authorisation fails."""

    exit_code = EXIT_AUTH_FAILURE


class StepError(AuthError):
    """Wraps the failure of a single authentication flow step.

    The flow engine raises this for the first step whose ``authorize`` or
    ``refresh`` fails. The original exception is available both as
    :attr:`cause` and as ``__cause__``.

    Args:
        step_id: Identifier of the step that failed.
        cause: The exception raised by the step.

    Example::

        try:
            flow.refresh_account(account)
        except StepError as exc:
            if exc.matches(STEP_READ_KEYRING_KEY):
                ...
    """

    def __init__(self, step_id: str, cause: BaseException):
        super().__init__(f"failed to run step {step_id}: {cause}")
        self.step_id = step_id
        self.cause = cause
        self.__cause__ = cause
        if isinstance(cause, LaunchAuthError):
            self.exit_code = cause.exit_code

    def matches(
        self,
        step_id: Optional[str] = None,
        cause_type: type[BaseException] | tuple[type[BaseException], ...] | None = None,
    ) -> bool:
        """Check whether this error came from *step_id* and/or has a cause of *cause_type*.

        Either argument may be omitted to ignore that half of the match.
        """
        if step_id is not None and step_id != self.step_id:
            return False
        if cause_type is not None and not isinstance(self.cause, cause_type):
            return False
        return True


class TokenErrorReason(str, enum.Enum):
    """Well-known ``error`` values returned by the identity provider's token endpoint."""

    PENDING = "authorization_pending"
    DECLINED = "authorization_declined"
    BAD_VERIFICATION_CODE = "bad_verification_code"
    EXPIRED = "expired_token"
    SLOW_DOWN = "slow_down"
    OTHER = "other"

    @classmethod
    def from_error(cls, error: str) -> "TokenErrorReason":
        # RFC 8628 spells a user refusal "access_denied"
        if error == "access_denied":
            return cls.DECLINED
        try:
            return cls(error)
        except ValueError:
            return cls.OTHER


class TokenError(AuthError):
    """Structured error body returned by the identity provider's token endpoint.

    Attributes:
        error: The raw ``error`` field (e.g. ``"expired_token"``).
        description: The ``error_description`` field, if any.
        codes: Numeric ``error_codes`` reported by the provider.
        reason: :class:`TokenErrorReason` classification of :attr:`error`.
    """

    def __init__(
        self,
        error: str,
        description: str = "",
        codes: list[int] | None = None,
        correlation_id: str = "",
        trace_id: str = "",
    ):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.codes = codes or []
        self.correlation_id = correlation_id
        self.trace_id = trace_id
        self.reason = TokenErrorReason.from_error(error)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "TokenError":
        return cls(
            error=str(body.get("error", "")),
            description=str(body.get("error_description", "")),
            codes=list(body.get("error_codes") or []),
            correlation_id=str(body.get("correlation_id", "")),
            trace_id=str(body.get("trace_id", "")),
        )


XERR_ACCOUNT_DOESNT_EXIST = 2148916233
XERR_UNAVAILABLE_COUNTRY = 2148916235
XERR_ADULT_CONSENT_REQUIRED = 2148916236
XERR_ADULT_CONSENT_REQUIRED_2 = 2148916237
XERR_MANAGED_ACCOUNT = 2148916238

_XERR_MESSAGES = {
    XERR_ACCOUNT_DOESNT_EXIST: "Xbox account is not created.",
    XERR_UNAVAILABLE_COUNTRY: "Xbox is not available in the country.",
    XERR_ADULT_CONSENT_REQUIRED: "adult consent is required for child account.",
    XERR_ADULT_CONSENT_REQUIRED_2: "adult consent is required for child account.",
    XERR_MANAGED_ACCOUNT: "the account is managed and needs to be added to the family.",
}


class XboxTokenError(AuthError):
    """Error body returned by the Xbox Live security-token services.

    Attributes:
        xerr: The numeric ``XErr`` code, ``0`` if absent.
        identity: The ``Identity`` field of the error body.
        redirect: A URL the user can visit to resolve the problem, if any.
    """

    def __init__(self, xerr: int, message: str = "", identity: str = "", redirect: str = ""):
        text = message or _XERR_MESSAGES.get(xerr, "unknown error.")
        super().__init__(f"XErr {xerr}: {text}")
        self.xerr = xerr
        self.identity = identity
        self.redirect = redirect

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "XboxTokenError":
        return cls(
            xerr=int(body.get("XErr") or 0),
            message=str(body.get("Message") or ""),
            identity=str(body.get("Identity") or ""),
            redirect=str(body.get("Redirect") or ""),
        )


class GameAPIError(AuthError):
    """Structured error returned by the game services API (HTTP 400 bodies)."""

    def __init__(
        self,
        message: str,
        path: str = "",
        error_type: str = "",
        error: str = "",
        developer_message: str = "",
    ):
        super().__init__(message or error or "game services request failed")
        self.path = path
        self.error_type = error_type
        self.error = error
        self.developer_message = developer_message

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "GameAPIError":
        return cls(
            message=str(body.get("errorMessage") or ""),
            path=str(body.get("path") or ""),
            error_type=str(body.get("errorType") or ""),
            error=str(body.get("error") or ""),
            developer_message=str(body.get("developerMessage") or ""),
        )


class EntitlementMissingError(AuthError):
    """Raised when the game service does not list a required entitlement."""

    def __init__(self, entitlement: str):
        super().__init__(f"user is missing entitlement {entitlement}")
        self.entitlement = entitlement


class AccountNotFoundError(LaunchAuthError):
    """Raised when an account id is not present in the accounts store."""

    exit_code = EXIT_NOT_FOUND


class ServerError(LaunchAuthError):
    """Raised when a remote service answers with an unexpected HTTP status."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(LaunchAuthError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class SecretStoreError(LaunchAuthError):
    """Raised when the OS secret store cannot be read or written."""

    exit_code = EXIT_SECRET_STORE_ERROR


class SecretNotFoundError(SecretStoreError):
    """Raised when the secret store has no entry for the requested key."""


class CodecError(SecretStoreError):
    """Raised when an encrypted secret cannot be decoded (tamper, truncation, wrong key)."""


class StoreError(LaunchAuthError):
    """Raised for accounts store file problems (corrupt JSON, closed handle)."""

    exit_code = EXIT_GENERIC_FAILURE


class StoreLockedError(StoreError):
    """Raised when another process holds the accounts store lock."""

    exit_code = EXIT_STORE_LOCKED


class FlowCancelledError(LaunchAuthError):
    """Raised when a flow run is cancelled or runs past its deadline."""

    exit_code = EXIT_CANCELLED
