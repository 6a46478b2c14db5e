"""Offline flow: a local player name with no online credentials.

Offline accounts hold no secret. The flow asks for a username once, assigns
a random account id and hands the game an all-zero UUID with an empty access
token, which is enough for single-player and LAN games.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Callable

from launchauth.accounts.flow import AuthFlow, FlowState, FlowStep
from launchauth.accounts.properties import GameProfileProperties
from launchauth.exceptions import InvalidUsageError
from launchauth.models import ACCOUNT_TYPE_OFFLINE, Authorization

logger = logging.getLogger(__name__)

STEP_READ_PROPERTIES = "read_properties"
STEP_REQUEST_USERNAME = "request_username"
STEP_WRITE_PROPERTIES = "write_properties"
STEP_UPDATE_AUTHORIZATION = "update_authorization"

OFFLINE_UUID = "00000000-0000-0000-0000-000000000000"
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,16}$")

UsernameHandler = Callable[[], str]


def validate_username(username: str) -> str:
    """Return *username* if it is a valid player name.

    Raises:
        InvalidUsageError: If it is not 3-16 letters, digits or underscores.
    """
    if not USERNAME_PATTERN.fullmatch(username):
        raise InvalidUsageError(
            f"Invalid username {username!r}: use 3 to 16 letters, digits or underscores"
        )
    return username


@dataclass
class OfflineFlowData:
    props: GameProfileProperties = field(default_factory=GameProfileProperties)
    username_requested: bool = False


OfflineState = FlowState[OfflineFlowData]


class ReadPropertiesStep(FlowStep[OfflineFlowData]):
    step_id = STEP_READ_PROPERTIES

    def authorize(self, state: OfflineState) -> None:
        state.data.props = GameProfileProperties()

    def refresh(self, state: OfflineState) -> None:
        state.data.props = GameProfileProperties.read_from(state.account)


class RequestUsernameStep(FlowStep[OfflineFlowData]):
    step_id = STEP_REQUEST_USERNAME

    def __init__(self, handler: UsernameHandler) -> None:
        self._handler = handler

    def authorize(self, state: OfflineState) -> None:
        account_id = str(uuid.uuid4())
        state.data.props.id = account_id
        state.account.id = account_id

        state.data.props.username = validate_username(self._handler())
        state.data.username_requested = True

    def refresh(self, state: OfflineState) -> None:
        if not state.data.props.username:
            logger.debug("Offline account %s has no username, asking again", state.account.id)
            self.authorize(state)


class WritePropertiesStep(FlowStep[OfflineFlowData]):
    step_id = STEP_WRITE_PROPERTIES

    def authorize(self, state: OfflineState) -> None:
        state.data.props.write_to(state.account)

    def refresh(self, state: OfflineState) -> None:
        # usernames are stable once set
        if state.data.username_requested:
            self.authorize(state)


class UpdateAuthorizationStep(FlowStep[OfflineFlowData]):
    step_id = STEP_UPDATE_AUTHORIZATION

    def authorize(self, state: OfflineState) -> None:
        state.account.authorization = Authorization(
            username=state.data.props.username or "",
            user_uuid=OFFLINE_UUID,
            access_token="",
            user_type="msa",
            demo=False,
        )

    def refresh(self, state: OfflineState) -> None:
        self.authorize(state)


@dataclass
class OfflineFlowOptions:
    username_handler: UsernameHandler


def create_offline_flow(options: OfflineFlowOptions) -> AuthFlow[OfflineFlowData]:
    """Build the offline flow; *options.username_handler* supplies the player name."""
    return AuthFlow(
        ACCOUNT_TYPE_OFFLINE,
        [
            ReadPropertiesStep(),
            RequestUsernameStep(options.username_handler),
            WritePropertiesStep(),
            UpdateAuthorizationStep(),
        ],
        OfflineFlowData,
    )
