"""Typed views over ``Account.properties``.

``Account.properties`` is a flat ``str -> str`` bag shared by every feature
that wants to remember something about an account. Each feature declares a
:class:`PropertiesView` subclass whose field aliases are the namespaced keys
it owns (``xbox:kid``, ``minecraft:username``...). Reading decodes only those
keys; writing updates only those keys, so unrelated data written by other
code survives a round trip.
"""

from __future__ import annotations

from typing import Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from launchauth.models import Account

V = TypeVar("V", bound="PropertiesView")


class PropertiesView(BaseModel):
    """Base class for a namespaced slice of ``Account.properties``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def read_from(cls: type[V], account: Account) -> V:
        """Decode this view's keys from *account*, ignoring everything else."""
        owned = {
            field.alias: account.properties[field.alias]
            for field in cls.model_fields.values()
            if field.alias in account.properties
        }
        return cls.model_validate(owned)

    def write_to(self, account: Account) -> None:
        """Store this view's non-empty fields into *account* without touching other keys."""
        for key, value in self.model_dump(by_alias=True, exclude_none=True).items():
            account.properties[key] = value


class XboxProperties(PropertiesView):
    """Cloud-account bookkeeping.

    Attributes:
        kid: Opaque identifier of the account's key in the OS secret store.
    """

    kid: Optional[str] = Field(default=None, alias="xbox:kid")


class GameProfileProperties(PropertiesView):
    """Game profile mirrored for display and for offline launches."""

    id: Optional[str] = Field(default=None, alias="minecraft:id")
    username: Optional[str] = Field(default=None, alias="minecraft:username")
