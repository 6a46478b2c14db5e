"""File-backed accounts store guarded by an exclusive lock.

The store is a single JSON document::

    {
      "accounts": {"<id>": {"type": "xbox", "id": "<id>", ...}},
      "selectedAccount": "<id>"
    }

:class:`AccountStoreFile` opens it under an exclusive ``<file>.lock`` held
for as long as the handle is open, so two launcher processes can never both
edit accounts. Mutations happen in memory; :meth:`AccountStoreFile.close`
writes them back atomically and releases the lock. Writes use ``0o600``
permissions because the file carries encrypted secrets.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from pydantic import ValidationError

from launchauth.config import atomic_write
from launchauth.exceptions import AccountNotFoundError, StoreError, StoreLockedError
from launchauth.models import Account, AccountStoreData

logger = logging.getLogger(__name__)


class AccountStore:
    """In-memory collection of accounts keyed by id, plus the selected id."""

    def __init__(self, data: Optional[AccountStoreData] = None) -> None:
        data = data or AccountStoreData()
        self.accounts: dict[str, Account] = dict(data.accounts)
        self.selected_account: Optional[str] = data.selected_account

    def add_account(self, account: Account) -> None:
        """Add *account*, replacing any account with the same id."""
        self.accounts[account.id] = account

    def remove_account(self, account_id: str) -> Account:
        """Remove and return the account with *account_id*.

        Clears the selection when the removed account was selected.

        Raises:
            AccountNotFoundError: If no such account exists.
        """
        account = self.accounts.pop(account_id, None)
        if account is None:
            raise AccountNotFoundError(f"Account '{account_id}' not found")
        if self.selected_account == account_id:
            self.selected_account = None
        return account

    def get_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account '{account_id}' not found")
        return account

    def select_account(self, account_id: str) -> None:
        self.get_account(account_id)
        self.selected_account = account_id

    def deselect_account(self) -> None:
        self.selected_account = None

    def get_selected_account(self) -> Optional[Account]:
        """Return the selected account, or ``None`` when nothing (valid) is selected."""
        if not self.selected_account:
            return None
        return self.accounts.get(self.selected_account)

    def to_data(self) -> AccountStoreData:
        return AccountStoreData(accounts=dict(self.accounts), selected_account=self.selected_account)


class AccountStoreFile(AccountStore):
    """An :class:`AccountStore` bound to a locked file on disk.

    Use :meth:`open` rather than the constructor. Works as a context
    manager; leaving the block saves and unlocks.

    Example::

        with AccountStoreFile.open(path) as store:
            store.add_account(account)
    """

    def __init__(self, path: Path, lock: FileLock, data: AccountStoreData) -> None:
        super().__init__(data)
        self._path = path
        self._lock: Optional[FileLock] = lock

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._lock is None

    @classmethod
    def open(cls, path: Path, timeout: float = 0) -> "AccountStoreFile":
        """Lock and load the store at *path*, creating an empty one if missing.

        Args:
            path: Location of the store JSON file.
            timeout: Seconds to wait for another holder to release the lock.
                ``0`` fails immediately; a negative value waits forever.

        Raises:
            StoreLockedError: If the lock could not be acquired in time.
            StoreError: If the existing file cannot be read or parsed.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(path.with_name(path.name + ".lock")), timeout=timeout)
        try:
            lock.acquire()
        except Timeout as exc:
            raise StoreLockedError(
                f"Accounts store {path} is in use by another process"
            ) from exc

        try:
            exists = path.is_file()
            if exists:
                data = _read_store(path)
            else:
                data = AccountStoreData()
            store = cls(path, lock, data)
            if not exists:
                store.save()
        except BaseException:
            lock.release()
            raise

        logger.debug("Opened accounts store %s (%d accounts)", path, len(store.accounts))
        return store

    def save(self) -> None:
        """Write the in-memory state to disk atomically.

        Raises:
            StoreError: If the handle is closed or the write fails.
        """
        if self._lock is None:
            raise StoreError("Accounts store is closed")
        data = self.to_data().model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            atomic_write(self._path, json.dumps(data, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise StoreError(f"Cannot write accounts store {self._path}: {exc}") from exc

    def close(self) -> None:
        """Save and release the lock.

        Raises:
            StoreError: If the handle is already closed or saving fails. The
                lock is released even when saving fails.
        """
        if self._lock is None:
            raise StoreError("Accounts store is closed")
        try:
            self.save()
        finally:
            self._lock.release()
            self._lock = None
        logger.debug("Closed accounts store %s", self._path)

    def __enter__(self) -> "AccountStoreFile":
        return self

    def __exit__(self, *args: object) -> None:
        if self._lock is not None:
            self.close()


def _read_store(path: Path) -> AccountStoreData:
    try:
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return AccountStoreData()
        return AccountStoreData.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError, OSError) as exc:
        raise StoreError(f"Cannot read accounts store {path}: {exc}") from exc
