"""Identity registry — resolves an account to a verified role.

The marketplace only consumes ``resolve``. ``InMemoryIdentityRegistry``
is the reference adapter: users self-register once with a role and a
profile reference, and the registry owner issues the verification
credential.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Protocol

from freelance_dao.accounts import normalize_account
from freelance_dao.errors import AuthorizationError, PreconditionError
from freelance_dao.models.identity import IdentityRecord
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.transaction import TransactionManager

logger = logging.getLogger(__name__)


class IdentityRegistry(Protocol):
    def resolve(self, account: str) -> IdentityRecord:
        """Return the account's record; unregistered accounts resolve to
        a record with an empty role and verified=False."""
        ...


class InMemoryIdentityRegistry:
    """Registry of marketplace users.

    Usage:
        registry = InMemoryIdentityRegistry(tx, owner=admin)
        registry.register_user("Employer", "ipfs://profile", caller=alice)
        registry.verify_user(alice, caller=admin)
        registry.resolve(alice).holds("Employer")  # True
    """

    def __init__(
        self,
        tx: TransactionManager,
        owner: str,
    ) -> None:
        self._tx = tx
        self.owner = normalize_account(owner)
        self._users: dict[str, IdentityRecord] = {}

    def resolve(self, account: str) -> IdentityRecord:
        account = normalize_account(account)
        return self._users.get(account, IdentityRecord(account=account))

    def get_user(self, account: str) -> Optional[IdentityRecord]:
        return self._users.get(normalize_account(account))

    @property
    def count(self) -> int:
        return len(self._users)

    def users(self) -> dict[str, IdentityRecord]:
        return dict(self._users)

    def load_users(self, users: dict[str, IdentityRecord]) -> None:
        """Replace all records (state recovery)."""
        self._users = dict(users)

    def register_user(self, role: str, profile_url: str, *, caller: str) -> IdentityRecord:
        """Register the caller once with a role and profile reference."""
        caller = normalize_account(caller)
        role = role.strip()
        with self._tx.atomic():
            if caller in self._users:
                raise PreconditionError("Already registered")
            if not role:
                raise PreconditionError("Role must not be empty")
            record = IdentityRecord(
                account=caller, role=role,
                verified=False, profile_url=profile_url,
            )
            self._put(record)
            self._tx.emit(EventKind.USER_REGISTERED, caller, {
                "account": caller, "role": role,
            })
        logger.info("Registered %s as %s", caller, role)
        return record

    def update_profile(self, profile_url: str, *, caller: str) -> IdentityRecord:
        caller = normalize_account(caller)
        with self._tx.atomic():
            current = self._users.get(caller)
            if current is None:
                raise PreconditionError("User not registered")
            record = replace(current, profile_url=profile_url)
            self._put(record)
            self._tx.emit(EventKind.USER_PROFILE_UPDATED, caller, {
                "account": caller, "profile_url": profile_url,
            })
        return record

    def verify_user(self, account: str, *, caller: str) -> IdentityRecord:
        """Issue the verification credential (registry owner only)."""
        account = normalize_account(account)
        with self._tx.atomic():
            if normalize_account(caller) != self.owner:
                raise AuthorizationError("Only the registry owner can verify users")
            current = self._users.get(account)
            if current is None:
                raise PreconditionError("User not registered")
            record = replace(current, verified=True)
            self._put(record)
            self._tx.emit(EventKind.USER_VERIFIED, self.owner, {"account": account})
        return record

    def _put(self, record: IdentityRecord) -> None:
        previous = self._users.get(record.account)
        self._users[record.account] = record

        def _rollback() -> None:
            if previous is None:
                self._users.pop(record.account, None)
            else:
                self._users[record.account] = previous

        self._tx.on_rollback(_rollback)
