"""Value book — native balances and value transfer between accounts.

Stands in for the settlement layer the escrow moves value on. A credit
hands control to the recipient's receive hook before the transfer
returns; the hook may refuse the value by raising, or call back into the
marketplace. Balances are restored when a hook refuses.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from freelance_dao.accounts import normalize_account
from freelance_dao.errors import MarketplaceError, TransferError, TransferRejected
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.transaction import TransactionManager

logger = logging.getLogger(__name__)

ReceiveHook = Callable[[str, int], None]


class ValueBook:
    """Per-account native balances.

    Thread-safety: all mutations run inside the shared transaction
    manager, which serialises them.
    """

    def __init__(self, tx: TransactionManager) -> None:
        self._tx = tx
        self._balances: dict[str, int] = {}
        self._hooks: dict[str, ReceiveHook] = {}

    def balance_of(self, account: str) -> int:
        return self._balances.get(normalize_account(account), 0)

    def balances(self) -> dict[str, int]:
        return dict(self._balances)

    def total(self) -> int:
        return sum(self._balances.values())

    def fund(self, account: str, amount: int) -> None:
        """Credit value arriving from outside the marketplace."""
        if amount <= 0:
            raise ValueError(f"Funding amount must be positive, got {amount}")
        account = normalize_account(account)
        with self._tx.atomic():
            self._adjust(account, amount)
            self._tx.emit(EventKind.VALUE_FUNDED, account, {
                "account": account, "amount": amount,
            })

    def set_receive_hook(self, account: str, hook: Optional[ReceiveHook]) -> None:
        """Install (or clear with None) the code run when account receives value."""
        account = normalize_account(account)
        if hook is None:
            self._hooks.pop(account, None)
        else:
            self._hooks[account] = hook

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move value; the recipient's hook runs after the balances move.

        Raises TransferError if the sender is short or the recipient's
        hook refuses. Either way no balance changes survive.
        """
        sender = normalize_account(sender)
        recipient = normalize_account(recipient)
        if amount <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")

        with self._tx.atomic():
            available = self._balances.get(sender, 0)
            if available < amount:
                raise TransferError(
                    f"Insufficient balance: {sender} holds {available}, needs {amount}"
                )
            self._adjust(sender, -amount)
            self._adjust(recipient, amount)

            hook = self._hooks.get(recipient)
            if hook is None:
                return
            try:
                hook(sender, amount)
            except TransferError:
                logger.warning("Recipient %s rejected %d wei", recipient, amount)
                raise
            except MarketplaceError as e:
                logger.warning("Recipient %s failed while receiving: %s", recipient, e)
                raise TransferRejected(
                    f"Recipient {recipient} rejected transfer: {e}"
                ) from e
            except Exception as e:
                logger.warning("Recipient %s raised while receiving: %r", recipient, e)
                raise TransferRejected(
                    f"Recipient {recipient} rejected transfer: {e!r}"
                ) from e

    def load_balances(self, balances: dict[str, int]) -> None:
        """Replace all balances (state recovery)."""
        self._balances = {normalize_account(a): int(v) for a, v in balances.items()}

    def _adjust(self, account: str, delta: int) -> None:
        previous = self._balances.get(account)
        self._balances[account] = (previous or 0) + delta

        def _rollback() -> None:
            if previous is None:
                self._balances.pop(account, None)
            else:
                self._balances[account] = previous

        self._tx.on_rollback(_rollback)
