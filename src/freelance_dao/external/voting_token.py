"""Voting token — read-only balance and supply queries.

Governance uses the token only to decide membership, weight votes and
compute quorum; it never asks the token to change state. The in-memory
adapter keeps plain balances so that tests and local deployments can
move voting weight around; issuance policy is not modelled.
"""

from __future__ import annotations

from typing import Protocol

from freelance_dao.accounts import normalize_account


class VotingToken(Protocol):
    def balance_of(self, account: str) -> int: ...

    def total_supply(self) -> int: ...


class InMemoryVotingToken:
    """Fixed-supply token with plain balances."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = {}
        for account, amount in (balances or {}).items():
            self.set_balance(account, amount)

    def balance_of(self, account: str) -> int:
        return self._balances.get(normalize_account(account), 0)

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def set_balance(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Balance must be non-negative, got {amount}")
        self._balances[normalize_account(account)] = amount
