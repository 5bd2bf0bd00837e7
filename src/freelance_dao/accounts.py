"""Account addressing helpers.

Accounts are EVM-style 20-byte hex addresses. Every address entering the
system is normalised to its EIP-55 checksum form so that lookups and
equality checks never depend on the caller's casing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from eth_utils import is_address, keccak, to_checksum_address, to_wei

from freelance_dao.errors import AuthorizationError


def normalize_account(account: str) -> str:
    """Return the checksum form of an address.

    Raises AuthorizationError for anything that is not an address; an
    unparseable caller can never hold a role.
    """
    if not isinstance(account, str) or not is_address(account.strip()):
        raise AuthorizationError(f"Invalid account address: {account!r}")
    return to_checksum_address(account.strip())


def component_address(name: str) -> str:
    """Derive a stable address for an in-process component.

    The last 20 bytes of keccak(name), checksummed, so each component has
    an identity that can be configured as an authorized caller.
    """
    return to_checksum_address(keccak(text=name)[-20:])


def ether(amount: Union[int, float, str, Decimal]) -> int:
    """Convert an ether-denominated amount to integer wei."""
    return int(to_wei(Decimal(str(amount)), "ether"))
