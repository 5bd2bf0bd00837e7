"""Identity records resolved from the identity registry."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IdentityRecord:
    """What the registry knows about an account.

    An empty role or verified=False means the account is not registered
    for gating purposes.
    """
    account: str
    role: str = ""
    verified: bool = False
    profile_url: str = ""

    @property
    def is_registered(self) -> bool:
        return bool(self.role) and self.verified

    def holds(self, role: str) -> bool:
        """True if verified and the role matches (case-insensitive)."""
        return self.is_registered and self.role.lower() == role.lower()
