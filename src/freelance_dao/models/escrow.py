"""Escrow entry model — one custody record per job id."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EscrowEntry:
    """Custody record for a single job.

    The disbursement outcome is two independent flags that must never
    both be true. amount is zeroed exactly once, at the first successful
    disbursement; deposited_total keeps what was ever deposited.
    """
    job_id: int
    client: str
    amount: int
    deposited_total: int
    released: bool = False
    refunded: bool = False

    @property
    def disbursed(self) -> bool:
        return self.released or self.refunded

    @property
    def disbursed_total(self) -> int:
        return self.deposited_total - self.amount
