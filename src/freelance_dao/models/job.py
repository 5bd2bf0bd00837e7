"""Job data models.

A job is created by an employer, funded once, assigned to a freelancer,
and settled exactly once through the escrow ledger. Jobs are never
deleted; CLOSED and CANCELLED are terminal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class JobStatus(enum.IntEnum):
    """Lifecycle states. The integer codes are part of the query surface
    and are shared with governance; their order never changes."""
    OPEN = 0
    TAKEN = 1
    COMPLETED = 2
    CLOSED = 3
    CANCELLED = 4
    DISPUTED = 5


@dataclass
class Job:
    """A single escrowed job.

    payment_amount is zero until the one successful deposit and keeps the
    funded amount afterwards; the live custody balance lives in the
    escrow ledger.
    """
    job_id: int
    owner: str
    description: str
    created_utc: datetime
    status: JobStatus = JobStatus.OPEN
    worker: Optional[str] = None
    payment_amount: int = 0

    @property
    def is_funded(self) -> bool:
        return self.payment_amount > 0


@dataclass(frozen=True)
class JobView:
    """Read-only projection returned by the lifecycle query surface."""
    job_id: int
    owner: str
    worker: Optional[str]
    created_at: datetime
    description: str
    status_code: int

    @property
    def status(self) -> JobStatus:
        return JobStatus(self.status_code)
