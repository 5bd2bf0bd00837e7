"""Dispute proposal models.

A proposal asks the collective to settle one disputed job in favour of
either the worker or the employer. Voting is token-weighted, each member
votes at most once, and the weight is captured when the vote is cast.

ACTIVE → EXECUTED (quorum met, upvotes > downvotes, dispute resolved)
ACTIVE → REJECTED (quorum met, upvotes <= downvotes)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class ProposalStatus(str, enum.Enum):
    """Settlement status of a proposal."""
    ACTIVE = "active"
    EXECUTED = "executed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class VoteRecord:
    """A single member's vote. weight is the token balance at cast time."""
    voter: str
    support: bool
    weight: int
    cast_utc: Optional[datetime] = None


@dataclass
class DisputeProposal:
    """A governance proposal resolving one disputed job."""
    proposal_id: int
    job_id: int
    description: str
    favor_worker: bool
    proposer: str
    start_utc: datetime
    end_utc: datetime
    upvotes: int = 0
    downvotes: int = 0
    voters: dict[str, VoteRecord] = field(default_factory=dict)
    executed: bool = False
    status: ProposalStatus = ProposalStatus.ACTIVE
    settled_utc: Optional[datetime] = None

    @property
    def total_votes(self) -> int:
        return self.upvotes + self.downvotes

    def has_voted(self, account: str) -> bool:
        return account in self.voters

    def is_open(self, now: datetime) -> bool:
        """Voting window is half-open: [start_utc, end_utc)."""
        return self.start_utc <= now < self.end_utc
