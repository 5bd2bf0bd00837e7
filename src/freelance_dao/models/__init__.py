"""Data models — jobs, escrow entries, dispute proposals, identities."""

from freelance_dao.models.escrow import EscrowEntry
from freelance_dao.models.identity import IdentityRecord
from freelance_dao.models.job import Job, JobStatus, JobView
from freelance_dao.models.proposal import DisputeProposal, ProposalStatus, VoteRecord

__all__ = [
    "DisputeProposal",
    "EscrowEntry",
    "IdentityRecord",
    "Job",
    "JobStatus",
    "JobView",
    "ProposalStatus",
    "VoteRecord",
]
