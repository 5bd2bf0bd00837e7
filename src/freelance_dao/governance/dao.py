"""Dispute governance — token-weighted arbitration of disputed jobs.

Members of the arbitrating collective open a proposal against a job in
DISPUTED status, vote during a fixed window, and anyone may execute the
proposal once the window has closed. A binding, passing proposal is
replayed into the job lifecycle as a single ``resolve_dispute`` call;
this is the only authority governance holds over jobs and it never
touches the escrow ledger itself.

Constitutional-style rules:
- Membership requires a positive voting-token balance at join time.
- One vote per member per proposal; weight is the balance at cast time.
- Votes are accepted only inside [start, end); execution only at or
  after end. Windows cannot be shortened or extended.
- Quorum is evaluated against total supply at execution time.
- A proposal settles to EXECUTED or REJECTED exactly once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from freelance_dao.accounts import component_address, normalize_account
from freelance_dao.errors import AuthorizationError, PreconditionError, ResourceError
from freelance_dao.external.voting_token import VotingToken
from freelance_dao.governance.quorum import QuorumEngine, QuorumResult
from freelance_dao.jobs.lifecycle import JobLifecycle
from freelance_dao.models.job import JobStatus
from freelance_dao.models.proposal import DisputeProposal, ProposalStatus, VoteRecord
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.policy.resolver import PolicyResolver
from freelance_dao.transaction import TransactionManager

logger = logging.getLogger(__name__)


class DisputeGovernance:
    """The arbitrating collective's proposal and voting machinery."""

    def __init__(
        self,
        tx: TransactionManager,
        resolver: PolicyResolver,
        token: VotingToken,
        lifecycle: JobLifecycle,
        owner: str,
        address: Optional[str] = None,
    ) -> None:
        self._tx = tx
        self._token = token
        self._lifecycle = lifecycle
        self._engine = QuorumEngine()
        self.owner = normalize_account(owner)
        self.address = normalize_account(address or component_address("dispute-governance"))
        self.quorum_percent = resolver.quorum_percent()
        self.voting_period = resolver.voting_period()

        self._members: set[str] = set()
        self._proposals: dict[int, DisputeProposal] = {}
        self._last_proposal_id = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_member(self, account: str) -> bool:
        return normalize_account(account) in self._members

    def members(self) -> set[str]:
        return set(self._members)

    def get_proposal(self, proposal_id: int) -> Optional[DisputeProposal]:
        return self._proposals.get(proposal_id)

    def proposals(self) -> dict[int, DisputeProposal]:
        return dict(self._proposals)

    def proposals_for_job(self, job_id: int) -> list[DisputeProposal]:
        return [p for p in self._proposals.values() if p.job_id == job_id]

    def has_voted(self, proposal_id: int, account: str) -> bool:
        proposal = self._proposals.get(proposal_id)
        return proposal is not None and proposal.has_voted(normalize_account(account))

    @property
    def proposal_count(self) -> int:
        return len(self._proposals)

    def preview_quorum(self, proposal_id: int) -> QuorumResult:
        """Evaluate the proposal as if it were executed now (no side effects)."""
        proposal = self._require_proposal(proposal_id)
        return self._engine.evaluate(
            proposal.upvotes, proposal.downvotes,
            self._token.total_supply(), self.quorum_percent,
        )

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def join(self, *, caller: str) -> None:
        caller = normalize_account(caller)
        with self._tx.atomic():
            if caller in self._members:
                raise PreconditionError("Already a member")
            if self._token.balance_of(caller) <= 0:
                raise ResourceError("Joining requires a positive voting token balance")
            self._members.add(caller)
            self._tx.on_rollback(lambda: self._members.discard(caller))
            self._tx.emit(EventKind.MEMBER_JOINED, caller, {"member": caller})

        logger.info("%s joined the dispute collective", caller)

    # ------------------------------------------------------------------
    # Proposals and voting
    # ------------------------------------------------------------------

    def create_dispute_proposal(
        self,
        job_id: int,
        description: str,
        favor_worker: bool,
        *,
        caller: str,
    ) -> int:
        """Open a vote on how to settle a disputed job."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            self._require_member(caller)
            status = self._lifecycle.job_status(job_id)
            if status is None:
                raise PreconditionError(f"Job not found: {job_id}")
            if status != JobStatus.DISPUTED:
                raise PreconditionError(f"Job {job_id} is not disputed")

            now = self._tx.clock()
            proposal_id = self._last_proposal_id + 1
            proposal = DisputeProposal(
                proposal_id=proposal_id,
                job_id=job_id,
                description=description,
                favor_worker=favor_worker,
                proposer=caller,
                start_utc=now,
                end_utc=now + self.voting_period,
            )
            self._proposals[proposal_id] = proposal
            self._last_proposal_id = proposal_id

            def _rollback() -> None:
                self._proposals.pop(proposal_id, None)
                self._last_proposal_id = proposal_id - 1

            self._tx.on_rollback(_rollback)
            self._tx.emit(EventKind.PROPOSAL_CREATED, caller, {
                "proposal_id": proposal_id,
                "job_id": job_id,
                "favor_worker": favor_worker,
                "voting_ends_utc": _iso(proposal.end_utc),
            })

        logger.info("Proposal %d opened for job %d", proposal_id, job_id)
        return proposal_id

    def vote(self, proposal_id: int, support: bool, *, caller: str) -> int:
        """Cast the caller's weighted vote. Returns the weight counted."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            self._require_member(caller)
            proposal = self._require_proposal(proposal_id)
            now = self._tx.clock()
            if not proposal.is_open(now):
                if now < proposal.start_utc:
                    raise PreconditionError("Voting has not started")
                raise PreconditionError("Voting period has ended")
            if proposal.has_voted(caller):
                raise PreconditionError("Already voted")
            weight = self._token.balance_of(caller)
            if weight <= 0:
                raise ResourceError("No voting weight")

            proposal.voters[caller] = VoteRecord(
                voter=caller, support=support, weight=weight, cast_utc=now,
            )
            if support:
                proposal.upvotes += weight
            else:
                proposal.downvotes += weight

            def _rollback() -> None:
                proposal.voters.pop(caller, None)
                if support:
                    proposal.upvotes -= weight
                else:
                    proposal.downvotes -= weight

            self._tx.on_rollback(_rollback)
            self._tx.emit(EventKind.VOTE_CAST, caller, {
                "proposal_id": proposal_id, "support": support, "weight": weight,
            })

        return weight

    def execute_proposal(self, proposal_id: int, *, caller: str) -> ProposalStatus:
        """Settle a closed proposal.

        Below quorum the call fails and the proposal stays unexecuted; it
        may be executed later if participation relative to supply changes.
        """
        caller = normalize_account(caller)
        with self._tx.atomic():
            proposal = self._require_proposal(proposal_id)
            if proposal.executed:
                raise PreconditionError("Proposal already executed")
            now = self._tx.clock()
            if now < proposal.end_utc:
                raise PreconditionError("Voting period not ended")

            result = self._engine.evaluate(
                proposal.upvotes, proposal.downvotes,
                self._token.total_supply(), self.quorum_percent,
            )
            if not result.quorum_reached:
                raise ResourceError(
                    f"Quorum not reached: {result.total_votes} of "
                    f"{result.required_votes} required votes"
                )

            if result.passed:
                self._lifecycle.resolve_dispute(
                    proposal.job_id, proposal.favor_worker, caller=self.address,
                )
                status = ProposalStatus.EXECUTED
                kind = EventKind.PROPOSAL_EXECUTED
            else:
                status = ProposalStatus.REJECTED
                kind = EventKind.PROPOSAL_REJECTED

            proposal.executed = True
            proposal.status = status
            proposal.settled_utc = now

            def _rollback() -> None:
                proposal.executed = False
                proposal.status = ProposalStatus.ACTIVE
                proposal.settled_utc = None

            self._tx.on_rollback(_rollback)
            self._tx.emit(kind, caller, {
                "proposal_id": proposal_id,
                "job_id": proposal.job_id,
                "upvotes": result.upvotes,
                "downvotes": result.downvotes,
                "total_supply": result.total_supply,
            })

        logger.info("Proposal %d settled as %s", proposal_id, status.value)
        return status

    # ------------------------------------------------------------------
    # Authority configuration
    # ------------------------------------------------------------------

    def set_quorum_percent(self, quorum_percent: int, *, caller: str) -> None:
        caller = normalize_account(caller)
        with self._tx.atomic():
            self._require_owner(caller)
            if not (1 <= quorum_percent <= 100):
                raise PreconditionError(
                    f"Quorum percent must be in [1, 100], got {quorum_percent}"
                )
            previous = self.quorum_percent
            self.quorum_percent = quorum_percent
            self._tx.on_rollback(lambda: setattr(self, "quorum_percent", previous))
            self._tx.emit(EventKind.QUORUM_CHANGED, caller, {
                "previous": previous, "current": quorum_percent,
            })

    def transfer_ownership(self, new_owner: str, *, caller: str) -> None:
        caller = normalize_account(caller)
        new_owner = normalize_account(new_owner)
        with self._tx.atomic():
            self._require_owner(caller)
            previous = self.owner
            self.owner = new_owner
            self._tx.on_rollback(lambda: setattr(self, "owner", previous))
            self._tx.emit(EventKind.AUTHORITY_TRANSFERRED, caller, {
                "component": "dispute_governance", "field": "owner",
                "previous": previous, "current": new_owner,
            })

    def load_state(
        self,
        proposals: dict[int, DisputeProposal],
        members: set[str],
        quorum_percent: Optional[int] = None,
    ) -> None:
        """Replace proposals and membership (state recovery)."""
        self._proposals = dict(proposals)
        self._members = set(members)
        self._last_proposal_id = max(self._proposals, default=0)
        if quorum_percent is not None:
            self.quorum_percent = quorum_percent

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_member(self, account: str) -> None:
        if account not in self._members:
            raise AuthorizationError("Not a DAO member")

    def _require_owner(self, account: str) -> None:
        if account != self.owner:
            raise AuthorizationError("Only the governance owner can change its configuration")

    def _require_proposal(self, proposal_id: int) -> DisputeProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise PreconditionError(f"Proposal not found: {proposal_id}")
        return proposal


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")
