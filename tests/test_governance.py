"""Tests for dispute governance — proves membership, voting windows,
weighted tallies, quorum boundaries and binding execution."""

from datetime import timedelta

import pytest

from freelance_dao.accounts import ether
from freelance_dao.errors import ErrorKind, PreconditionError
from freelance_dao.external.voting_token import InMemoryVotingToken
from freelance_dao.governance.quorum import QuorumEngine
from freelance_dao.models.job import JobStatus
from freelance_dao.models.proposal import ProposalStatus
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.service import MarketplaceService

from conftest import FakeClock, Parties, disputed_job, new_account, taken_job


VOTING_PERIOD = timedelta(days=7)


@pytest.fixture
def voters(
    service: MarketplaceService, token: InMemoryVotingToken,
) -> list[str]:
    """Three members holding 40 / 35 / 25 of a 100-token supply."""
    accounts = [new_account() for _ in range(3)]
    for account, weight in zip(accounts, (40, 35, 25)):
        token.set_balance(account, weight)
        assert service.join_dao(caller=account).success
    return accounts


def _open_proposal(
    service: MarketplaceService,
    parties: Parties,
    proposer: str,
    favor_worker: bool = True,
) -> tuple[int, int]:
    job_id = disputed_job(service, parties, ether(1))
    result = service.create_dispute_proposal(
        job_id, "ipfs://evidence", favor_worker, caller=proposer,
    )
    assert result.success
    return job_id, result.data["proposal_id"]


# =====================================================================
# Quorum engine
# =====================================================================


class TestQuorumEngine:
    @pytest.mark.parametrize(
        "downvotes, reached",
        [(19, False), (20, True), (21, True)],
        ids=["one-below", "equal", "one-above"],
    )
    def test_quorum_boundary(self, downvotes: int, reached: bool) -> None:
        result = QuorumEngine().evaluate(30, downvotes, 100, 50)
        assert result.required_votes == 50
        assert result.total_votes == 30 + downvotes
        assert result.quorum_reached is reached
        assert result.passed is reached

    def test_tie_rejects(self) -> None:
        result = QuorumEngine().evaluate(30, 30, 100, 50)
        assert result.quorum_reached
        assert not result.passed

    def test_fractional_threshold_rounds_up(self) -> None:
        assert QuorumEngine.required_votes(101, 50) == 51
        assert not QuorumEngine().evaluate(50, 0, 101, 50).quorum_reached

    def test_zero_supply_no_votes_is_not_passing(self) -> None:
        result = QuorumEngine().evaluate(0, 0, 0, 50)
        assert result.quorum_reached
        assert not result.passed


# =====================================================================
# Membership
# =====================================================================


class TestMembership:
    def test_holder_joins(
        self, service: MarketplaceService, token: InMemoryVotingToken,
    ) -> None:
        account = new_account()
        token.set_balance(account, 1)
        assert service.join_dao(caller=account).success
        assert service.governance.is_member(account)

    def test_zero_balance_cannot_join(self, service: MarketplaceService) -> None:
        result = service.join_dao(caller=new_account())
        assert result.error_kind == ErrorKind.RESOURCE

    def test_join_twice_fails(
        self, service: MarketplaceService, voters: list[str],
    ) -> None:
        result = service.join_dao(caller=voters[0])
        assert result.error_kind == ErrorKind.PRECONDITION
        assert len(service.governance.members()) == 3


# =====================================================================
# Proposals
# =====================================================================


class TestProposals:
    def test_proposal_requires_membership(
        self, service: MarketplaceService, parties: Parties, voters: list[str],
    ) -> None:
        job_id = disputed_job(service, parties)
        result = service.create_dispute_proposal(
            job_id, "ipfs://e", True, caller=parties.outsider,
        )
        assert result.error_kind == ErrorKind.AUTHORIZATION

    def test_proposal_requires_disputed_job(
        self, service: MarketplaceService, parties: Parties, voters: list[str],
    ) -> None:
        job_id = taken_job(service, parties)
        result = service.create_dispute_proposal(
            job_id, "ipfs://e", True, caller=voters[0],
        )
        assert result.error_kind == ErrorKind.PRECONDITION
        assert service.governance.proposal_count == 0

    def test_proposal_window(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        job_id, pid = _open_proposal(service, parties, voters[0])
        proposal = service.get_proposal(pid)
        assert pid == 1
        assert proposal.job_id == job_id
        assert proposal.start_utc == clock.now
        assert proposal.end_utc == clock.now + VOTING_PERIOD
        assert proposal.status == ProposalStatus.ACTIVE

    def test_proposals_for_job(
        self, service: MarketplaceService, parties: Parties, voters: list[str],
    ) -> None:
        job_id, first = _open_proposal(service, parties, voters[0])
        second = service.create_dispute_proposal(
            job_id, "ipfs://counter", False, caller=voters[1],
        ).data["proposal_id"]
        other_job = disputed_job(service, parties, ether("0.5"))
        service.create_dispute_proposal(other_job, "ipfs://x", True, caller=voters[2])

        ids = [p.proposal_id for p in service.governance.proposals_for_job(job_id)]
        assert ids == [first, second]
        assert service.governance.proposals_for_job(99) == []


# =====================================================================
# Voting
# =====================================================================


class TestVoting:
    def test_vote_weight_is_balance_at_cast_time(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        token: InMemoryVotingToken,
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        assert service.vote(pid, True, caller=voters[0]).data["weight"] == 40
        token.set_balance(voters[0], 5)
        proposal = service.get_proposal(pid)
        assert proposal.upvotes == 40
        assert proposal.voters[voters[0]].weight == 40

    def test_double_vote_rejected(
        self, service: MarketplaceService, parties: Parties, voters: list[str],
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        service.vote(pid, True, caller=voters[1])
        result = service.vote(pid, False, caller=voters[1])
        assert result.error_kind == ErrorKind.PRECONDITION
        proposal = service.get_proposal(pid)
        assert (proposal.upvotes, proposal.downvotes) == (35, 0)

    def test_non_member_cannot_vote(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        token: InMemoryVotingToken,
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        holder = new_account()
        token.set_balance(holder, 10)
        result = service.vote(pid, True, caller=holder)
        assert result.error_kind == ErrorKind.AUTHORIZATION

    def test_member_with_emptied_balance_has_no_weight(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        token: InMemoryVotingToken,
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        token.set_balance(voters[2], 0)
        result = service.vote(pid, True, caller=voters[2])
        assert result.error_kind == ErrorKind.RESOURCE

    def test_vote_at_end_instant_rejected(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        clock.advance(days=7, seconds=-1)
        assert service.vote(pid, True, caller=voters[0]).success
        clock.advance(seconds=1)
        result = service.vote(pid, True, caller=voters[1])
        assert result.error_kind == ErrorKind.PRECONDITION
        assert "ended" in result.errors[0]


# =====================================================================
# Execution
# =====================================================================


class TestExecution:
    def test_passing_proposal_pays_worker(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        job_id, pid = _open_proposal(service, parties, voters[0], favor_worker=True)
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, False, caller=voters[2])
        clock.advance(days=7)

        result = service.execute_proposal(pid, caller=parties.outsider)
        assert result.success
        assert result.data["status"] == "executed"
        assert service.get_job(job_id).status == JobStatus.CLOSED
        assert service.balance_of(parties.freelancer) == ether(1)
        assert service.get_escrow_entry(job_id).released

    def test_passing_proposal_refunds_employer(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        job_id, pid = _open_proposal(service, parties, voters[0], favor_worker=False)
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, True, caller=voters[1])
        clock.advance(days=7)

        assert service.execute_proposal(pid, caller=voters[1]).success
        assert service.balance_of(parties.employer) == ether(2)
        assert service.get_escrow_entry(job_id).refunded

    def test_execution_before_end_rejected(
        self, service: MarketplaceService, parties: Parties, voters: list[str],
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, True, caller=voters[1])
        result = service.execute_proposal(pid, caller=voters[0])
        assert result.error_kind == ErrorKind.PRECONDITION
        assert not service.get_proposal(pid).executed

    @pytest.mark.parametrize(
        "against, executed",
        [(9, False), (10, True), (11, True)],
        ids=["49-of-100", "50-of-100", "51-of-100"],
    )
    def test_quorum_boundary_at_execution(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        token: InMemoryVotingToken,
        clock: FakeClock,
        against: int,
        executed: bool,
    ) -> None:
        # 40 in favour plus `against` opposed, supply topped up to 100.
        token.set_balance(voters[2], against)
        token.set_balance(new_account(), 25 - against)
        job_id, pid = _open_proposal(service, parties, voters[0])
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, False, caller=voters[2])
        clock.advance(days=7)
        assert service.governance.preview_quorum(pid).total_supply == 100

        result = service.execute_proposal(pid, caller=voters[0])
        assert result.success is executed
        assert service.get_proposal(pid).executed is executed
        expected = JobStatus.CLOSED if executed else JobStatus.DISPUTED
        assert service.get_job(job_id).status == expected
        if not executed:
            assert result.error_kind == ErrorKind.RESOURCE

    def test_below_quorum_stays_unexecuted(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        job_id, pid = _open_proposal(service, parties, voters[0])
        service.vote(pid, True, caller=voters[0])
        clock.advance(days=7)

        result = service.execute_proposal(pid, caller=voters[0])
        assert result.error_kind == ErrorKind.RESOURCE
        assert "Quorum not reached" in result.errors[0]
        assert not service.get_proposal(pid).executed
        assert service.get_job(job_id).status == JobStatus.DISPUTED

    def test_tie_is_rejected_and_escrow_untouched(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        token: InMemoryVotingToken,
        clock: FakeClock,
    ) -> None:
        token.set_balance(voters[1], 40)
        _, pid = _open_proposal(service, parties, voters[0])
        job_id = service.get_proposal(pid).job_id
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, False, caller=voters[1])
        clock.advance(days=7)

        result = service.execute_proposal(pid, caller=voters[0])
        assert result.success
        assert result.data["status"] == "rejected"
        proposal = service.get_proposal(pid)
        assert proposal.executed
        assert proposal.status == ProposalStatus.REJECTED
        assert service.get_job(job_id).status == JobStatus.DISPUTED
        assert service.escrow_balance(job_id) == ether(1)
        assert service.event_log.last_event.event_kind == EventKind.PROPOSAL_REJECTED

    def test_execute_twice_fails(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        _, pid = _open_proposal(service, parties, voters[0])
        service.vote(pid, True, caller=voters[0])
        service.vote(pid, True, caller=voters[1])
        clock.advance(days=7)
        assert service.execute_proposal(pid, caller=voters[0]).success
        result = service.execute_proposal(pid, caller=voters[0])
        assert result.error_kind == ErrorKind.PRECONDITION
        assert service.balance_of(parties.freelancer) == ether(1)

    def test_second_proposal_on_settled_job_fails_atomically(
        self,
        service: MarketplaceService,
        parties: Parties,
        voters: list[str],
        clock: FakeClock,
    ) -> None:
        job_id, first = _open_proposal(service, parties, voters[0])
        second = service.create_dispute_proposal(
            job_id, "ipfs://other", False, caller=voters[1],
        ).data["proposal_id"]
        for pid in (first, second):
            service.vote(pid, True, caller=voters[0])
            service.vote(pid, True, caller=voters[1])
        clock.advance(days=7)

        assert service.execute_proposal(first, caller=voters[0]).success
        result = service.execute_proposal(second, caller=voters[0])
        assert result.error_kind == ErrorKind.PRECONDITION
        assert not service.get_proposal(second).executed
        assert service.balance_of(parties.employer) == ether(1)

    def test_quorum_change_is_owner_only(
        self, service: MarketplaceService, parties: Parties,
    ) -> None:
        result = service.set_quorum_percent(30, caller=parties.employer)
        assert result.error_kind == ErrorKind.AUTHORIZATION
        assert service.set_quorum_percent(30, caller=parties.admin).success
        assert service.governance.quorum_percent == 30
        with pytest.raises(PreconditionError):
            service.governance.set_quorum_percent(0, caller=parties.admin)
