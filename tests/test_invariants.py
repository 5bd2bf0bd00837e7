"""Randomised operation sequences — proves custody invariants hold under
arbitrary interleavings of valid and invalid calls."""

import random

import pytest

from freelance_dao.accounts import ether
from freelance_dao.external.voting_token import InMemoryVotingToken
from freelance_dao.models.job import JobStatus
from freelance_dao.service import MarketplaceService

from conftest import FakeClock, Parties, new_account


OPERATIONS = (
    "create", "deposit", "assign", "complete", "close",
    "cancel", "dispute", "propose", "vote", "execute", "tick",
)


def _check_invariants(service: MarketplaceService, supply: int) -> None:
    book = service.value_book
    ledger = service.ledger
    # Value is conserved: only fund_account creates it.
    assert book.total() == supply
    assert book.balance_of(ledger.address) == ledger.total_held

    for job_id, job in service.lifecycle.jobs().items():
        entry = ledger.get_entry(job_id)
        if entry is None:
            assert job.payment_amount == 0
            continue
        assert not (entry.released and entry.refunded)
        assert entry.deposited_total == job.payment_amount
        if entry.disbursed:
            assert entry.amount == 0
            assert job.status in (JobStatus.CLOSED, JobStatus.CANCELLED)
        else:
            assert entry.amount == entry.deposited_total
        if job.status == JobStatus.CANCELLED:
            assert not entry.released
        if job.status == JobStatus.CLOSED:
            assert entry.disbursed

    for proposal in service.governance.proposals().values():
        assert proposal.upvotes + proposal.downvotes == sum(
            v.weight for v in proposal.voters.values()
        )


@pytest.mark.parametrize("seed", range(8))
def test_random_interleavings_preserve_custody(
    seed: int,
    service: MarketplaceService,
    parties: Parties,
    token: InMemoryVotingToken,
    clock: FakeClock,
) -> None:
    rng = random.Random(seed)
    service.fund_account(parties.employer, ether(20))
    supply = ether(22)

    members = [new_account() for _ in range(3)]
    for account in members:
        token.set_balance(account, rng.randint(1, 100))
        service.join_dao(caller=account)
    actors = [parties.employer, parties.freelancer, parties.outsider, *members]

    for _ in range(250):
        op = rng.choice(OPERATIONS)
        job_ids = list(service.lifecycle.jobs()) or [1]
        job_id = rng.choice(job_ids)
        caller = rng.choice(actors)
        proposal_ids = list(service.governance.proposals()) or [1]
        pid = rng.choice(proposal_ids)

        if op == "create":
            service.create_job("ipfs://r", caller=caller)
        elif op == "deposit":
            amount = rng.choice((0, 1, ether("0.25"), ether(1), ether(50)))
            service.deposit_funds(job_id, amount, caller=caller)
        elif op == "assign":
            worker = rng.choice((parties.freelancer, parties.outsider))
            service.assign_worker(job_id, worker, caller=caller)
        elif op == "complete":
            service.mark_complete(job_id, caller=caller)
        elif op == "close":
            service.close_job(job_id, caller=caller)
        elif op == "cancel":
            service.cancel_job(job_id, caller=caller)
        elif op == "dispute":
            service.raise_dispute(job_id, caller=caller)
        elif op == "propose":
            service.create_dispute_proposal(
                job_id, "ipfs://p", rng.random() < 0.5, caller=caller,
            )
        elif op == "vote":
            service.vote(pid, rng.random() < 0.5, caller=caller)
        elif op == "execute":
            service.execute_proposal(pid, caller=caller)
        else:
            clock.advance(seconds=rng.choice((60, 3600, 86400 * 3)))

        _check_invariants(service, supply)


def test_payout_never_exceeds_deposit(
    service: MarketplaceService, parties: Parties, clock: FakeClock,
) -> None:
    job_id = service.create_job("ipfs://x", caller=parties.employer).data["job_id"]
    service.deposit_funds(job_id, ether(1), caller=parties.employer)
    service.assign_worker(job_id, parties.freelancer, caller=parties.employer)
    service.mark_complete(job_id, caller=parties.freelancer)
    for _ in range(3):
        service.close_job(job_id, caller=parties.employer)
        service.cancel_job(job_id, caller=parties.employer)
        clock.advance(days=1)
    assert service.balance_of(parties.freelancer) == ether(1)
    assert service.balance_of(parties.employer) == ether(1)
    assert service.ledger.get_entry(job_id).disbursed_total == ether(1)
