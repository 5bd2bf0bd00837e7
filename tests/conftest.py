"""Shared fixtures: a fully wired marketplace with a controllable clock."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from eth_account import Account

from freelance_dao.accounts import ether
from freelance_dao.external.voting_token import InMemoryVotingToken
from freelance_dao.policy.resolver import PolicyResolver
from freelance_dao.service import MarketplaceService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; tests advance it explicitly."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def new_account() -> str:
    return Account.create().address


@dataclass
class Parties:
    admin: str
    employer: str
    freelancer: str
    outsider: str


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def parties() -> Parties:
    return Parties(
        admin=new_account(),
        employer=new_account(),
        freelancer=new_account(),
        outsider=new_account(),
    )


@pytest.fixture
def token() -> InMemoryVotingToken:
    return InMemoryVotingToken()


@pytest.fixture
def service(
    resolver: PolicyResolver,
    clock: FakeClock,
    parties: Parties,
    token: InMemoryVotingToken,
) -> MarketplaceService:
    """Marketplace with a verified employer (2 ether) and freelancer."""
    svc = MarketplaceService(resolver, owner=parties.admin, token=token, clock=clock)
    enroll(svc, parties.employer, "Employer", admin=parties.admin)
    enroll(svc, parties.freelancer, "Freelancer", admin=parties.admin)
    assert svc.fund_account(parties.employer, ether(2)).success
    return svc


def enroll(service: MarketplaceService, account: str, role: str, *, admin: str) -> None:
    assert service.register_user(role, f"ipfs://{role.lower()}", caller=account).success
    assert service.verify_user(account, caller=admin).success


def funded_job(service: MarketplaceService, parties: Parties, amount: int = ether(1)) -> int:
    job_id = service.create_job("ipfs://job-spec", caller=parties.employer).data["job_id"]
    assert service.deposit_funds(job_id, amount, caller=parties.employer).success
    return job_id


def taken_job(service: MarketplaceService, parties: Parties, amount: int = ether(1)) -> int:
    job_id = funded_job(service, parties, amount)
    assert service.assign_worker(job_id, parties.freelancer, caller=parties.employer).success
    return job_id


def disputed_job(service: MarketplaceService, parties: Parties, amount: int = ether(1)) -> int:
    job_id = taken_job(service, parties, amount)
    assert service.mark_complete(job_id, caller=parties.freelancer).success
    assert service.raise_dispute(job_id, caller=parties.employer).success
    return job_id
