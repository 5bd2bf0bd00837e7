"""Marketplace service — unified facade for the escrowed job marketplace.

This is the primary interface for programmatic access. It wires and
orchestrates all subsystems:
- Job lifecycle (create, fund, assign, complete, close, cancel, dispute)
- Escrow custody (deposit, release, refund, driven by the lifecycle only)
- Dispute governance (membership, proposals, weighted voting, execution)
- Identity registry and voting token (injected collaborators)
- Persistence (event log, state store)

All operations produce typed results. Each call runs as one transaction:
either every effect and event is committed or none is. Failures are
reported, never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from freelance_dao.accounts import component_address, normalize_account
from freelance_dao.errors import ErrorKind, MarketplaceError
from freelance_dao.escrow.ledger import EscrowLedger
from freelance_dao.escrow.value_book import ValueBook
from freelance_dao.external.identity import IdentityRegistry, InMemoryIdentityRegistry
from freelance_dao.external.voting_token import InMemoryVotingToken, VotingToken
from freelance_dao.governance.dao import DisputeGovernance
from freelance_dao.jobs.lifecycle import JobLifecycle
from freelance_dao.models.escrow import EscrowEntry
from freelance_dao.models.job import JobView
from freelance_dao.models.proposal import DisputeProposal
from freelance_dao.persistence.event_log import EventKind, EventLog, EventRecord
from freelance_dao.persistence.state_store import StateStore
from freelance_dao.policy.resolver import PolicyResolver
from freelance_dao.transaction import Clock, TransactionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


class MarketplaceService:
    """Unified marketplace facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = MarketplaceService(resolver, owner=admin)

        service.register_user("Employer", "ipfs://e", caller=employer)
        service.verify_user(employer, caller=admin)
        service.fund_account(employer, ether(2))

        result = service.create_job("ipfs://job", caller=employer)
        job_id = result.data["job_id"]
        service.deposit_funds(job_id, ether(1), caller=employer)
        service.assign_worker(job_id, freelancer, caller=employer)
        service.mark_complete(job_id, caller=freelancer)
        service.close_job(job_id, caller=employer)

    Persistence (optional):
        service = MarketplaceService(resolver, owner=admin,
                                     event_log=log, state_store=store)
        # State is persisted after each committed operation and loaded
        # on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        owner: str,
        identity: Optional[IdentityRegistry] = None,
        token: Optional[VotingToken] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._resolver = resolver
        self._owner = normalize_account(owner)
        self._tx = TransactionManager(event_log, clock)
        # The built-in registry is persisted with the rest of the state;
        # an injected registry keeps its own records.
        self._builtin_registry: Optional[InMemoryIdentityRegistry] = None
        if identity is None:
            self._builtin_registry = InMemoryIdentityRegistry(self._tx, self._owner)
        self._identity = identity if identity is not None else self._builtin_registry
        self._token = token or InMemoryVotingToken()
        self._book = ValueBook(self._tx)

        lifecycle_address = component_address("job-lifecycle")
        governance_address = component_address("dispute-governance")
        self._ledger = EscrowLedger(
            self._tx, self._book,
            owner=self._owner,
            authorized_caller=lifecycle_address,
        )
        self._lifecycle = JobLifecycle(
            self._tx, resolver, self._identity,
            owner=self._owner,
            escrow=self._ledger,
            governance=governance_address,
            address=lifecycle_address,
        )
        self._governance = DisputeGovernance(
            self._tx, resolver, self._token, self._lifecycle,
            owner=self._owner,
            address=governance_address,
        )

        self._state_store = state_store
        if state_store is not None:
            self._lifecycle.load_state(*state_store.load_jobs())
            self._ledger.load_entries(state_store.load_escrow())
            self._governance.load_state(*state_store.load_governance())
            self._book.load_balances(state_store.load_balances())
            if self._builtin_registry is not None:
                self._builtin_registry.load_users(state_store.load_users())

        # Set when a StateStore write fails after the operation committed.
        # In-memory state and the event log remain authoritative.
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def lifecycle(self) -> JobLifecycle:
        return self._lifecycle

    @property
    def ledger(self) -> EscrowLedger:
        return self._ledger

    @property
    def governance(self) -> DisputeGovernance:
        return self._governance

    @property
    def value_book(self) -> ValueBook:
        return self._book

    @property
    def identity(self) -> IdentityRegistry:
        return self._identity

    @property
    def token(self) -> VotingToken:
        return self._token

    @property
    def event_log(self) -> EventLog:
        return self._tx.event_log

    @property
    def tx(self) -> TransactionManager:
        return self._tx

    # ------------------------------------------------------------------
    # Identity and value
    # ------------------------------------------------------------------

    def register_user(self, role: str, profile_url: str, *, caller: str) -> ServiceResult:
        registry = self._registry()
        if registry is None:
            return _unsupported("registration")
        return self._execute(
            "register_user",
            lambda: registry.register_user(role, profile_url, caller=caller),
            lambda r: {"account": r.account, "role": r.role, "verified": r.verified},
        )

    def update_profile(self, profile_url: str, *, caller: str) -> ServiceResult:
        registry = self._registry()
        if registry is None:
            return _unsupported("profile updates")
        return self._execute(
            "update_profile",
            lambda: registry.update_profile(profile_url, caller=caller),
            lambda r: {"account": r.account, "profile_url": r.profile_url},
        )

    def verify_user(self, account: str, *, caller: str) -> ServiceResult:
        registry = self._registry()
        if registry is None:
            return _unsupported("verification")
        return self._execute(
            "verify_user",
            lambda: registry.verify_user(account, caller=caller),
            lambda r: {"account": r.account, "verified": r.verified},
        )

    def fund_account(self, account: str, amount: int) -> ServiceResult:
        """Credit an account with value arriving from outside."""
        return self._execute(
            "fund_account",
            lambda: self._book.fund(account, amount),
            lambda _: {"account": normalize_account(account),
                       "balance": self._book.balance_of(account)},
        )

    def balance_of(self, account: str) -> int:
        return self._book.balance_of(account)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create_job(self, description: str, *, caller: str) -> ServiceResult:
        return self._execute(
            "create_job",
            lambda: self._lifecycle.create_job(description, caller=caller),
            lambda job_id: {"job_id": job_id, "status": "OPEN"},
        )

    def deposit_funds(self, job_id: int, amount: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "deposit_funds",
            lambda: self._lifecycle.deposit_funds(job_id, amount, caller=caller),
            lambda _: {"job_id": job_id, "escrow_balance": self._ledger.balance_of(job_id)},
        )

    def assign_worker(self, job_id: int, worker: str, *, caller: str) -> ServiceResult:
        return self._execute(
            "assign_worker",
            lambda: self._lifecycle.assign_worker(job_id, worker, caller=caller),
            lambda _: self._job_data(job_id),
        )

    def mark_complete(self, job_id: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "mark_complete",
            lambda: self._lifecycle.mark_complete(job_id, caller=caller),
            lambda _: self._job_data(job_id),
        )

    def close_job(self, job_id: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "close_job",
            lambda: self._lifecycle.close_job(job_id, caller=caller),
            lambda paid: {**self._job_data(job_id), "released": paid},
        )

    def cancel_job(self, job_id: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "cancel_job",
            lambda: self._lifecycle.cancel_job(job_id, caller=caller),
            lambda refunded: {**self._job_data(job_id), "refunded": refunded},
        )

    def raise_dispute(self, job_id: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "raise_dispute",
            lambda: self._lifecycle.raise_dispute(job_id, caller=caller),
            lambda _: self._job_data(job_id),
        )

    def get_job(self, job_id: int) -> Optional[JobView]:
        return self._lifecycle.get_job(job_id)

    def jobs_by_employer(self, account: str) -> list[int]:
        return self._lifecycle.jobs_by_employer(account)

    def jobs_by_worker(self, account: str) -> list[int]:
        return self._lifecycle.jobs_by_worker(account)

    def escrow_balance(self, job_id: int) -> int:
        return self._ledger.balance_of(job_id)

    def get_escrow_entry(self, job_id: int) -> Optional[EscrowEntry]:
        return self._ledger.get_entry(job_id)

    # ------------------------------------------------------------------
    # Dispute governance
    # ------------------------------------------------------------------

    def join_dao(self, *, caller: str) -> ServiceResult:
        return self._execute(
            "join_dao",
            lambda: self._governance.join(caller=caller),
            lambda _: {"member": normalize_account(caller)},
        )

    def create_dispute_proposal(
        self,
        job_id: int,
        description: str,
        favor_worker: bool,
        *,
        caller: str,
    ) -> ServiceResult:
        return self._execute(
            "create_dispute_proposal",
            lambda: self._governance.create_dispute_proposal(
                job_id, description, favor_worker, caller=caller,
            ),
            lambda pid: {"proposal_id": pid, "job_id": job_id},
        )

    def vote(self, proposal_id: int, support: bool, *, caller: str) -> ServiceResult:
        return self._execute(
            "vote",
            lambda: self._governance.vote(proposal_id, support, caller=caller),
            lambda weight: {"proposal_id": proposal_id, "weight": weight},
        )

    def execute_proposal(self, proposal_id: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "execute_proposal",
            lambda: self._governance.execute_proposal(proposal_id, caller=caller),
            lambda status: {"proposal_id": proposal_id, "status": status.value},
        )

    def set_quorum_percent(self, quorum_percent: int, *, caller: str) -> ServiceResult:
        return self._execute(
            "set_quorum_percent",
            lambda: self._governance.set_quorum_percent(quorum_percent, caller=caller),
            lambda _: {"quorum_percent": quorum_percent},
        )

    def get_proposal(self, proposal_id: int) -> Optional[DisputeProposal]:
        return self._governance.get_proposal(proposal_id)

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        return self.event_log.events(kind)

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        proposals = self._governance.proposals().values()
        return {
            "policy_version": self._resolver.version,
            "jobs": {
                "total": self._lifecycle.job_count,
                "by_status": self._lifecycle.count_by_status(),
            },
            "escrow": {
                "entries": len(self._ledger.entries()),
                "total_held": self._ledger.total_held,
            },
            "governance": {
                "members": len(self._governance.members()),
                "proposals": self._governance.proposal_count,
                "active_proposals": sum(1 for p in proposals if not p.executed),
                "quorum_percent": self._governance.quorum_percent,
            },
            "events": self.event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _registry(self) -> Optional[InMemoryIdentityRegistry]:
        if isinstance(self._identity, InMemoryIdentityRegistry):
            return self._identity
        return None

    def _job_data(self, job_id: int) -> dict[str, Any]:
        view = self._lifecycle.get_job(job_id)
        return {"job_id": job_id, "status": view.status.name if view else None}

    def _execute(
        self,
        action: str,
        operation: Callable[[], Any],
        describe: Callable[[Any], dict[str, Any]],
    ) -> ServiceResult:
        """Run one operation as a transaction and report the outcome."""
        try:
            value = operation()
        except MarketplaceError as e:
            logger.warning("%s rejected (%s): %s", action, e.kind.value, e)
            return ServiceResult(success=False, errors=[str(e)], error_kind=e.kind)
        except ValueError as e:
            logger.warning("%s rejected: %s", action, e)
            return ServiceResult(success=False, errors=[str(e)])
        except OSError as e:
            logger.warning("%s rolled back, event log unavailable: %s", action, e)
            return ServiceResult(success=False, errors=[f"Event log failure: {e}"])

        data = describe(value)
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        NOTE: This method can raise OSError.
        """
        if self._state_store is None:
            return
        self._state_store.save_jobs(
            self._lifecycle.jobs(),
            self._lifecycle.employer_index(),
            self._lifecycle.worker_index(),
        )
        self._state_store.save_escrow(self._ledger.entries())
        self._state_store.save_governance(
            self._governance.proposals(),
            self._governance.members(),
            self._governance.quorum_percent,
        )
        self._state_store.save_balances(self._book.balances())
        if self._builtin_registry is not None:
            self._state_store.save_users(self._builtin_registry.users())

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after the operation's events have been committed.

        MUST NOT rollback in-memory state: the event log already records
        the operation. If persist fails, the StateStore is stale; the
        degraded flag is set and a warning (not an error) is returned.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State store write failed: %s", e)
            return f"Persistence degraded: {e}; state committed in event log but StateStore is stale"


def _unsupported(what: str) -> ServiceResult:
    return ServiceResult(
        success=False,
        errors=[f"Injected identity registry does not support {what}"],
        error_kind=ErrorKind.PRECONDITION,
    )
