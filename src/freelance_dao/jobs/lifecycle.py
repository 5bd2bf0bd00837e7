"""Job lifecycle — owns job records and drives the escrow ledger.

This is the only component that writes job status and the only caller
the escrow ledger accepts. Every operation names its caller explicitly
and is gated twice: on who the caller is (role or identity) and on the
job's current status.

Failure policy: any guard failure raises and the surrounding transaction
rolls back, so no operation leaves a partial change behind. Nothing is
retried; the caller resubmits once the precondition holds.
"""

from __future__ import annotations

import logging
from typing import Optional

from freelance_dao.accounts import component_address, normalize_account
from freelance_dao.errors import AuthorizationError, PreconditionError, ResourceError
from freelance_dao.escrow.ledger import EscrowLedger
from freelance_dao.external.identity import IdentityRegistry
from freelance_dao.jobs.state_machine import JobStateMachine
from freelance_dao.models.job import Job, JobStatus, JobView
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.policy.resolver import PolicyResolver
from freelance_dao.transaction import TransactionManager

logger = logging.getLogger(__name__)


class JobLifecycle:
    """Role- and state-gated job transitions.

    Usage:
        lifecycle = JobLifecycle(tx, resolver, registry, owner=admin)
        ledger = EscrowLedger(tx, book, owner=admin,
                              authorized_caller=lifecycle.address)
        lifecycle.set_escrow(ledger, caller=admin)

        job_id = lifecycle.create_job("ipfs://job", caller=employer)
        lifecycle.deposit_funds(job_id, ether(1), caller=employer)
        lifecycle.assign_worker(job_id, freelancer, caller=employer)
        lifecycle.mark_complete(job_id, caller=freelancer)
        lifecycle.close_job(job_id, caller=employer)
    """

    def __init__(
        self,
        tx: TransactionManager,
        resolver: PolicyResolver,
        identity: IdentityRegistry,
        owner: str,
        escrow: Optional[EscrowLedger] = None,
        governance: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        self._tx = tx
        self._resolver = resolver
        self._identity = identity
        self.owner = normalize_account(owner)
        self.escrow = escrow
        self.governance = normalize_account(governance) if governance else None
        self.address = normalize_account(address or component_address("job-lifecycle"))

        self._jobs: dict[int, Job] = {}
        self._employer_jobs: dict[str, list[int]] = {}
        self._worker_jobs: dict[str, list[int]] = {}
        self._last_job_id = 0

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    def get_job(self, job_id: int) -> Optional[JobView]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return JobView(
            job_id=job.job_id,
            owner=job.owner,
            worker=job.worker,
            created_at=job.created_utc,
            description=job.description,
            status_code=int(job.status),
        )

    def job_status(self, job_id: int) -> Optional[JobStatus]:
        job = self._jobs.get(job_id)
        return job.status if job else None

    def payment_amount(self, job_id: int) -> int:
        job = self._jobs.get(job_id)
        return job.payment_amount if job else 0

    def jobs_by_employer(self, account: str) -> list[int]:
        return list(self._employer_jobs.get(normalize_account(account), []))

    def jobs_by_worker(self, account: str) -> list[int]:
        return list(self._worker_jobs.get(normalize_account(account), []))

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    def jobs(self) -> dict[int, Job]:
        return dict(self._jobs)

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for job in self._jobs.values():
            counts[job.status.name] = counts.get(job.status.name, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Employer / worker operations
    # ------------------------------------------------------------------

    def create_job(self, description: str, *, caller: str) -> int:
        """Open a new unfunded job owned by a verified employer."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            role = self._resolver.employer_role()
            if not self._identity.resolve(caller).holds(role):
                raise AuthorizationError(f"Caller is not a verified {role}")

            job_id = self._last_job_id + 1
            job = Job(
                job_id=job_id,
                owner=caller,
                description=description,
                created_utc=self._tx.clock(),
            )
            self._jobs[job_id] = job
            self._last_job_id = job_id
            self._index(self._employer_jobs, caller, job_id)

            def _rollback() -> None:
                self._jobs.pop(job_id, None)
                self._last_job_id = job_id - 1

            self._tx.on_rollback(_rollback)
            self._tx.emit(EventKind.JOB_CREATED, caller, {
                "job_id": job_id, "owner": caller, "description": description,
            })

        logger.info("Job %d created by %s", job_id, caller)
        return job_id

    def deposit_funds(self, job_id: int, amount: int, *, caller: str) -> None:
        """Fund an open job; the value goes straight into escrow custody."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            job = self._require_job(job_id)
            self._require_owner_of(job, caller)
            if job.status != JobStatus.OPEN:
                raise PreconditionError("Job not open")
            if amount <= 0:
                raise ResourceError("Deposit amount must be positive")
            minimum = self._resolver.min_deposit_wei()
            if amount < minimum:
                raise ResourceError(f"Deposit below minimum of {minimum} wei")
            if job.is_funded:
                raise ResourceError("Job already funded")
            escrow = self._require_escrow()

            self._set_field(job, "payment_amount", amount)
            escrow.deposit(job_id, caller, amount, caller=self.address)
            self._tx.emit(EventKind.JOB_FUNDED, caller, {
                "job_id": job_id, "amount": amount,
            })

        logger.info("Job %d funded with %d wei", job_id, amount)

    def assign_worker(self, job_id: int, worker: str, *, caller: str) -> None:
        caller = normalize_account(caller)
        worker = normalize_account(worker)
        with self._tx.atomic():
            job = self._require_job(job_id)
            self._require_owner_of(job, caller)
            if job.status != JobStatus.OPEN:
                raise PreconditionError("Job not open")
            if not job.is_funded:
                raise ResourceError("Job not funded")
            role = self._resolver.freelancer_role()
            if not self._identity.resolve(worker).holds(role):
                raise AuthorizationError(f"Worker is not a verified {role}")

            self._set_field(job, "worker", worker)
            self._transition(job, JobStatus.TAKEN)
            self._index(self._worker_jobs, worker, job_id)
            self._tx.emit(EventKind.WORKER_ASSIGNED, caller, {
                "job_id": job_id, "worker": worker,
            })

        logger.info("Job %d assigned to %s", job_id, worker)

    def mark_complete(self, job_id: int, *, caller: str) -> None:
        caller = normalize_account(caller)
        with self._tx.atomic():
            job = self._require_job(job_id)
            if job.worker is None or caller != job.worker:
                raise AuthorizationError("Only the assigned worker can mark the job complete")
            if job.status != JobStatus.TAKEN:
                raise PreconditionError("Job not taken")
            self._transition(job, JobStatus.COMPLETED)
            self._tx.emit(EventKind.JOB_COMPLETED, caller, {"job_id": job_id})

    def close_job(self, job_id: int, *, caller: str) -> int:
        """Accept completed work and release the escrow to the worker."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            job = self._require_job(job_id)
            self._require_owner_of(job, caller)
            if job.status != JobStatus.COMPLETED:
                raise PreconditionError("Job not completed")
            self._transition(job, JobStatus.CLOSED)
            paid = self._require_escrow().release(job_id, job.worker, caller=self.address)
            self._tx.emit(EventKind.JOB_CLOSED, caller, {
                "job_id": job_id, "worker": job.worker, "amount": paid,
            })

        logger.info("Job %d closed, %d wei released", job_id, paid)
        return paid

    def cancel_job(self, job_id: int, *, caller: str) -> int:
        """Withdraw an unassigned job; refunds the employer if funded."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            job = self._require_job(job_id)
            self._require_owner_of(job, caller)
            if job.status != JobStatus.OPEN:
                raise PreconditionError("Job not open")
            self._transition(job, JobStatus.CANCELLED)
            refunded = 0
            if job.is_funded:
                refunded = self._require_escrow().refund(job_id, caller=self.address)
            self._tx.emit(EventKind.JOB_CANCELLED, caller, {
                "job_id": job_id, "refunded": refunded,
            })

        logger.info("Job %d cancelled, %d wei refunded", job_id, refunded)
        return refunded

    def raise_dispute(self, job_id: int, *, caller: str) -> None:
        caller = normalize_account(caller)
        with self._tx.atomic():
            job = self._require_job(job_id)
            if caller != job.owner and caller != job.worker:
                raise AuthorizationError("Only the job owner or assigned worker can raise a dispute")
            if job.status not in (JobStatus.TAKEN, JobStatus.COMPLETED):
                raise PreconditionError(
                    f"Job cannot be disputed in status {job.status.name}"
                )
            self._transition(job, JobStatus.DISPUTED)
            self._tx.emit(EventKind.DISPUTE_RAISED, caller, {"job_id": job_id})

        logger.info("Dispute raised on job %d by %s", job_id, caller)

    # ------------------------------------------------------------------
    # Governance entry point
    # ------------------------------------------------------------------

    def resolve_dispute(self, job_id: int, favor_worker: bool, *, caller: str) -> int:
        """Settle a disputed job as instructed by the governance authority."""
        caller = normalize_account(caller)
        with self._tx.atomic():
            if self.governance is None or caller != self.governance:
                raise AuthorizationError("Only the dispute governance authority can resolve disputes")
            job = self._require_job(job_id)
            if job.status != JobStatus.DISPUTED:
                raise PreconditionError("Job not disputed")
            self._transition(job, JobStatus.CLOSED)
            escrow = self._require_escrow()
            if favor_worker:
                amount = escrow.release(job_id, job.worker, caller=self.address)
            else:
                amount = escrow.refund(job_id, caller=self.address)
            self._tx.emit(EventKind.DISPUTE_RESOLVED, caller, {
                "job_id": job_id, "favor_worker": favor_worker, "amount": amount,
            })

        logger.info(
            "Dispute on job %d resolved in favour of the %s",
            job_id, "worker" if favor_worker else "employer",
        )
        return amount

    # ------------------------------------------------------------------
    # Authority configuration
    # ------------------------------------------------------------------

    def set_escrow(self, escrow: EscrowLedger, *, caller: str) -> None:
        self._set_authority("escrow", escrow, escrow.address, caller)

    def set_governance(self, governance: str, *, caller: str) -> None:
        governance = normalize_account(governance)
        self._set_authority("governance", governance, governance, caller)

    def transfer_ownership(self, new_owner: str, *, caller: str) -> None:
        new_owner = normalize_account(new_owner)
        self._set_authority("owner", new_owner, new_owner, caller)

    def load_state(
        self,
        jobs: dict[int, Job],
        employer_jobs: dict[str, list[int]],
        worker_jobs: dict[str, list[int]],
    ) -> None:
        """Replace all job tables (state recovery)."""
        self._jobs = dict(jobs)
        self._employer_jobs = {k: list(v) for k, v in employer_jobs.items()}
        self._worker_jobs = {k: list(v) for k, v in worker_jobs.items()}
        self._last_job_id = max(self._jobs, default=0)

    def employer_index(self) -> dict[str, list[int]]:
        return {k: list(v) for k, v in self._employer_jobs.items()}

    def worker_index(self) -> dict[str, list[int]]:
        return {k: list(v) for k, v in self._worker_jobs.items()}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_job(self, job_id: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise PreconditionError(f"Job not found: {job_id}")
        return job

    def _require_escrow(self) -> EscrowLedger:
        if self.escrow is None:
            raise PreconditionError("Escrow ledger not configured")
        return self.escrow

    @staticmethod
    def _require_owner_of(job: Job, caller: str) -> None:
        if caller != job.owner:
            raise AuthorizationError("Only the job owner can perform this action")

    def _transition(self, job: Job, target: JobStatus) -> None:
        errors = JobStateMachine.validate(job, target)
        if errors:
            raise PreconditionError(errors[0])
        self._set_field(job, "status", target)

    def _set_field(self, job: Job, name: str, value: object) -> None:
        previous = getattr(job, name)
        setattr(job, name, value)
        self._tx.on_rollback(lambda: setattr(job, name, previous))

    def _index(self, index: dict[str, list[int]], account: str, job_id: int) -> None:
        index.setdefault(account, []).append(job_id)

        def _rollback() -> None:
            ids = index.get(account, [])
            if ids and ids[-1] == job_id:
                ids.pop()
            if not ids:
                index.pop(account, None)

        self._tx.on_rollback(_rollback)

    def _set_authority(self, attr: str, value: object, shown: str, caller: str) -> None:
        caller = normalize_account(caller)
        with self._tx.atomic():
            if caller != self.owner:
                raise AuthorizationError("Only the job manager owner can change its configuration")
            previous = getattr(self, attr)
            setattr(self, attr, value)
            self._tx.on_rollback(lambda: setattr(self, attr, previous))
            previous_shown = getattr(previous, "address", previous)
            self._tx.emit(EventKind.AUTHORITY_TRANSFERRED, caller, {
                "component": "job_lifecycle", "field": attr,
                "previous": previous_shown, "current": shown,
            })
        logger.info("Job lifecycle %s set to %s", attr, shown)
