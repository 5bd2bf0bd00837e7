"""Escrow custody ledger — single deposit, single disbursement per job.

The ledger holds deposited value per job id and pays it out exactly once,
either to the worker (release) or back to the depositing client
(refund). Only the configured authorized caller (the job lifecycle
component) may move funds.

Invariants:
- At most one entry per job id, ever.
- released and refunded are never both true.
- The stored amount is zeroed exactly once, at the first disbursement,
  and the zeroing is committed before value leaves the ledger. A
  re-entrant recipient therefore sees a disbursed entry with no balance.
- A disbursement that the recipient rejects is rolled back in full,
  flag included.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from freelance_dao.accounts import component_address, normalize_account
from freelance_dao.errors import (
    AuthorizationError,
    PreconditionError,
    ReentrancyError,
    ResourceError,
)
from freelance_dao.escrow.value_book import ValueBook
from freelance_dao.models.escrow import EscrowEntry
from freelance_dao.persistence.event_log import EventKind
from freelance_dao.transaction import TransactionManager

logger = logging.getLogger(__name__)


class EscrowLedger:
    """Custody of escrowed payments, keyed by job id."""

    def __init__(
        self,
        tx: TransactionManager,
        value_book: ValueBook,
        owner: str,
        authorized_caller: str,
        address: Optional[str] = None,
    ) -> None:
        self._tx = tx
        self._book = value_book
        self.owner = normalize_account(owner)
        self.authorized_caller = normalize_account(authorized_caller)
        self.address = normalize_account(address or component_address("escrow-ledger"))
        self._entries: dict[int, EscrowEntry] = {}
        self._in_flight = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, job_id: int) -> int:
        """Live stored amount for a job (0 if nothing was deposited)."""
        entry = self._entries.get(job_id)
        return entry.amount if entry else 0

    def get_entry(self, job_id: int) -> Optional[EscrowEntry]:
        return self._entries.get(job_id)

    def entries(self) -> dict[int, EscrowEntry]:
        return dict(self._entries)

    @property
    def total_held(self) -> int:
        return sum(e.amount for e in self._entries.values())

    # ------------------------------------------------------------------
    # Custody operations
    # ------------------------------------------------------------------

    def deposit(self, job_id: int, client: str, amount: int, *, caller: str) -> EscrowEntry:
        """Take custody of amount from client for job_id."""
        client = normalize_account(client)
        with self._tx.atomic():
            self._require_authorized(caller)
            if amount <= 0:
                raise ResourceError("Deposit amount must be positive")

            existing = self._entries.get(job_id)
            if existing is not None:
                if existing.disbursed:
                    raise PreconditionError(
                        f"Escrow for job {job_id} already disbursed"
                    )
                if existing.amount > 0:
                    raise ResourceError(f"Escrow for job {job_id} already funded")

            self._book.transfer(client, self.address, amount)

            entry = EscrowEntry(
                job_id=job_id, client=client,
                amount=amount, deposited_total=amount,
            )
            self._entries[job_id] = entry

            def _rollback() -> None:
                if existing is None:
                    self._entries.pop(job_id, None)
                else:
                    self._entries[job_id] = existing

            self._tx.on_rollback(_rollback)
            self._tx.emit(EventKind.ESCROW_DEPOSITED, client, {
                "job_id": job_id, "client": client, "amount": amount,
            })

        logger.info("Escrow deposit: job %d, %d wei from %s", job_id, amount, client)
        return entry

    def release(self, job_id: int, payee: str, *, caller: str) -> int:
        """Pay the full stored amount to payee. Returns the amount paid."""
        payee = normalize_account(payee)
        with self._tx.atomic(), self._non_reentrant():
            self._require_authorized(caller)
            entry = self._disbursable(job_id)
            amount = self._mark_disbursed(entry, released=True)
            self._book.transfer(self.address, payee, amount)
            self._tx.emit(EventKind.ESCROW_RELEASED, caller, {
                "job_id": job_id, "payee": payee, "amount": amount,
            })

        logger.info("Escrow released: job %d, %d wei to %s", job_id, amount, payee)
        return amount

    def refund(self, job_id: int, *, caller: str) -> int:
        """Return the full stored amount to the depositing client."""
        with self._tx.atomic(), self._non_reentrant():
            self._require_authorized(caller)
            entry = self._disbursable(job_id)
            amount = self._mark_disbursed(entry, released=False)
            self._book.transfer(self.address, entry.client, amount)
            self._tx.emit(EventKind.ESCROW_REFUNDED, caller, {
                "job_id": job_id, "client": entry.client, "amount": amount,
            })

        logger.info("Escrow refunded: job %d, %d wei to %s", job_id, amount, entry.client)
        return amount

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def set_authorized_caller(self, new_caller: str, *, caller: str) -> None:
        """Point the ledger at a different coordinator (owner only)."""
        new_caller = normalize_account(new_caller)
        with self._tx.atomic():
            if normalize_account(caller) != self.owner:
                raise AuthorizationError("Only the ledger owner can change the authorized caller")
            previous = self.authorized_caller
            self.authorized_caller = new_caller
            self._tx.on_rollback(lambda: setattr(self, "authorized_caller", previous))
            self._tx.emit(EventKind.AUTHORITY_TRANSFERRED, self.owner, {
                "component": "escrow_ledger", "field": "authorized_caller",
                "previous": previous, "current": new_caller,
            })

    def transfer_ownership(self, new_owner: str, *, caller: str) -> None:
        new_owner = normalize_account(new_owner)
        with self._tx.atomic():
            if normalize_account(caller) != self.owner:
                raise AuthorizationError("Only the ledger owner can transfer ownership")
            previous = self.owner
            self.owner = new_owner
            self._tx.on_rollback(lambda: setattr(self, "owner", previous))
            self._tx.emit(EventKind.AUTHORITY_TRANSFERRED, previous, {
                "component": "escrow_ledger", "field": "owner",
                "previous": previous, "current": new_owner,
            })

    def load_entries(self, entries: dict[int, EscrowEntry]) -> None:
        """Replace all entries (state recovery)."""
        self._entries = dict(entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        """One disbursement in flight per ledger at a time."""
        if self._in_flight:
            raise ReentrancyError("Re-entrant disbursement rejected")
        self._in_flight = True
        try:
            yield
        finally:
            self._in_flight = False

    def _require_authorized(self, caller: str) -> None:
        if normalize_account(caller) != self.authorized_caller:
            raise AuthorizationError("Caller is not the authorized job manager")

    def _disbursable(self, job_id: int) -> EscrowEntry:
        entry = self._entries.get(job_id)
        if entry is None:
            raise ResourceError(f"No escrow for job {job_id}")
        if entry.released:
            raise PreconditionError(f"Escrow for job {job_id} already released")
        if entry.refunded:
            raise PreconditionError(f"Escrow for job {job_id} already refunded")
        if entry.amount <= 0:
            raise ResourceError(f"No funds held for job {job_id}")
        return entry

    def _mark_disbursed(self, entry: EscrowEntry, released: bool) -> int:
        """Commit the disbursement effects; value moves only afterwards."""
        amount = entry.amount
        if released:
            entry.released = True
        else:
            entry.refunded = True
        entry.amount = 0

        def _rollback() -> None:
            entry.released = False
            entry.refunded = False
            entry.amount = amount

        self._tx.on_rollback(_rollback)
        return amount
