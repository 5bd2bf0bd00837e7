"""State store — JSON-based persistence for marketplace runtime state.

Stores and recovers:
- Jobs (by id) with the employer → job ids and worker → job ids indexes
- Escrow entries (by job id) including their disbursement flags
- Dispute proposals (by id) with per-proposal voter records
- Collective membership and the current quorum percentage
- Value book balances
- Identity records of the built-in registry

This is a simple file-based store suitable for single-node deployment.
Production deployments would replace this with a database backend
while keeping the same interface.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from freelance_dao.models.escrow import EscrowEntry
from freelance_dao.models.identity import IdentityRecord
from freelance_dao.models.job import Job, JobStatus
from freelance_dao.models.proposal import DisputeProposal, ProposalStatus, VoteRecord


def _ts(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 with microseconds and UTC offset."""
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StateStore:
    """JSON file-based state persistence.

    Usage:
        store = StateStore(Path("data/marketplace_state.json"))
        store.save_jobs(jobs, employer_index, worker_index)
        store.save_escrow(entries)

        # On recovery:
        jobs, employer_index, worker_index = store.load_jobs()
        entries = store.load_escrow()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._state: dict[str, Any] = {}
        if storage_path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            self._state = json.load(f)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2, sort_keys=True, ensure_ascii=False)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def save_jobs(
        self,
        jobs: dict[int, Job],
        employer_index: dict[str, list[int]],
        worker_index: dict[str, list[int]],
    ) -> None:
        """Serialize jobs and their account indexes to state."""
        self._state["jobs"] = {
            str(job_id): {
                "job_id": job.job_id,
                "owner": job.owner,
                "worker": job.worker,
                "description": job.description,
                "created_utc": _ts(job.created_utc),
                "status": int(job.status),
                "payment_amount": job.payment_amount,
            }
            for job_id, job in jobs.items()
        }
        self._state["employer_jobs"] = employer_index
        self._state["worker_jobs"] = worker_index
        self._save()

    def load_jobs(
        self,
    ) -> tuple[dict[int, Job], dict[str, list[int]], dict[str, list[int]]]:
        """Deserialize jobs and indexes from state."""
        jobs: dict[int, Job] = {}
        for data in self._state.get("jobs", {}).values():
            job = Job(
                job_id=data["job_id"],
                owner=data["owner"],
                description=data["description"],
                created_utc=_parse_ts(data["created_utc"]),
                status=JobStatus(data["status"]),
                worker=data.get("worker"),
                payment_amount=data.get("payment_amount", 0),
            )
            jobs[job.job_id] = job
        return (
            jobs,
            dict(self._state.get("employer_jobs", {})),
            dict(self._state.get("worker_jobs", {})),
        )

    # ------------------------------------------------------------------
    # Escrow entries
    # ------------------------------------------------------------------

    def save_escrow(self, entries: dict[int, EscrowEntry]) -> None:
        self._state["escrow"] = {
            str(job_id): {
                "job_id": e.job_id,
                "client": e.client,
                "amount": e.amount,
                "deposited_total": e.deposited_total,
                "released": e.released,
                "refunded": e.refunded,
            }
            for job_id, e in entries.items()
        }
        self._save()

    def load_escrow(self) -> dict[int, EscrowEntry]:
        entries: dict[int, EscrowEntry] = {}
        for data in self._state.get("escrow", {}).values():
            if data["released"] and data["refunded"]:
                raise ValueError(
                    f"Corrupt escrow entry for job {data['job_id']}: "
                    f"both released and refunded"
                )
            entries[data["job_id"]] = EscrowEntry(
                job_id=data["job_id"],
                client=data["client"],
                amount=data["amount"],
                deposited_total=data["deposited_total"],
                released=data["released"],
                refunded=data["refunded"],
            )
        return entries

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def save_governance(
        self,
        proposals: dict[int, DisputeProposal],
        members: set[str],
        quorum_percent: int,
    ) -> None:
        """Serialize proposals, voter records and membership to state."""
        self._state["proposals"] = {
            str(pid): {
                "proposal_id": p.proposal_id,
                "job_id": p.job_id,
                "description": p.description,
                "favor_worker": p.favor_worker,
                "proposer": p.proposer,
                "start_utc": _ts(p.start_utc),
                "end_utc": _ts(p.end_utc),
                "upvotes": p.upvotes,
                "downvotes": p.downvotes,
                "executed": p.executed,
                "status": p.status.value,
                "settled_utc": _ts(p.settled_utc),
                "voters": [
                    {
                        "voter": v.voter,
                        "support": v.support,
                        "weight": v.weight,
                        "cast_utc": _ts(v.cast_utc),
                    }
                    for v in p.voters.values()
                ],
            }
            for pid, p in proposals.items()
        }
        self._state["members"] = sorted(members)
        self._state["quorum_percent"] = quorum_percent
        self._save()

    def load_governance(
        self,
    ) -> tuple[dict[int, DisputeProposal], set[str], Optional[int]]:
        proposals: dict[int, DisputeProposal] = {}
        for data in self._state.get("proposals", {}).values():
            voters = {
                v["voter"]: VoteRecord(
                    voter=v["voter"],
                    support=v["support"],
                    weight=v["weight"],
                    cast_utc=_parse_ts(v.get("cast_utc")),
                )
                for v in data.get("voters", [])
            }
            proposals[data["proposal_id"]] = DisputeProposal(
                proposal_id=data["proposal_id"],
                job_id=data["job_id"],
                description=data["description"],
                favor_worker=data["favor_worker"],
                proposer=data["proposer"],
                start_utc=_parse_ts(data["start_utc"]),
                end_utc=_parse_ts(data["end_utc"]),
                upvotes=data["upvotes"],
                downvotes=data["downvotes"],
                voters=voters,
                executed=data["executed"],
                status=ProposalStatus(data["status"]),
                settled_utc=_parse_ts(data.get("settled_utc")),
            )
        return (
            proposals,
            set(self._state.get("members", [])),
            self._state.get("quorum_percent"),
        )

    # ------------------------------------------------------------------
    # Value balances
    # ------------------------------------------------------------------

    def save_balances(self, balances: dict[str, int]) -> None:
        self._state["balances"] = dict(balances)
        self._save()

    def load_balances(self) -> dict[str, int]:
        return dict(self._state.get("balances", {}))

    # ------------------------------------------------------------------
    # Identity records
    # ------------------------------------------------------------------

    def save_users(self, users: dict[str, IdentityRecord]) -> None:
        self._state["users"] = {
            account: {
                "role": r.role,
                "verified": r.verified,
                "profile_url": r.profile_url,
            }
            for account, r in users.items()
        }
        self._save()

    def load_users(self) -> dict[str, IdentityRecord]:
        return {
            account: IdentityRecord(
                account=account,
                role=data["role"],
                verified=data["verified"],
                profile_url=data.get("profile_url", ""),
            )
            for account, data in self._state.get("users", {}).items()
        }
