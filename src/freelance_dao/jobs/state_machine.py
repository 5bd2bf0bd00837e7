"""Job state machine — the legal transition graph.

OPEN → TAKEN → COMPLETED → CLOSED   (happy path)
OPEN → CANCELLED                    (withdrawn before assignment)
TAKEN | COMPLETED → DISPUTED        (disagreement)
DISPUTED → CLOSED                   (governance resolution)

The machine validates but does not apply; the lifecycle component
applies the transition and its side effects on success.
"""

from __future__ import annotations

from freelance_dao.models.job import Job, JobStatus


class JobStateMachine:
    TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
        JobStatus.OPEN: frozenset({JobStatus.TAKEN, JobStatus.CANCELLED}),
        JobStatus.TAKEN: frozenset({JobStatus.COMPLETED, JobStatus.DISPUTED}),
        JobStatus.COMPLETED: frozenset({JobStatus.CLOSED, JobStatus.DISPUTED}),
        JobStatus.DISPUTED: frozenset({JobStatus.CLOSED}),
        JobStatus.CLOSED: frozenset(),
        JobStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: JobStatus, target: JobStatus) -> bool:
        return target in cls.TRANSITIONS[current]

    @classmethod
    def validate(cls, job: Job, target: JobStatus) -> list[str]:
        """Return the reasons the transition is illegal (empty = legal)."""
        if cls.can_transition(job.status, target):
            return []
        return [
            f"Job {job.job_id}: illegal transition "
            f"{job.status.name} -> {target.name}"
        ]
