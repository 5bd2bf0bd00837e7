"""Quorum engine — decides whether a dispute vote is binding and its outcome.

Pure computation: no side effects. The governance component handles
event recording and state mutations.

Quorum holds when total_votes * 100 >= quorum_percent * total_supply,
evaluated in integers so the boundary is exact. A binding vote passes
only when upvotes strictly exceed downvotes; a tie rejects.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class QuorumResult:
    """Outcome of evaluating a closed vote."""
    quorum_reached: bool
    passed: bool
    upvotes: int
    downvotes: int
    total_votes: int
    total_supply: int
    quorum_percent: int
    required_votes: int


class QuorumEngine:
    """Evaluates weighted vote totals against supply-relative quorum."""

    @staticmethod
    def required_votes(total_supply: int, quorum_percent: int) -> int:
        """Smallest vote total that satisfies quorum."""
        return -(-quorum_percent * total_supply // 100)

    def evaluate(
        self,
        upvotes: int,
        downvotes: int,
        total_supply: int,
        quorum_percent: int,
    ) -> QuorumResult:
        total = upvotes + downvotes
        quorum_reached = total * 100 >= quorum_percent * total_supply
        return QuorumResult(
            quorum_reached=quorum_reached,
            passed=quorum_reached and upvotes > downvotes,
            upvotes=upvotes,
            downvotes=downvotes,
            total_votes=total,
            total_supply=total_supply,
            quorum_percent=quorum_percent,
            required_votes=self.required_votes(total_supply, quorum_percent),
        )
