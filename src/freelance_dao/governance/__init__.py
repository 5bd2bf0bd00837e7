"""Governance module — dispute proposals, weighted voting, quorum."""

from freelance_dao.governance.dao import DisputeGovernance
from freelance_dao.governance.quorum import QuorumEngine, QuorumResult

__all__ = ["DisputeGovernance", "QuorumEngine", "QuorumResult"]
