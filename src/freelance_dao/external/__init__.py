"""External collaborators — identity registry and voting token interfaces."""

from freelance_dao.external.identity import IdentityRegistry, InMemoryIdentityRegistry
from freelance_dao.external.voting_token import InMemoryVotingToken, VotingToken

__all__ = [
    "IdentityRegistry",
    "InMemoryIdentityRegistry",
    "InMemoryVotingToken",
    "VotingToken",
]
