"""Policy module — typed access to marketplace configuration."""

from freelance_dao.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
