"""Jobs module — lifecycle component and its transition graph."""

from freelance_dao.jobs.lifecycle import JobLifecycle
from freelance_dao.jobs.state_machine import JobStateMachine

__all__ = ["JobLifecycle", "JobStateMachine"]
