"""Persistence layer — event log and state storage."""

from freelance_dao.persistence.event_log import EventLog, EventRecord, EventKind
from freelance_dao.persistence.state_store import StateStore

__all__ = ["EventLog", "EventRecord", "EventKind", "StateStore"]
