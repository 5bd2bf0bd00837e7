"""Escrow module — custody ledger and the value book it settles on."""

from freelance_dao.escrow.ledger import EscrowLedger
from freelance_dao.escrow.value_book import ReceiveHook, ValueBook

__all__ = ["EscrowLedger", "ReceiveHook", "ValueBook"]
