"""Escrow — payment custody tied to an accepted bid."""

from coachmarket.escrow.ledger import EscrowLedger

__all__ = ["EscrowLedger"]
