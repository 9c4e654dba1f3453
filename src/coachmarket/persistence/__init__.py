"""Persistence — document store and append-only audit log."""

from coachmarket.persistence.document_store import DocumentStore
from coachmarket.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["DocumentStore", "EventKind", "EventLog", "EventRecord"]
