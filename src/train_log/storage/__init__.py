"""Durable storage for the daily log."""

from train_log.storage.database import create_session_factory, session_scope
from train_log.storage.log_store import LogStore, operating_date

__all__ = ["LogStore", "create_session_factory", "operating_date", "session_scope"]
