"""
Storage package for the typing analytics engine.

Holds the ``DatabaseManager`` gateway that persists key accuracy, confusion
pair and sequence aggregates, plus the exception taxonomy it raises.
"""

from .database_manager import ConnectionType, DatabaseManager

__all__ = ["ConnectionType", "DatabaseManager"]
