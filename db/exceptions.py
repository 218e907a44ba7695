"""
Storage exceptions raised by the aggregate store.

Backend-specific errors (sqlite3, psycopg2) are translated into these classes
by ``DatabaseManager`` so callers never depend on the active driver.
"""


class DatabaseError(Exception):
    """Base class for every storage failure."""


class DBConnectionError(DatabaseError):
    """Raised when a connection cannot be opened, used or closed."""


class ForeignKeyError(DatabaseError):
    """Raised when a foreign key constraint fails."""


class ConstraintError(DatabaseError):
    """Raised on NOT NULL, UNIQUE or CHECK violations."""


class DatabaseTypeError(DatabaseError, TypeError):
    """Raised when a parameter cannot be bound to its column type."""


class IntegrityError(DatabaseError):
    """Raised for integrity violations not covered by a narrower class."""


class SchemaError(DatabaseError):
    """Raised when a statement references an unknown column or bad schema."""


class TableNotFoundError(DatabaseError):
    """Raised when a statement references a table that does not exist."""


class AggregateNotFoundError(DatabaseError):
    """Raised when an aggregate row that was just written cannot be read back."""

    def __init__(self, table: str, key: tuple) -> None:
        self.table = table
        self.key = key
        super().__init__(f"No {table} row for key {key!r} after upsert")
