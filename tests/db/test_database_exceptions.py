"""Tests for database exception handling in DatabaseManager."""

import pytest

from db.database_manager import DatabaseManager
from db.exceptions import (
    AggregateNotFoundError,
    ConstraintError,
    DatabaseError,
    DatabaseTypeError,
    ForeignKeyError,
    SchemaError,
    TableNotFoundError,
)


class TestDatabaseExceptions:
    """Test cases for database exception handling."""

    def test_table_not_found(self, db_manager: DatabaseManager) -> None:
        """Queries on a missing table raise TableNotFoundError."""
        with pytest.raises(TableNotFoundError):
            db_manager.execute("SELECT * FROM no_such_table")

    def test_schema_error(self, db_manager: DatabaseManager) -> None:
        """Unknown columns raise SchemaError."""
        with pytest.raises(SchemaError):
            db_manager.execute("UPDATE key_accuracy SET non_existent_column = 'test'")

    def test_not_null_violation(self, db_manager: DatabaseManager) -> None:
        """Missing required columns raise ConstraintError."""
        with pytest.raises(ConstraintError):
            db_manager.execute("INSERT INTO key_accuracy (user_id, key_char) VALUES (?, ?)", ("u1", "a"))

    def test_foreign_key_violation(self, db_manager: DatabaseManager) -> None:
        """Foreign keys are enforced on SQLite connections."""
        db_manager.execute("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
        db_manager.execute("CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER REFERENCES parent(id))")
        with pytest.raises(ForeignKeyError):
            db_manager.execute("INSERT INTO child (id, parent_id) VALUES (?, ?)", (1, 999))

    def test_failed_statement_is_rolled_back(self, db_manager: DatabaseManager) -> None:
        """A failure leaves earlier committed rows intact and adds nothing."""
        insert = "INSERT INTO char_error_patterns (user_id, expected_char, actual_char, count) VALUES (?, ?, ?, ?)"
        db_manager.execute(insert, ("u1", "a", "s", 1))
        with pytest.raises(ConstraintError):
            db_manager.execute(insert, ("u1", "a", "s", 1))
        assert len(db_manager.fetchall("SELECT * FROM char_error_patterns")) == 1

    def test_hierarchy(self) -> None:
        """Every storage exception is a DatabaseError; type errors are also TypeErrors."""
        for exc in (
            ConstraintError,
            ForeignKeyError,
            SchemaError,
            TableNotFoundError,
            DatabaseTypeError,
            AggregateNotFoundError,
        ):
            assert issubclass(exc, DatabaseError)
        assert issubclass(DatabaseTypeError, TypeError)
