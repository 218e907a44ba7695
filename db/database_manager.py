"""Central database manager for the aggregate store.

Provides connection, query, and schema management with specific exception handling.
Supports a local SQLite file (or in-memory database), a PostgreSQL server reached
with explicit credentials, and AWS Aurora PostgreSQL authenticated through IAM.

The store holds three sparse aggregate tables keyed by composite identity:
``key_accuracy``, ``char_error_patterns`` and ``sequence_error_patterns``. Each
has a uniqueness constraint on its key so that writers can rely on a single
``INSERT ... ON CONFLICT DO UPDATE`` statement instead of read-then-write.
"""

import enum
import json
import logging
import re
import sqlite3
import threading
import traceback
from typing import Dict, List, NoReturn, Optional, Tuple, Type, cast

import boto3
import psycopg2

from helpers.debug_util import DebugUtil

from .exceptions import (
    ConstraintError,
    DatabaseError,
    DatabaseTypeError,
    DBConnectionError,
    ForeignKeyError,
    IntegrityError,
    SchemaError,
    TableNotFoundError,
)

logger = logging.getLogger(__name__)


class ConnectionType(enum.Enum):
    """Connection type enum for database connections."""

    LOCAL = "local"
    POSTGRES = "postgres"
    CLOUD = "cloud"


class DatabaseManager:
    """Centralized manager for database connections and operations.

    Handles connection management, query execution, schema initialization, and
    exception translation. All aggregate persistence goes through this class so
    that error handling and placeholder dialects stay consistent across backends.
    """

    # AWS Aurora configuration
    AWS_REGION = "us-east-1"
    SECRETS_ID = "Aurora/TypingAnalytics_Config"
    SCHEMA_NAME = "typing"

    def __init__(
        self,
        db_path: Optional[str] = None,
        connection_type: ConnectionType = ConnectionType.LOCAL,
        debug_util: Optional[DebugUtil] = None,
        *,
        host: Optional[str] = None,
        port: int = 5432,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        """Initialize a DatabaseManager with the specified connection type and parameters.

        Args:
            db_path: Path to SQLite database file or ":memory:". If None, an
                in-memory database is created. Only used for LOCAL connections.
            connection_type: LOCAL (SQLite), POSTGRES or CLOUD (Aurora).
            debug_util: Optional DebugUtil instance for handling debug output.
            host, port, database, username, password: PostgreSQL connection
                parameters, only used for POSTGRES connections.

        Raises:
            DBConnectionError: If the database connection cannot be established
                or the connection type is not supported.
        """
        self.connection_type = connection_type
        self.db_path: str = db_path or ":memory:"
        self.is_postgres = False
        self.debug_util = debug_util
        self._conn: Optional[object] = None
        self._lock = threading.RLock()

        if connection_type == ConnectionType.LOCAL:
            self._connect_sqlite()
        elif connection_type == ConnectionType.POSTGRES:
            self._connect_postgres(
                host=host or "localhost",
                port=port,
                database=database or "typing_analytics",
                username=username or "postgres",
                password=password or "",
            )
        elif connection_type == ConnectionType.CLOUD:
            self._connect_aurora()
        else:
            raise DBConnectionError(f"Unsupported connection type: {connection_type}")

    def _debug_message(self, *args: object, **kwargs: object) -> None:
        """Send debug message through DebugUtil if available, otherwise to the module logger."""
        if self.debug_util is not None:
            self.debug_util.debugMessage(*args, **kwargs)
        else:
            logger.debug(" ".join(str(arg) for arg in args))

    def _connect_sqlite(self) -> None:
        """Open the SQLite database with row access by column name."""
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._conn = conn
        except sqlite3.Error as e:
            traceback.print_exc()
            raise DBConnectionError(f"Failed to connect to SQLite database {self.db_path}: {e}") from e

    def _connect_postgres(self, host: str, port: int, database: str, username: str, password: str) -> None:
        """Connect to a PostgreSQL server with explicit credentials."""
        try:
            conn = psycopg2.connect(
                host=host,
                port=port,
                database=database,
                user=username,
                password=password,
            )
            conn.autocommit = True
            self._conn = conn
            self._ensure_schema()
            self.is_postgres = True
        except Exception as e:
            traceback.print_exc()
            self._debug_message(f"PostgreSQL connection failed: {e}")
            raise DBConnectionError(f"Failed to connect to PostgreSQL database: {e}") from e

    def _connect_aurora(self) -> None:
        """Establish connection to AWS Aurora PostgreSQL.

        Connection settings are read from Secrets Manager and the password is a
        short-lived IAM auth token generated through the RDS client.

        Raises:
            DBConnectionError: If the database connection cannot be established.
        """
        try:
            sm_client = boto3.client("secretsmanager", region_name=self.AWS_REGION)
            secret = sm_client.get_secret_value(SecretId=self.SECRETS_ID)
            config = cast(Dict[str, str], json.loads(cast(str, secret["SecretString"])))

            rds = boto3.client("rds", region_name=self.AWS_REGION)
            token = rds.generate_db_auth_token(
                DBHostname=config["host"],
                Port=int(config["port"]),
                DBUsername=config["username"],
                Region=self.AWS_REGION,
            )

            conn = psycopg2.connect(
                host=config["host"],
                port=int(config["port"]),
                database=config["dbname"],
                user=config["username"],
                password=token,
                sslmode="require",
                options=f"-c search_path={self.SCHEMA_NAME},public",
            )
            conn.autocommit = True
            self._conn = conn
            self._ensure_schema()
            self.is_postgres = True
        except Exception as e:
            traceback.print_exc()
            self._debug_message(f"Aurora connection failed: {e}")
            raise DBConnectionError(f"Failed to connect to AWS Aurora database: {e}") from e

    def _ensure_schema(self) -> None:
        """Create the target schema and point the search_path at it."""
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {self.SCHEMA_NAME}")
            cur.execute(f"SET search_path TO {self.SCHEMA_NAME},public")

    def close(self) -> None:
        """Close the database connection. Closing twice is a no-op.

        Raises:
            DBConnectionError: If closing the connection fails.
        """
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()  # type: ignore[attr-defined]
            except Exception as e:
                traceback.print_exc()
                logger.error("Error closing database connection: %s", e)
                raise DBConnectionError(f"Error closing database connection: {e}") from e
            finally:
                self._conn = None

    def _get_cursor(self) -> object:
        """Get a cursor from the database connection.

        Raises:
            DBConnectionError: If the database connection is not established.
        """
        if self._conn is None:
            raise DBConnectionError("Database connection is not established")
        return self._conn.cursor()  # type: ignore[attr-defined]

    def _execute_ddl(self, query: str) -> None:
        """Execute a DDL statement and commit it."""
        self.execute(query)

    def _qualify_schema_in_query(self, query: str) -> str:
        """Prepare a query for PostgreSQL execution.

        Converts SQLite-style ``?`` placeholders to ``%s`` and qualifies
        CREATE TABLE / CREATE INDEX targets with the schema. Other statements
        rely on the search_path configured at connect time.
        """
        if "?" in query:
            query = query.replace("?", "%s")

        m = re.search(r"(?i)^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?([^\s;(]+)", query)
        if m and "." not in m.group(1):
            start, end = m.span(1)
            query = f"{query[:start]}{self.SCHEMA_NAME}.{m.group(1)}{query[end:]}"
        return query

    def _translate_and_raise(self, e: Exception) -> NoReturn:
        """Translate backend-specific exceptions to our custom exceptions and raise.

        Always raises; does not return.
        """
        error_msg = str(e).lower()

        # SQLite mapping
        if isinstance(e, sqlite3.IntegrityError):
            if "foreign key" in error_msg:
                raise ForeignKeyError(f"Foreign key constraint failed: {e}") from e
            if "not null" in error_msg or "unique" in error_msg or "check" in error_msg:
                raise ConstraintError(f"Constraint violation: {e}") from e
            raise IntegrityError(f"Integrity error: {e}") from e
        if isinstance(e, sqlite3.OperationalError):
            if "no such table" in error_msg:
                raise TableNotFoundError(f"Table not found: {e}") from e
            if "no such column" in error_msg or "has no column" in error_msg:
                raise SchemaError(f"Schema error: {e}") from e
            if "unable to open" in error_msg or "locked" in error_msg:
                raise DBConnectionError(f"SQLite database unavailable: {e}") from e
            raise DatabaseError(f"Database operation failed: {e}") from e
        if isinstance(e, sqlite3.InterfaceError):
            raise DatabaseTypeError(f"Type error in query parameters: {e}") from e
        if isinstance(e, sqlite3.ProgrammingError):
            if "binding" in error_msg:
                raise DatabaseTypeError(f"Type error in query parameters: {e}") from e
            if "closed" in error_msg:
                raise DBConnectionError(f"Database connection is closed: {e}") from e
            raise DatabaseError(f"Database error: {e}") from e

        # PostgreSQL mapping
        if isinstance(e, psycopg2.IntegrityError):
            if "foreign key" in error_msg:
                raise ForeignKeyError(f"Foreign key constraint failed: {e}") from e
            if "not-null" in error_msg or "null value" in error_msg or "unique" in error_msg or "check" in error_msg:
                raise ConstraintError(f"Constraint violation: {e}") from e
            raise IntegrityError(f"Integrity error: {e}") from e
        if isinstance(e, psycopg2.DataError):
            raise DatabaseTypeError(f"Type error in query parameters: {e}") from e
        if isinstance(e, (psycopg2.OperationalError, psycopg2.ProgrammingError)):
            if "connection" in error_msg:
                raise DBConnectionError(f"Failed to connect to PostgreSQL database: {e}") from e
            if "relation" in error_msg and "does not exist" in error_msg:
                raise TableNotFoundError(f"Table not found: {e}") from e
            if "column" in error_msg and "does not exist" in error_msg:
                raise SchemaError(f"Schema error: {e}") from e
            raise DatabaseError(f"Database operation failed: {e}") from e
        if isinstance(e, psycopg2.DatabaseError):
            raise DatabaseError(f"Database error: {e}") from e

        if isinstance(e, DatabaseError):
            raise e

        raise DatabaseError(f"Unexpected database error: {e}") from e

    def execute(self, query: str, params: Tuple[object, ...] = ()) -> object:
        """Execute a SQL query with parameters and commit immediately.

        Args:
            query: SQL query string using ``?`` placeholders
            params: Query parameters

        Returns:
            Database cursor object

        Raises:
            DBConnectionError, TableNotFoundError, SchemaError, DatabaseError,
            ForeignKeyError, ConstraintError, IntegrityError, DatabaseTypeError
        """
        with self._lock:
            try:
                cursor = self._get_cursor()
                if self.is_postgres:
                    query = self._qualify_schema_in_query(query)
                if self.debug_util is not None:
                    self.debug_util.trace_sql(query, params)

                cursor.execute(query, params)  # type: ignore[attr-defined]

                if not query.strip().upper().startswith("SELECT"):
                    self._conn.commit()  # type: ignore[union-attr]
                return cursor
            except Exception as e:
                self._debug_message(f"Exception during query: {e}. Rolling back transaction.")
                if self._conn is not None:
                    try:
                        self._conn.rollback()  # type: ignore[attr-defined]
                    except Exception as rollback_exc:
                        self._debug_message(f"Rollback failed: {rollback_exc}")
                self._translate_and_raise(e)

    def _rows_as_dicts(self, cursor: object, rows: List[object]) -> List[Dict[str, object]]:
        """Normalize SQLite Row objects and PostgreSQL tuples to plain dicts."""
        description = getattr(cursor, "description", None)
        if not rows or description is None:
            return []
        col_names = [cast(str, desc[0]) for desc in description]
        return [{col_names[i]: row[i] for i in range(len(col_names))} for row in rows]  # type: ignore[index]

    def fetchone(self, query: str, params: Tuple[object, ...] = ()) -> Optional[Dict[str, object]]:
        """Execute a SQL query and fetch a single result as a dict, or None."""
        with self._lock:
            cursor = self.execute(query, params)
            result = cursor.fetchone()  # type: ignore[attr-defined]
            if result is None:
                return None
            return self._rows_as_dicts(cursor, [result])[0]

    def fetchall(self, query: str, params: Tuple[object, ...] = ()) -> List[Dict[str, object]]:
        """Execute a query and return all rows as a list of dicts keyed by column name."""
        with self._lock:
            cursor = self.execute(query, params)
            return self._rows_as_dicts(cursor, list(cursor.fetchall()))  # type: ignore[attr-defined]

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database (backend-agnostic)."""
        return table_name in self.list_tables()

    def list_tables(self) -> List[str]:
        """Return a list of all user table names in the database, backend-agnostic."""
        if self.is_postgres:
            rows = self.fetchall(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = ? AND table_type = 'BASE TABLE' "
                "ORDER BY table_name",
                (self.SCHEMA_NAME,),
            )
        else:
            rows = self.fetchall(
                "SELECT name AS table_name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        return [cast(str, row["table_name"]) for row in rows]

    def _create_key_accuracy_table(self) -> None:
        """Create the per-user, per-key accuracy aggregate."""
        self._execute_ddl(
            """
            CREATE TABLE IF NOT EXISTS key_accuracy (
                user_id TEXT NOT NULL,
                key_char TEXT NOT NULL,
                total_presses INTEGER NOT NULL CHECK (total_presses >= 0),
                correct_presses INTEGER NOT NULL CHECK (correct_presses >= 0),
                avg_latency_ms INTEGER NOT NULL CHECK (avg_latency_ms >= 0),
                CHECK (correct_presses <= total_presses),
                PRIMARY KEY (user_id, key_char)
            );
            """
        )

    def _create_char_error_patterns_table(self) -> None:
        """Create the per-user confusion pair counts."""
        self._execute_ddl(
            """
            CREATE TABLE IF NOT EXISTS char_error_patterns (
                user_id TEXT NOT NULL,
                expected_char TEXT NOT NULL,
                actual_char TEXT NOT NULL,
                count INTEGER NOT NULL CHECK (count >= 0),
                CHECK (expected_char <> actual_char),
                PRIMARY KEY (user_id, expected_char, actual_char)
            );
            """
        )

    def _create_sequence_error_patterns_table(self) -> None:
        """Create the per-user n-gram error and latency aggregate."""
        self._execute_ddl(
            """
            CREATE TABLE IF NOT EXISTS sequence_error_patterns (
                user_id TEXT NOT NULL,
                sequence TEXT NOT NULL,
                total_attempts INTEGER NOT NULL CHECK (total_attempts >= 0),
                error_count INTEGER NOT NULL CHECK (error_count >= 0),
                avg_latency_ms INTEGER NOT NULL CHECK (avg_latency_ms >= 0),
                CHECK (error_count <= total_attempts),
                PRIMARY KEY (user_id, sequence)
            );
            """
        )

    def init_tables(self) -> None:
        """Create every aggregate table if it does not exist yet."""
        self._create_key_accuracy_table()
        self._create_char_error_patterns_table()
        self._create_sequence_error_patterns_table()

    def __enter__(self) -> "DatabaseManager":
        """Context manager protocol support."""
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: object,
    ) -> None:
        """Close the connection when leaving the context."""
        self.close()

    def __del__(self) -> None:
        """Close the connection on object destruction."""
        try:
            self.close()
        except Exception as e:
            logger.debug("Destructor cleanup failed: %s", e)
