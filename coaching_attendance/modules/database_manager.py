"""
Database Manager Module - Coaching Attendance System

This module owns the relational store behind the data service. It manages
SQLite connections, creates the schema and translates driver failures into
the data service error taxonomy.

Features:
- Thread-local SQLite connection management
- Idempotent schema creation with cascading foreign keys
- Query, update and batch execution helpers
- Transaction support
- Driver error translation
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
import os

from coaching_attendance.errors import (
    CHECK_VIOLATION,
    FOREIGN_KEY_VIOLATION,
    GENERIC_DATABASE_ERROR,
    UNIQUE_VIOLATION,
    ConnectivityError,
    ConstraintViolationError,
    DataServiceError,
)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        full_name VARCHAR(100),
        is_active BOOLEAN DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        access_token_hash VARCHAR(64) UNIQUE NOT NULL,
        refresh_token_hash VARCHAR(64) UNIQUE NOT NULL,
        access_expires_at TIMESTAMP NOT NULL,
        refresh_expires_at TIMESTAMP NOT NULL,
        persistent BOOLEAN DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS batches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(100) NOT NULL,
        course_type VARCHAR(50) NOT NULL,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        created_at TIMESTAMP DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
        created_by INTEGER,
        FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id INTEGER NOT NULL,
        full_name VARCHAR(100) NOT NULL,
        roll_number VARCHAR(20) NOT NULL,
        grade VARCHAR(20),
        contact_info TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (batch_id) REFERENCES batches(id) ON DELETE CASCADE,
        UNIQUE(batch_id, roll_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attendance_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        batch_id INTEGER NOT NULL,
        date DATE NOT NULL,
        status VARCHAR(10) NOT NULL CHECK (status IN ('present', 'absent', 'late')),
        marked_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY (batch_id) REFERENCES batches(id) ON DELETE CASCADE,
        FOREIGN KEY (marked_by) REFERENCES users(id) ON DELETE SET NULL,
        UNIQUE(student_id, date)
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_students_batch ON students(batch_id)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_batch_date ON attendance_records(batch_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON auth_sessions(user_id)",
]


def translate_error(error: sqlite3.Error) -> DataServiceError:
    """
    Translate a sqlite3 error into the data service error taxonomy.

    Args:
        error (sqlite3.Error): Driver error

    Returns:
        DataServiceError: Matching data service error
    """
    message = str(error)

    if isinstance(error, sqlite3.IntegrityError):
        if 'UNIQUE constraint failed' in message:
            constraint = message.split(':', 1)[-1].strip()
            return ConstraintViolationError(
                f'duplicate key value violates unique constraint ({constraint})',
                code=UNIQUE_VIOLATION,
                constraint=constraint
            )
        if 'FOREIGN KEY constraint failed' in message:
            return DataServiceError(message, code=FOREIGN_KEY_VIOLATION)
        if 'CHECK constraint failed' in message:
            return DataServiceError(message, code=CHECK_VIOLATION)
        return DataServiceError(message, code=GENERIC_DATABASE_ERROR)

    if isinstance(error, sqlite3.OperationalError):
        lowered = message.lower()
        if 'unable to open' in lowered or 'locked' in lowered or 'disk i/o' in lowered:
            return ConnectivityError(message)

    return DataServiceError(message, code=GENERIC_DATABASE_ERROR)


class DatabaseManager:
    """
    Database management class for the attendance data service.
    Handles connection management, schema creation and statement execution.
    """

    def __init__(self, db_path, timeout=30.0):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections and translates driver errors.

        Yields:
            sqlite3.Connection: Database connection object
        """
        try:
            if not hasattr(self._local, 'connection'):
                connection = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    timeout=self.timeout
                )
                connection.row_factory = sqlite3.Row
                # Cascades depend on this
                connection.execute("PRAGMA foreign_keys = ON")
                self._local.connection = connection
        except sqlite3.Error as e:
            self.logger.error(f"Database connection failed: {str(e)}")
            raise translate_error(e) from e

        try:
            yield self._local.connection
        except sqlite3.Error as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise translate_error(e) from e
        except Exception:
            self._local.connection.rollback()
            raise

    def initialize_database(self):
        """
        Create all tables and indexes. Safe to call repeatedly.
        """
        with self.transaction() as conn:
            cursor = conn.cursor()
            for statement in SCHEMA:
                cursor.execute(statement)
            for statement in INDEXES:
                cursor.execute(statement)

        self.logger.info("Database initialized successfully")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]

            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Returns:
            int: Last inserted row ID for INSERT statements, affected rows otherwise
        """
        with self.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())

            if query.strip().upper().startswith('INSERT'):
                return cursor.lastrowid
            return cursor.rowcount

    def execute_many(self, query, params_list):
        """
        Execute a query once per parameter tuple inside one transaction.

        Returns:
            int: Number of affected rows
        """
        with self.transaction() as conn:
            cursor = conn.cursor()
            cursor.executemany(query, params_list)
            return cursor.rowcount

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def ping(self):
        """Check that the store answers a trivial query."""
        with self.get_connection() as conn:
            conn.execute("SELECT 1")
        return True

    def close_all_connections(self):
        """Close the connection held by the current thread."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
