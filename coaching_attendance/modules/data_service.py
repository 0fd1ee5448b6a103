"""
Data Service Module - Coaching Attendance System

Table-style gateway used by every manager. It exposes select, insert,
update, delete and upsert over the batches, students and attendance_records
tables, plus the identity provider under ``auth``. Each call runs in its
own transaction; there are no cross-call transactions.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from coaching_attendance.errors import (
    UNKNOWN_COLUMN,
    ConfigurationError,
    ConnectivityError,
    DataServiceError,
)
from coaching_attendance.modules.database_manager import DatabaseManager
from coaching_attendance.modules.identity_provider import IdentityProvider

SQLITE_URL_PREFIX = 'sqlite:///'

TABLE_COLUMNS = {
    'batches': ('id', 'name', 'course_type', 'start_date', 'end_date', 'created_at', 'created_by'),
    'students': ('id', 'batch_id', 'full_name', 'roll_number', 'grade', 'contact_info', 'created_at'),
    'attendance_records': ('id', 'student_id', 'batch_id', 'date', 'status', 'marked_by',
                           'created_at', 'updated_at'),
}

JSON_COLUMNS = {
    'students': ('contact_info',),
}

Row = Dict[str, Any]


def parse_service_url(url: str) -> str:
    """
    Extract the database path from a ``sqlite:///`` service URL.

    Raises:
        ConfigurationError: If the URL is empty or uses another scheme
    """
    if not url:
        raise ConfigurationError("DATA_SERVICE_URL is required")
    if not url.startswith(SQLITE_URL_PREFIX):
        raise ConfigurationError(f"Unsupported DATA_SERVICE_URL: {url}")

    path = url[len(SQLITE_URL_PREFIX):]
    if not path:
        raise ConfigurationError("DATA_SERVICE_URL does not name a database")
    return path


class DataService:
    """
    Gateway over the attendance tables and the identity provider.
    """

    def __init__(self, url: str, api_key: str, **auth_options):
        """
        Connect to the data service.

        Args:
            url (str): Service URL, ``sqlite:///<path>``
            api_key (str): Public project key
            **auth_options: Token lifetimes forwarded to the identity provider
        """
        if not api_key:
            raise ConfigurationError("DATA_SERVICE_KEY is required")

        self.url = url
        self.logger = logging.getLogger(__name__)
        self.db = DatabaseManager(parse_service_url(url))
        self.auth = IdentityProvider(self.db, api_key, **auth_options)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _columns(self, table: str) -> Sequence[str]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise DataServiceError(f"Unknown table: {table}", code=UNKNOWN_COLUMN) from None

    def _check_columns(self, table: str, names: Iterable[str]):
        allowed = self._columns(table)
        for name in names:
            if name not in allowed:
                raise DataServiceError(
                    f"Could not find the '{name}' column of '{table}'",
                    code=UNKNOWN_COLUMN
                )

    def _encode(self, table: str, row: Row) -> Row:
        encoded = dict(row)
        for column in JSON_COLUMNS.get(table, ()):
            if column in encoded and encoded[column] is not None:
                encoded[column] = json.dumps(encoded[column])
        return encoded

    def _decode(self, table: str, row: Row) -> Row:
        for column in JSON_COLUMNS.get(table, ()):
            if row.get(column):
                row[column] = json.loads(row[column])
        return row

    def _where(self, table: str, filters: Optional[Row], gte: Optional[Row] = None,
               lte: Optional[Row] = None):
        conditions = []
        params: List[Any] = []

        for column, value in (filters or {}).items():
            self._check_columns(table, [column])
            if isinstance(value, (list, tuple, set)):
                values = list(value)
                if not values:
                    conditions.append("0 = 1")
                    continue
                conditions.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                conditions.append(f"{column} = ?")
                params.append(value)

        for operator, bounds in ((">=", gte), ("<=", lte)):
            for column, value in (bounds or {}).items():
                self._check_columns(table, [column])
                conditions.append(f"{column} {operator} ?")
                params.append(value)

        clause = " AND ".join(conditions) if conditions else "1 = 1"
        return clause, params

    def _run(self, operation: str, table: str, func):
        try:
            return func()
        except ConnectivityError as e:
            if not self.is_online():
                e.offline = True
            self.logger.error(f"{operation} on {table} failed: {e}")
            raise
        except DataServiceError as e:
            self.logger.error(f"{operation} on {table} failed: {e} (code={e.code})")
            raise

    def is_online(self) -> bool:
        """Local reachability check for the backing store."""
        directory = os.path.dirname(os.path.abspath(self.db.db_path))
        return os.path.isdir(directory) and os.access(directory, os.R_OK | os.W_OK)

    def ping(self) -> bool:
        return self._run('ping', '-', self.db.ping)

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def select(self, table: str, columns: Union[str, Sequence[str]] = '*',
               filters: Optional[Row] = None, gte: Optional[Row] = None,
               lte: Optional[Row] = None, order_by: Union[str, Sequence[str], None] = None,
               descending: bool = False, single: bool = False,
               limit: Optional[int] = None):
        """
        Select rows with equality/range filters and ordering.

        Args:
            table (str): Table name
            columns: '*' or a list of column names
            filters (dict): Equality filters; list values become IN filters
            gte (dict): Lower bounds (inclusive)
            lte (dict): Upper bounds (inclusive)
            order_by: Column or list of columns to order by
            descending (bool): Order direction applied to every order column
            single (bool): Return exactly one row as a dict
            limit (int): Maximum number of rows

        Returns:
            list or dict: Matching rows
        """
        def query():
            if columns == '*':
                column_sql = ', '.join(self._columns(table))
            else:
                self._check_columns(table, columns)
                column_sql = ', '.join(columns)

            where, params = self._where(table, filters, gte, lte)
            sql = f"SELECT {column_sql} FROM {table} WHERE {where}"

            if order_by:
                order_columns = [order_by] if isinstance(order_by, str) else list(order_by)
                self._check_columns(table, order_columns)
                direction = "DESC" if descending else "ASC"
                sql += " ORDER BY " + ", ".join(f"{c} {direction}" for c in order_columns)

            if limit is not None:
                sql += " LIMIT ?"
                params.append(int(limit))

            rows = [self._decode(table, row) for row in self.db.execute_query(sql, params)]

            if single:
                if len(rows) != 1:
                    raise DataServiceError(
                        "JSON object requested, multiple (or no) rows returned",
                        code='PGRST116'
                    )
                return rows[0]
            return rows

        return self._run('select', table, query)

    def insert(self, table: str, rows: Union[Row, List[Row]]) -> List[Row]:
        """
        Insert one or more rows in a single transaction.

        Returns:
            list: The inserted rows as stored
        """
        rows = [rows] if isinstance(rows, dict) else list(rows)

        def write():
            ids = []
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                for row in rows:
                    self._check_columns(table, row.keys())
                    encoded = self._encode(table, row)
                    names = list(encoded.keys())
                    cursor.execute(
                        f"INSERT INTO {table} ({', '.join(names)}) "
                        f"VALUES ({', '.join('?' for _ in names)})",
                        [encoded[name] for name in names]
                    )
                    ids.append(cursor.lastrowid)
            return self.select(table, filters={'id': ids}, order_by='id')

        return self._run('insert', table, write)

    def update(self, table: str, values: Row, filters: Row) -> List[Row]:
        """
        Update rows matching the equality filters.

        Returns:
            list: The updated rows
        """
        if not filters:
            raise DataServiceError("UPDATE requires a WHERE clause", code='21000')

        def write():
            self._check_columns(table, values.keys())
            encoded = self._encode(table, values)
            where, params = self._where(table, filters)
            matching = [row['id'] for row in self.select(table, ['id'], filters=filters)]

            assignments = ', '.join(f"{name} = ?" for name in encoded)
            self.db.execute_update(
                f"UPDATE {table} SET {assignments} WHERE {where}",
                list(encoded.values()) + params
            )
            return self.select(table, filters={'id': matching}, order_by='id')

        return self._run('update', table, write)

    def delete(self, table: str, filters: Row) -> int:
        """
        Delete rows matching the equality filters. Foreign keys cascade.

        Returns:
            int: Number of deleted rows in the named table
        """
        if not filters:
            raise DataServiceError("DELETE requires a WHERE clause", code='21000')

        def write():
            where, params = self._where(table, filters)
            return self.db.execute_update(f"DELETE FROM {table} WHERE {where}", params)

        return self._run('delete', table, write)

    def upsert(self, table: str, rows: Union[Row, List[Row]], on_conflict: str) -> List[Row]:
        """
        Insert rows, updating the existing row when the conflict key matches.

        Args:
            table (str): Table name
            rows: Row or list of rows with identical keys
            on_conflict (str): Comma separated conflict columns, e.g. 'student_id,date'

        Returns:
            list: The written rows
        """
        rows = [rows] if isinstance(rows, dict) else list(rows)
        conflict_columns = [c.strip() for c in on_conflict.split(',') if c.strip()]

        def write():
            if not rows:
                return []
            self._check_columns(table, conflict_columns)

            names = list(rows[0].keys())
            self._check_columns(table, names)
            missing = [c for c in conflict_columns if c not in names]
            if missing:
                raise DataServiceError(
                    f"Upsert rows must include conflict columns: {', '.join(missing)}",
                    code=UNKNOWN_COLUMN
                )

            updates = [name for name in names if name not in conflict_columns and name != 'id']
            set_clause = ', '.join(f"{name} = excluded.{name}" for name in updates)
            action = f"DO UPDATE SET {set_clause}" if updates else "DO NOTHING"
            sql = (
                f"INSERT INTO {table} ({', '.join(names)}) "
                f"VALUES ({', '.join('?' for _ in names)}) "
                f"ON CONFLICT({', '.join(conflict_columns)}) {action}"
            )

            params_list = []
            for row in rows:
                if list(row.keys()) != names:
                    raise DataServiceError("All upsert rows must have the same columns", code='22000')
                encoded = self._encode(table, row)
                params_list.append([encoded[name] for name in names])

            self.db.execute_many(sql, params_list)

            written = []
            for row in rows:
                key = {column: row[column] for column in conflict_columns}
                written.extend(self.select(table, filters=key))
            return written

        return self._run('upsert', table, write)

    def close(self):
        self.db.close_all_connections()
