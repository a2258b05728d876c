# pocketinfer/core/database/sqlite.py
import sqlite3
import os
import json
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from .base import DatabaseService

logger = logging.getLogger(f"pocketinfer.{__name__}")


def dict_factory(cursor, row: Tuple) -> Dict[str, Any]:
    """Converts a database row (tuple) to a dictionary with column names as keys."""
    fields = [column[0] for column in cursor.description]
    return {key: value for key, value in zip(fields, row)}


class SQLiteDatabase(DatabaseService):
    """
    SQLite implementation of the DatabaseService.

    One shared connection guarded by a re-entrant lock; every insert, update,
    upsert and delete is committed before the call returns.
    """
    def __init__(self, db_config: Dict[str, Any]):
        """
        Args:
            db_config (Dict[str, Any]): Expected key: 'path' (e.g., "data/db/pocketinfer.db").
                                        ":memory:" keeps everything in process.
        """
        self.db_path: str = db_config.get("path", "data/db/pocketinfer.db")
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        logger.info(f"SQLiteDatabase initialized with db_path: {self.db_path}")
        self._ensure_db_directory()

    def _ensure_db_directory(self):
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")
            except OSError as e:
                logger.error(f"Failed to create database directory {db_dir}: {e}", exc_info=True)

    def connect(self) -> bool:
        with self._lock:
            if self.conn is not None:
                logger.debug("Already connected to SQLite database.")
                return True
            try:
                self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self.conn.row_factory = dict_factory
                self.conn.execute("PRAGMA foreign_keys = ON;")
                logger.info(f"Successfully connected to SQLite database: {self.db_path}")
                return True
            except sqlite3.Error as e:
                logger.error(f"Error connecting to SQLite database {self.db_path}: {e}", exc_info=True)
                self.conn = None
                return False

    def disconnect(self) -> bool:
        with self._lock:
            if self.conn:
                try:
                    self.conn.close()
                    self.conn = None
                    logger.info("Successfully disconnected from SQLite database.")
                    return True
                except sqlite3.Error as e:
                    logger.error(f"Error disconnecting from SQLite database: {e}", exc_info=True)
                    return False
            return True

    def _execute(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[sqlite3.Cursor]:
        """
        Executes one statement, connecting lazily. Returns None on failure.
        Callers must hold self._lock.
        """
        if not self.conn and not self.connect():
            logger.error("Failed to execute query: Could not establish database connection.")
            return None
        try:
            cursor = self.conn.cursor()
            logger.debug(f"Executing SQL: {query} with params: {params}")
            cursor.execute(query, tuple(params or ()))
            return cursor
        except sqlite3.Error as e:
            logger.error(f"SQLite execution error: {e} (Query: {query[:200]}..., Params: {params})", exc_info=True)
            return None

    def _commit(self, cursor: Optional[sqlite3.Cursor], table: str, operation: str) -> bool:
        if cursor is None or self.conn is None:
            logger.error(f"Failed to execute {operation} for table `{table}`, cursor not available or connection lost.")
            return False
        try:
            self.conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error(f"Error committing {operation} on `{table}`: {e}", exc_info=True)
            self.conn.rollback()
            return False

    def _serialize_if_needed(self, value: Any) -> Any:
        """Serializes complex types (dict, list) to JSON strings for TEXT columns."""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    def _build_filter_conditions(self, filters: Optional[Dict[str, Any]]) -> Tuple[List[str], List[Any]]:
        """
        Builds WHERE conditions from a filter dictionary.
        Keys are 'column' or 'column__op' with op in ne, in, nin, lt, lte, gt, gte, isnull.
        Example: {"download_status__in": ["COMPLETED", "CORRUPTED"], "file_size__gt": 0}
        """
        conditions: List[str] = []
        params_list: List[Any] = []

        for key_with_op, value in (filters or {}).items():
            parts = key_with_op.split('__')
            column_name = f"`{parts[0]}`"
            op_suffix = parts[1].lower() if len(parts) > 1 else None

            if op_suffix in ('in', 'nin'):
                if not isinstance(value, (list, tuple, set)) or not value:
                    logger.warning(f"Filter '{key_with_op}' expects a non-empty collection, got {value!r}. Skipping.")
                    continue
                placeholders = ', '.join(['?'] * len(value))
                sql_operator = "IN" if op_suffix == 'in' else "NOT IN"
                conditions.append(f"{column_name} {sql_operator} ({placeholders})")
                params_list.extend(self._serialize_if_needed(v) for v in value)
            elif op_suffix == 'isnull':
                conditions.append(f"{column_name} IS {'' if value else 'NOT '}NULL")
            elif op_suffix in ('ne', 'lt', 'lte', 'gt', 'gte'):
                sql_operator = {"ne": "!=", "lt": "<", "lte": "<=", "gt": ">", "gte": ">="}[op_suffix]
                conditions.append(f"{column_name} {sql_operator} ?")
                params_list.append(self._serialize_if_needed(value))
            else:
                if op_suffix is not None:
                    logger.warning(f"Unknown operator suffix in filter key '{key_with_op}'. Defaulting to equality for column '{parts[0]}'.")
                conditions.append(f"{column_name} = ?")
                params_list.append(self._serialize_if_needed(value))

        return conditions, params_list

    def insert(self, table: str, data: Dict[str, Any]) -> Optional[str]:
        if not data:
            logger.warning(f"Insert called with empty data for table `{table}`.")
            return None

        columns = ', '.join([f"`{key}`" for key in data.keys()])
        placeholders = ', '.join(['?'] * len(data))
        values = [self._serialize_if_needed(v) for v in data.values()]
        query = f"INSERT INTO `{table}` ({columns}) VALUES ({placeholders})"

        with self._lock:
            cursor = self._execute(query, values)
            if not self._commit(cursor, table, "insert"):
                return None
            if "id" in data:
                return str(data["id"])
            return str(cursor.lastrowid)

    def upsert(self, table: str, data: Dict[str, Any], conflict_columns: Sequence[str]) -> bool:
        """
        Inserts `data`, or updates the non-key columns when a row with the same
        `conflict_columns` already exists.
        """
        if not data:
            return False
        columns = ', '.join([f"`{key}`" for key in data.keys()])
        placeholders = ', '.join(['?'] * len(data))
        conflict = ', '.join(f"`{c}`" for c in conflict_columns)
        updates = ', '.join(f"`{key}` = excluded.`{key}`" for key in data.keys() if key not in conflict_columns)
        query = f"INSERT INTO `{table}` ({columns}) VALUES ({placeholders}) ON CONFLICT({conflict}) "
        query += f"DO UPDATE SET {updates}" if updates else "DO NOTHING"

        with self._lock:
            cursor = self._execute(query, [self._serialize_if_needed(v) for v in data.values()])
            return self._commit(cursor, table, "upsert")

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.find(table, filters=filters, limit=1)
        return rows[0] if rows else None

    def find(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order_by: Optional[str] = None, limit: Optional[int] = None,
             offset: Optional[int] = None) -> List[Dict[str, Any]]:
        base_query = f"SELECT * FROM `{table}`"
        conditions_list, params_list = self._build_filter_conditions(filters)

        if conditions_list:
            base_query += " WHERE " + " AND ".join(conditions_list)

        if order_by:
            safe_order_by = "".join(c for c in order_by if c.isalnum() or c in ('_', ' ', ',', '`'))
            if safe_order_by.strip():
                base_query += f" ORDER BY {safe_order_by}"
            else:
                logger.warning(f"Invalid characters in order_by clause: '{order_by}'. Ignoring.")

        if limit is not None:
            base_query += " LIMIT ?"
            params_list.append(limit)

        if offset is not None:
            if limit is None:
                base_query += " LIMIT -1"
            base_query += " OFFSET ?"
            params_list.append(offset)

        with self._lock:
            cursor = self._execute(base_query, params_list)
            if cursor:
                return cursor.fetchall()
            return []

    def update(self, table: str, filters: Dict[str, Any], updates: Dict[str, Any]) -> int:
        if not filters:
            logger.error(f"Update operation on table `{table}` requires filters. Aborting.")
            return 0
        if not updates:
            logger.warning(f"Update operation on table `{table}` called with no update data.")
            return 0

        set_clause = ", ".join(f"`{key}` = ?" for key in updates.keys())
        where_conditions, where_params = self._build_filter_conditions(filters)
        if not where_conditions:
            logger.error(f"Update for table `{table}` failed: no valid WHERE conditions from filters {filters}.")
            return 0

        query = f"UPDATE `{table}` SET {set_clause} WHERE {' AND '.join(where_conditions)}"
        params = [self._serialize_if_needed(v) for v in updates.values()] + where_params

        with self._lock:
            cursor = self._execute(query, params)
            if not self._commit(cursor, table, "update"):
                return 0
            return cursor.rowcount

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        if not filters:
            logger.error(f"Delete operation on table `{table}` requires filters. Aborting to prevent deleting all rows.")
            return 0

        where_conditions, params = self._build_filter_conditions(filters)
        if not where_conditions:
            logger.error(f"Delete for table `{table}` failed: no valid WHERE conditions from filters {filters}.")
            return 0

        query = f"DELETE FROM `{table}` WHERE {' AND '.join(where_conditions)}"
        with self._lock:
            cursor = self._execute(query, params)
            if not self._commit(cursor, table, "delete"):
                return 0
            return cursor.rowcount

    def execute_query(self, query: str, params: Optional[Tuple[Any, ...]] = None) -> List[Dict[str, Any]]:
        """
        Executes a SELECT statement and returns its rows.
        DML is not committed here; use insert/update/delete for modifications.
        """
        if not query.strip().upper().startswith("SELECT"):
            logger.warning(f"execute_query called with non-SELECT statement: '{query[:100]}...'.")
            return []
        with self._lock:
            cursor = self._execute(query, params)
            if cursor:
                return cursor.fetchall()
            return []

    def execute_script(self, script: str) -> bool:
        with self._lock:
            if not self.conn and not self.connect():
                logger.error("Failed to execute script: No database connection.")
                return False
            try:
                self.conn.executescript(script)
                self.conn.commit()
                logger.info("SQL script executed and committed successfully.")
                return True
            except sqlite3.Error as e:
                logger.error(f"SQLite script execution error: {e}", exc_info=True)
                self.conn.rollback()
                return False

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        base_query = f"SELECT COUNT(*) as count_result FROM `{table}`"
        conditions_list, params_list = self._build_filter_conditions(filters)
        if conditions_list:
            base_query += " WHERE " + " AND ".join(conditions_list)

        result_data = self.execute_query(base_query, tuple(params_list))
        if result_data:
            try:
                return int(result_data[0]['count_result'])
            except (KeyError, ValueError, TypeError):
                logger.error(f"Count query for `{table}` returned unexpected row format: {result_data[0]}")
        return 0
