# pocketinfer/core/database/base.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class DatabaseService(ABC):
    """
    Abstract base class for database services.
    Every mutating call is expected to be durable when it returns.
    """

    @abstractmethod
    def connect(self) -> bool:
        """
        Establishes a connection to the database.
        Returns:
            bool: True if connection was successful, False otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> bool:
        """Closes the database connection."""
        raise NotImplementedError

    @abstractmethod
    def insert(self, table: str, data: Dict[str, Any]) -> Optional[str]:
        """
        Inserts a new record into the specified table.
        Args:
            table (str): The name of the table.
            data (Dict[str, Any]): Column names mapped to the values to insert.
        Returns:
            Optional[str]: The ID of the newly inserted record, or None if insertion failed.
        """
        raise NotImplementedError

    @abstractmethod
    def upsert(self, table: str, data: Dict[str, Any], conflict_columns: Sequence[str]) -> bool:
        """
        Inserts a record, or updates it in place when `conflict_columns` match an existing row.
        Returns:
            bool: True once the write is durable.
        """
        raise NotImplementedError

    @abstractmethod
    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Finds a single record in the table that matches the filters.
        Returns:
            Optional[Dict[str, Any]]: The record, or None if no record matches.
        """
        raise NotImplementedError

    @abstractmethod
    def find(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order_by: Optional[str] = None,
             limit: Optional[int] = None,
             offset: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Finds multiple records in the table that match the filters.
        Args:
            table (str): The name of the table.
            filters (Dict[str, Any], optional): Columns and values to filter by.
            order_by (Optional[str], optional): Column to order by (e.g., "id ASC").
            limit (Optional[int], optional): Maximum number of records to return.
            offset (Optional[int], optional): Number of records to skip.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, filters: Dict[str, Any], updates: Dict[str, Any]) -> int:
        """
        Updates records in the table that match the filters.
        Returns:
            int: The number of records updated.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """
        Deletes records from the table that match the filters.
        Returns:
            int: The number of records deleted.
        """
        raise NotImplementedError

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Executes a SELECT query and returns the rows."""
        raise NotImplementedError

    @abstractmethod
    def execute_script(self, script: str) -> bool:
        """
        Executes a script containing multiple SQL statements.
        Returns:
            bool: True if the script executed successfully, False otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Counts records in the table that match the filters."""
        raise NotImplementedError
