"""Exceptions for database operations."""

from pathlib import Path
from typing import Optional


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class MigrationError(DatabaseError):
    """Raised when database migration fails."""

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        filename: Optional[str] = None,
    ):
        super().__init__(message)
        self.version = version
        self.filename = filename


class AccountNotFoundError(DatabaseError):
    """Raised when an account record cannot be found."""

    def __init__(
        self,
        message: str,
        account_id: Optional[int] = None,
        email: Optional[str] = None,
    ):
        super().__init__(message)
        self.account_id = account_id
        self.email = email


class DuplicateRecordError(DatabaseError):
    """Raised when attempting to create a duplicate record."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
        value: Optional[str] = None,
    ):
        super().__init__(message)
        self.table = table
        self.key = key
        self.value = value


class QueryError(DatabaseError):
    """Raised when database query execution fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        params: Optional[tuple] = None,
    ):
        super().__init__(message)
        self.query = query
        self.params = params


class TransactionError(DatabaseError):
    """Raised when transaction operation fails."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
