"""Persistence for accounts and refresh sessions."""

from .connection import DatabaseConnection
from .exceptions import (
    AccountNotFoundError,
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    MigrationError,
    QueryError,
    TransactionError,
)
from .migrator import Migrator
from .repository import AuthRepository
from .stores import CredentialStore, SessionRepository

__all__ = [
    "AuthRepository",
    "CredentialStore",
    "SessionRepository",
    "DatabaseConnection",
    "Migrator",
    "DatabaseError",
    "DatabaseConnectionError",
    "MigrationError",
    "AccountNotFoundError",
    "DuplicateRecordError",
    "QueryError",
    "TransactionError",
]
