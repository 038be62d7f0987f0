"""
Shared plumbing for the reseller back office core

This package provides:
- Error hierarchy and error kinds
- Result envelope returned at the component boundary
- Canonical identifier guard
- Authorization context passed into lifecycle operations
- Transactional in-memory store
"""

from .auth import ActorContext, Permission, PermissionAction, PermissionCode
from .errors import (
    AuthorizationError,
    BackofficeError,
    ErrorKind,
    InsufficientFundsError,
    NotFoundError,
    PersistenceError,
    StateConflictError,
    ValidationError,
)
from .identifiers import ensure_uuid
from .result import Result
from .storage import InMemoryStorage

__all__ = [
    "ActorContext",
    "Permission",
    "PermissionAction",
    "PermissionCode",
    "AuthorizationError",
    "BackofficeError",
    "ErrorKind",
    "InsufficientFundsError",
    "NotFoundError",
    "PersistenceError",
    "StateConflictError",
    "ValidationError",
    "ensure_uuid",
    "Result",
    "InMemoryStorage",
]
