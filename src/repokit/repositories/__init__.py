"""Repository layer for database operations.

EntityRepository provides condition-based CRUD with tombstone support for any
SQLAlchemy model; QueryFacade adds search and pagination envelopes on top.
"""

from repokit.repositories.base import (
    EntityRepository,
    MessageCatalog,
    PageRequest,
    RecordPage,
    RepositoryConfig,
    SortDirection,
)
from repokit.repositories.conditions import Condition, compile_condition
from repokit.repositories.exceptions import (
    ConstraintError,
    InvalidPageError,
    InvalidQueryError,
    NotFoundError,
    RepositoryError,
    StoreError,
)
from repokit.repositories.query import PaginatedResult, QueryFacade

__all__ = [
    "Condition",
    "ConstraintError",
    "EntityRepository",
    "InvalidPageError",
    "InvalidQueryError",
    "MessageCatalog",
    "NotFoundError",
    "PageRequest",
    "PaginatedResult",
    "QueryFacade",
    "RecordPage",
    "RepositoryConfig",
    "RepositoryError",
    "SortDirection",
    "StoreError",
    "compile_condition",
]
