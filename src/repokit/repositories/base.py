"""Generic entity repository with condition-based CRUD operations.

This module implements a composition-based repository that provides reusable
database access operations for any SQLAlchemy model.

Key Concepts:
- COMPOSITION PATTERN: EntityRepository is wrapped by entity-specific
  repositories, not inherited
- CONDITIONS: Targets are described with plain mappings (see conditions.py)
- TOMBSTONES: Optional integer tombstone column; live rows are 0, deleted 1
- PAGINATION: 1-based page/page_size with a total count of the full match set
- TRANSACTIONS: A caller-supplied AsyncSession is used verbatim and never
  committed; without one each operation runs in its own session.begin() block
- TRACING: @trace_database decorators integrate with OpenTelemetry

Usage Example:
    from repokit.core.database import create_engine, create_session_factory

    session_factory = create_session_factory(create_engine())
    users = EntityRepository(
        session_factory, User, tombstone_field="is_deleted", tombstone_filter=True
    )
    user = await users.create({"name": "Ada"})
    await users.update_by_id(user.id, {"name": "Ada Lovelace"})
    await users.delete_by_id(user.id)          # logical delete
    await users.get_by_id(user.id)             # None
    await users.get_by_id(user.id, tombstone_filter=False)  # is_deleted == 1

    async with session_factory() as session, session.begin():
        await users.create({"name": "Grace"}, session=session)
        await users.update_by_condition({"name": "Grace"}, {"name": "G."}, session=session)
"""

from collections.abc import AsyncIterator, Iterable, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, model_validator
from sqlalchemy import delete, distinct, func, inspect as sa_inspect, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, load_only
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from repokit.core.logging import get_logger
from repokit.core.tracing import trace_database
from repokit.models.base import TOMBSTONE_DELETED, TOMBSTONE_LIVE
from repokit.repositories.conditions import (
    Condition,
    column_attributes,
    compile_condition,
    with_tombstone,
)
from repokit.repositories.exceptions import (
    ConstraintError,
    InvalidPageError,
    InvalidQueryError,
    NotFoundError,
)

ModelType = TypeVar("ModelType", bound=DeclarativeBase)

EntityId = Union[int, str, Any]

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 1000

logger = get_logger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================


class MessageCatalog(BaseModel):
    """Messages attached to the named failure cases.

    Override per repository, e.g.
    EntityRepository(..., messages={"record_not_available": "No such user"}).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_not_available: str = "No data available. Please check your request."
    record_already_exists: str = "Data already exists. Please check your request."
    foreign_key_violation: str = "Invalid data: Please check the associated foreign keys."


class RepositoryConfig(BaseModel):
    """Immutable per-repository configuration.

    Attributes:
        model: SQLAlchemy model class the repository serves
        primary_key_field: Attribute name of the model's primary key
        tombstone_field: Attribute name of the tombstone column, if any
        tombstone_filter: Default tombstone policy for calls that omit it
        live_value: Tombstone value of live records
        deleted_value: Tombstone value written by logical deletes
        max_page_size: Largest page size get_page accepts
        messages: Failure message catalog
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    model: type[DeclarativeBase]
    primary_key_field: str
    tombstone_field: Optional[str] = None
    tombstone_filter: bool = False
    live_value: Any = TOMBSTONE_LIVE
    deleted_value: Any = TOMBSTONE_DELETED
    max_page_size: int = MAX_PAGE_SIZE
    messages: MessageCatalog = MessageCatalog()

    @model_validator(mode="after")
    def validate_fields(self) -> "RepositoryConfig":
        fields = column_attributes(self.model)
        if self.primary_key_field not in fields:
            raise ValueError(
                f"{self.model.__name__} has no column attribute {self.primary_key_field!r}"
            )
        if self.tombstone_field is not None and self.tombstone_field not in fields:
            raise ValueError(
                f"{self.model.__name__} has no tombstone column {self.tombstone_field!r}"
            )
        if self.tombstone_filter and self.tombstone_field is None:
            raise ValueError("tombstone_filter requires a tombstone_field")
        if self.max_page_size < 1:
            raise ValueError("max_page_size must be at least 1")
        return self


def primary_key_of(model: type[DeclarativeBase]) -> str:
    """Return the attribute name of the model's single-column primary key."""
    mapper = sa_inspect(model)
    if len(mapper.primary_key) != 1:
        raise ValueError(
            f"{model.__name__} must have exactly one primary key column, "
            f"found {len(mapper.primary_key)}"
        )
    return mapper.get_property_by_column(mapper.primary_key[0]).key


# ============================================================================
# ORDERING AND PAGINATION SUPPORT
# ============================================================================


class SortDirection(str, Enum):
    """Sort direction accepted by the ordered read operations."""

    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: Union["SortDirection", str]) -> "SortDirection":
        """Parse "asc"/"DESC"/SortDirection case-insensitively."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise InvalidQueryError(
                f"Order direction must be ASC or DESC, got {value!r}"
            ) from None


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidPageError(f"{name} must be a positive integer, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
        number = int(value.strip())
    else:
        raise InvalidPageError(f"{name} must be a positive integer, got {value!r}")

    if number < 1:
        raise InvalidPageError(f"{name} must be a positive integer, got {value!r}")
    return number


class PageRequest:
    """Validated 1-based page request.

    Page numbers and sizes arrive from query strings as often as from code,
    so ASCII decimal strings and integral floats are accepted. Anything else, any
    value below 1, and a page size above max_page_size are rejected rather
    than clamped.

    Attributes:
        page: 1-based page number
        page_size: Records per page
        offset: Records skipped before this page

    Example:
        request = PageRequest("2", 10)
        request.offset  # 10

    Raises:
        InvalidPageError: If either value is not a positive integer in range
    """

    def __init__(
        self,
        page: Any = 1,
        page_size: Any = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.page = _positive_int(page, "page")
        self.page_size = _positive_int(page_size, "page_size")
        if self.page_size > max_page_size:
            raise InvalidPageError(
                f"page_size must be between 1 and {max_page_size}, got {self.page_size}"
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class RecordPage(Generic[ModelType]):
    """One page of records plus the size of the full matching set.

    Attributes:
        records: Records on this page
        total_count: Number of records matching the condition across all pages
    """

    def __init__(self, records: list[ModelType], total_count: int) -> None:
        self.records = records
        self.total_count = total_count


# ============================================================================
# ENTITY REPOSITORY
# ============================================================================


class EntityRepository(Generic[ModelType]):
    """Generic repository providing condition-based CRUD for one SQLAlchemy model.

    Every operation takes an optional ``session``. A supplied session is the
    caller's transactional context: the repository flushes through it but
    never begins, commits or rolls it back, and a read-then-write pair such as
    update_by_id runs entirely inside it. Without one, the repository opens a
    session from ``session_factory`` (with expire_on_commit=False, whatever the
    factory default) and runs the whole operation in a single
    ``session.begin()`` block.

    Operations that read, update or delete take ``tombstone_filter``. None
    means the configured default; True scopes the call to live records (and
    makes deletes logical); False bypasses tombstones. Repositories without a
    tombstone field ignore the flag and always delete physically.

    Args:
        session_factory: async_sessionmaker used when no session is supplied
        model: SQLAlchemy model class (e.g., User, Invoice)
        tombstone_field: Tombstone column attribute name, if the model has one
        tombstone_filter: Default tombstone policy
        messages: MessageCatalog or mapping overriding catalog entries
        max_page_size: Largest page size accepted by get_page

    Example (Composition Pattern):
        class UserRepository:
            def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
                self._repo = EntityRepository(
                    session_factory, User, tombstone_field="is_deleted", tombstone_filter=True
                )

            async def get_by_email(self, email: str) -> Optional[User]:
                return await self._repo.get_one({"email": email})
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: type[ModelType],
        *,
        tombstone_field: Optional[str] = None,
        tombstone_filter: bool = False,
        messages: Union[MessageCatalog, Mapping[str, str], None] = None,
        max_page_size: int = MAX_PAGE_SIZE,
        live_value: Any = TOMBSTONE_LIVE,
        deleted_value: Any = TOMBSTONE_DELETED,
    ) -> None:
        if messages is None:
            messages = MessageCatalog()
        elif not isinstance(messages, MessageCatalog):
            messages = MessageCatalog(**messages)

        self._session_factory = session_factory
        self._model = model
        self._config = RepositoryConfig(
            model=model,
            primary_key_field=primary_key_of(model),
            tombstone_field=tombstone_field,
            tombstone_filter=tombstone_filter,
            live_value=live_value,
            deleted_value=deleted_value,
            max_page_size=max_page_size,
            messages=messages,
        )
        self._logger = get_logger(f"{__name__}.{model.__name__}Repository")

    # ========================================================================
    # CONFIGURATION ACCESSORS
    # ========================================================================

    @property
    def config(self) -> RepositoryConfig:
        return self._config

    @property
    def model(self) -> type[ModelType]:
        return self._model

    def primary_key_field(self) -> str:
        """Attribute name of the primary key."""
        return self._config.primary_key_field

    def default_tombstone_policy(self) -> bool:
        """Tombstone policy applied when a call passes tombstone_filter=None."""
        return self._config.tombstone_filter

    def schema_fields(self) -> list[str]:
        """Column attribute names of the model, introspected on every call."""
        return list(column_attributes(self._model))

    # ========================================================================
    # CREATE OPERATIONS
    # ========================================================================

    @trace_database()
    async def create(
        self, record: Mapping[str, Any], *, session: Optional[AsyncSession] = None
    ) -> ModelType:
        """Create a new record and return it.

        No existence pre-check is made; the store's unique and foreign-key
        rules decide.

        Args:
            record: Field values (e.g., {"name": "Ada", "email": "ada@example.com"})
            session: Transactional context to use instead of an own session

        Returns:
            Stored record with generated and server-default fields populated

        Raises:
            InvalidQueryError: If the record names an unknown field
            ConstraintError: If a unique or foreign-key rule rejects the insert
            StoreError: For any other database error
        """
        self._check_fields(record, "record")
        self._logger.debug("Creating record", model=self._model.__name__)

        with self._store_errors("create"):
            async with self._session_scope(session) as db:
                entity = self._model(**record)
                db.add(entity)
                await db.flush()
                await db.refresh(entity)

        self._logger.info(
            "Record created",
            model=self._model.__name__,
            entity_id=self._identity(entity),
        )
        return entity

    @trace_database()
    async def create_many(
        self,
        records: Sequence[Mapping[str, Any]],
        *,
        session: Optional[AsyncSession] = None,
    ) -> list[ModelType]:
        """Create several records in one flush.

        Same semantics as create(); one rejected record fails the batch.
        """
        for record in records:
            self._check_fields(record, "record")
        self._logger.debug("Creating records", model=self._model.__name__, count=len(records))

        with self._store_errors("create_many"):
            async with self._session_scope(session) as db:
                entities = [self._model(**record) for record in records]
                db.add_all(entities)
                await db.flush()
                for entity in entities:
                    await db.refresh(entity)

        self._logger.info("Records created", model=self._model.__name__, count=len(entities))
        return entities

    # ========================================================================
    # UPDATE OPERATIONS
    # ========================================================================

    @trace_database()
    async def update_by_id(
        self,
        entity_id: EntityId,
        patch: Mapping[str, Any],
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> ModelType:
        """Update one record by primary key and return it.

        The record is read first (tombstone-scoped if requested) and the patch
        is merged onto it: only keys present in ``patch`` change, so a field
        becomes None only when the patch says so explicitly.

        Args:
            entity_id: Primary key value
            patch: Fields to change
            tombstone_filter: Restrict the lookup to live records
            session: Transactional context shared by the read and the write

        Returns:
            The merged, persisted record

        Raises:
            NotFoundError: If no (live) record has this primary key
            InvalidQueryError: If the patch names an unknown field
            ConstraintError: If the new values break a unique or foreign-key rule
        """
        self._check_fields(patch, "patch")
        self._logger.debug(
            "Updating record",
            model=self._model.__name__,
            entity_id=entity_id,
            fields=list(patch.keys()),
        )

        with self._store_errors("update_by_id"):
            async with self._session_scope(session) as db:
                entity = await self._fetch_by_id(db, entity_id, None, tombstone_filter)
                if entity is None:
                    self._raise_not_found(entity_id)

                for key, value in patch.items():
                    setattr(entity, key, value)
                await db.flush()
                await db.refresh(entity)

        self._logger.info("Record updated", model=self._model.__name__, entity_id=entity_id)
        return entity

    @trace_database()
    async def update_by_condition(
        self,
        condition: Condition,
        patch: Mapping[str, Any],
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Bulk-update every record matching the condition.

        There is no default condition: pass {} to update every record on
        purpose.

        Returns:
            Number of affected records
        """
        if condition is None:
            raise InvalidQueryError(
                "update_by_condition needs an explicit condition; pass {} to match every record"
            )
        self._check_fields(patch, "patch")
        if not patch:
            return 0

        columns = column_attributes(self._model)
        query = (
            update(self._model)
            .where(self._where(condition, tombstone_filter))
            .values({columns[key]: value for key, value in patch.items()})
            .execution_options(synchronize_session=False)
        )

        with self._store_errors("update_by_condition"):
            async with self._session_scope(session) as db:
                await db.flush()
                result = await db.execute(query)
                affected = result.rowcount
                self._expire_loaded(db, list(patch))

        self._logger.info(
            "Records updated by condition", model=self._model.__name__, affected=affected
        )
        return affected

    # ========================================================================
    # DELETE OPERATIONS
    # ========================================================================

    @trace_database()
    async def delete_by_id(
        self,
        entity_id: EntityId,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Delete one record by primary key.

        Tombstone mode sets the tombstone field to the deleted value; the row
        stays and is hidden from tombstone-filtered reads. Otherwise the row
        is removed.

        Returns:
            True; absence is reported as NotFoundError, never as False

        Raises:
            NotFoundError: If no (live) record has this primary key
            ConstraintError: If a foreign-key rule blocks a physical delete
        """
        soft = self._tombstone_active(tombstone_filter)
        self._logger.debug(
            "Deleting record", model=self._model.__name__, entity_id=entity_id, soft_delete=soft
        )

        with self._store_errors("delete_by_id"):
            async with self._session_scope(session) as db:
                entity = await self._fetch_by_id(db, entity_id, None, tombstone_filter)
                if entity is None:
                    self._raise_not_found(entity_id)

                if soft:
                    setattr(entity, self._config.tombstone_field, self._config.deleted_value)
                else:
                    await db.delete(entity)
                await db.flush()

        self._logger.info(
            "Record deleted", model=self._model.__name__, entity_id=entity_id, soft_delete=soft
        )
        return True

    @trace_database()
    async def delete_by_condition(
        self,
        condition: Condition,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Delete every record matching the condition.

        Tombstone mode marks matching live records deleted in one UPDATE;
        otherwise one DELETE removes them. Like update_by_condition, {} must
        be passed explicitly to target everything.

        Returns:
            Number of affected records
        """
        if condition is None:
            raise InvalidQueryError(
                "delete_by_condition needs an explicit condition; pass {} to match every record"
            )
        soft = self._tombstone_active(tombstone_filter)
        where = self._where(condition, tombstone_filter)

        if soft:
            tombstone = column_attributes(self._model)[self._config.tombstone_field]
            query = update(self._model).where(where).values({tombstone: self._config.deleted_value})
        else:
            query = delete(self._model).where(where)

        with self._store_errors("delete_by_condition"):
            async with self._session_scope(session) as db:
                await db.flush()
                result = await db.execute(query.execution_options(synchronize_session=False))
                affected = result.rowcount
                if soft:
                    self._expire_loaded(db, [self._config.tombstone_field])

        self._logger.info(
            "Records deleted by condition",
            model=self._model.__name__,
            affected=affected,
            soft_delete=soft,
        )
        return affected

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    @trace_database()
    async def get_by_id(
        self,
        entity_id: EntityId,
        fields: Optional[Sequence[str]] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ModelType]:
        """Get a record by primary key.

        Absence is a normal result here, unlike update_by_id and delete_by_id.

        Args:
            entity_id: Primary key value
            fields: Columns to load; others raise on access
            tombstone_filter: Hide logically deleted records
            session: Transactional context

        Returns:
            The record, or None
        """
        self._logger.debug("Getting record by id", model=self._model.__name__, entity_id=entity_id)

        with self._store_errors("get_by_id"):
            async with self._session_scope(session) as db:
                return await self._fetch_by_id(db, entity_id, fields, tombstone_filter)

    @trace_database()
    async def get_all(
        self,
        condition: Optional[Condition] = None,
        fields: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        order_dir: Union[SortDirection, str] = SortDirection.DESC,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> list[ModelType]:
        """Get every record matching the condition.

        Ordered by ``order_by`` (primary key when None) in ``order_dir``
        (descending by default). Returns an empty list when nothing matches.
        """
        query = self._select(condition, fields, order_by, order_dir, tombstone_filter)

        with self._store_errors("get_all"):
            async with self._session_scope(session) as db:
                result = await db.execute(query)
                records = list(result.scalars().all())

        self._logger.debug("Listed records", model=self._model.__name__, count=len(records))
        return records

    @trace_database()
    async def get_one(
        self,
        condition: Optional[Condition] = None,
        fields: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        order_dir: Union[SortDirection, str] = SortDirection.DESC,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ModelType]:
        """Get the first record matching the condition in the requested order."""
        query = self._select(condition, fields, order_by, order_dir, tombstone_filter).limit(1)

        with self._store_errors("get_one"):
            async with self._session_scope(session) as db:
                result = await db.execute(query)
                return result.scalars().first()

    @trace_database()
    async def get_page(
        self,
        condition: Optional[Condition] = None,
        page: Any = 1,
        page_size: Any = DEFAULT_PAGE_SIZE,
        fields: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        order_dir: Union[SortDirection, str] = SortDirection.DESC,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> RecordPage[ModelType]:
        """Get one page of matching records and the size of the full match set.

        ``offset = (page - 1) * page_size``. The total counts distinct primary
        keys so joined loading cannot inflate it.

        Raises:
            InvalidPageError: If page or page_size is not a positive integer,
                or page_size exceeds max_page_size
        """
        request = PageRequest(page, page_size, max_page_size=self._config.max_page_size)
        where = self._where(condition, tombstone_filter)
        primary_key = column_attributes(self._model)[self._config.primary_key_field]

        query = (
            self._select(condition, fields, order_by, order_dir, tombstone_filter)
            .offset(request.offset)
            .limit(request.page_size)
        )
        count_query = select(func.count(distinct(primary_key))).where(where)

        self._logger.debug(
            "Getting page",
            model=self._model.__name__,
            page=request.page,
            page_size=request.page_size,
        )

        with self._store_errors("get_page"):
            async with self._session_scope(session) as db:
                total_count = (await db.execute(count_query)).scalar_one()
                result = await db.execute(query)
                records = list(result.scalars().all())

        return RecordPage(records=records, total_count=total_count)

    # ========================================================================
    # AGGREGATES
    # ========================================================================

    @trace_database()
    async def exists(
        self,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """True if at least one record matches the condition."""
        return await self.count(condition, tombstone_filter=tombstone_filter, session=session) > 0

    @trace_database()
    async def count(
        self,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Count records matching the condition."""
        query = (
            select(func.count())
            .select_from(self._model)
            .where(self._where(condition, tombstone_filter))
        )

        with self._store_errors("count"):
            async with self._session_scope(session) as db:
                total = (await db.execute(query)).scalar_one()

        self._logger.debug("Counted records", model=self._model.__name__, total=total)
        return total

    @trace_database()
    async def max_of(
        self,
        field: Optional[str] = None,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> Any:
        """Largest value of ``field`` (primary key when None) among matching records.

        Returns None, not zero, when nothing matches.
        """
        column = self._column(field or self._config.primary_key_field, "max_of")
        query = select(func.max(column)).where(self._where(condition, tombstone_filter))

        with self._store_errors("max_of"):
            async with self._session_scope(session) as db:
                return (await db.execute(query)).scalar()

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @asynccontextmanager
    async def _session_scope(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return

        # Returned records must stay readable after the commit
        async with self._session_factory(expire_on_commit=False) as own_session:
            async with own_session.begin():
                yield own_session

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as e:
            self._logger.error(
                "Store rejected write",
                model=self._model.__name__,
                operation=operation,
                error=str(e),
            )
            constraint_error = self._classify_integrity_error(e)
            if constraint_error is None:
                raise
            raise constraint_error from e
        except SQLAlchemyError as e:
            self._logger.error(
                "Store operation failed",
                model=self._model.__name__,
                operation=operation,
                error=str(e),
            )
            raise

    def _classify_integrity_error(self, error: IntegrityError) -> Optional[ConstraintError]:
        detail = str(error.orig if error.orig is not None else error).lower()
        messages = self._config.messages
        if "foreign key" in detail:
            return ConstraintError(messages.foreign_key_violation)
        if "unique" in detail or "duplicate" in detail:
            return ConstraintError(messages.record_already_exists)
        return None

    def _raise_not_found(self, entity_id: EntityId) -> None:
        self._logger.debug("Record not found", model=self._model.__name__, entity_id=entity_id)
        raise NotFoundError(self._config.messages.record_not_available)

    def _tombstone_active(self, tombstone_filter: Optional[bool]) -> bool:
        if tombstone_filter is None:
            tombstone_filter = self._config.tombstone_filter
        return bool(tombstone_filter) and self._config.tombstone_field is not None

    def _where(
        self, condition: Optional[Condition], tombstone_filter: Optional[bool]
    ) -> ColumnElement[bool]:
        if self._tombstone_active(tombstone_filter):
            condition = with_tombstone(
                condition, self._config.tombstone_field, self._config.live_value
            )
        return compile_condition(self._model, condition)

    def _column(self, name: str, usage: str) -> Any:
        columns = column_attributes(self._model)
        if name not in columns:
            raise InvalidQueryError(f"Unknown field in {usage}: {name!r}")
        return columns[name]

    def _check_fields(self, names: Iterable[str], usage: str) -> None:
        columns = column_attributes(self._model)
        unknown = [name for name in names if name not in columns]
        if unknown:
            raise InvalidQueryError(f"Unknown field(s) in {usage}: {', '.join(unknown)}")

    def _select(
        self,
        condition: Optional[Condition],
        fields: Optional[Sequence[str]],
        order_by: Optional[str],
        order_dir: Union[SortDirection, str],
        tombstone_filter: Optional[bool],
    ) -> Select[Any]:
        order_column = self._column(order_by or self._config.primary_key_field, "order_by")
        direction = SortDirection.parse(order_dir)

        query = select(self._model).where(self._where(condition, tombstone_filter))
        query = self._project(query, fields)
        if direction is SortDirection.ASC:
            return query.order_by(order_column.asc())
        return query.order_by(order_column.desc())

    def _project(self, query: Select[Any], fields: Optional[Sequence[str]]) -> Select[Any]:
        if not fields:
            return query
        self._check_fields(fields, "fields")
        columns = column_attributes(self._model)
        return query.options(load_only(*(columns[name] for name in fields), raiseload=True))

    async def _fetch_by_id(
        self,
        db: AsyncSession,
        entity_id: EntityId,
        fields: Optional[Sequence[str]],
        tombstone_filter: Optional[bool],
    ) -> Optional[ModelType]:
        condition = {self._config.primary_key_field: entity_id}
        query = select(self._model).where(self._where(condition, tombstone_filter))
        query = self._project(query, fields)
        result = await db.execute(query)
        return result.scalars().first()

    def _identity(self, entity: ModelType) -> Any:
        return getattr(entity, self._config.primary_key_field, None)

    def _expire_loaded(self, db: AsyncSession, attribute_names: list[str]) -> None:
        # Bulk statements bypass the identity map; reload these on next select
        for entity in list(db.identity_map.values()):
            if isinstance(entity, self._model):
                db.expire(entity, attribute_names)
