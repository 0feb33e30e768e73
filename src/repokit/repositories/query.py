"""Query facade: search composition and pagination envelopes.

QueryFacade sits between a dispatch layer and an EntityRepository. It folds a
free-text search over several columns into the caller's condition, turns a
repository page into a PaginatedResult, and forwards every other repository
operation unchanged so dispatch code only needs the facade.
"""

import json
import math
from collections.abc import Mapping, Sequence
from typing import Any, Generic, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.logging import get_logger
from repokit.repositories.base import (
    DEFAULT_PAGE_SIZE,
    EntityId,
    EntityRepository,
    ModelType,
    PageRequest,
    RecordPage,
    SortDirection,
)
from repokit.repositories.conditions import LIKE, Condition, merge_or
from repokit.repositories.exceptions import InvalidQueryError


class PaginatedResult(Generic[ModelType]):
    """Paginated result container with metadata.

    Attributes:
        records: Records on the current page
        current_page: 1-based page number
        page_size: Requested page size
        total_count: Number of matching records across all pages
        total_pages: ceil(total_count / page_size)
        has_next: True if a later page exists
        has_prev: True if an earlier page exists

    Example:
        result = await facade.search_and_paginate(page=1, page_size=20, search_term="jo")
        for record in result.records:
            print(record)
        if result.has_next:
            result = await facade.search_and_paginate(page=result.current_page + 1, ...)
    """

    def __init__(
        self,
        records: list[ModelType],
        current_page: int,
        page_size: int,
        total_count: int,
    ) -> None:
        self.records = records
        self.current_page = current_page
        self.page_size = page_size
        self.total_count = total_count
        self.total_pages = math.ceil(total_count / page_size)
        self.has_next = current_page < self.total_pages
        self.has_prev = current_page > 1


def parse_search_columns(search_columns: Union[Sequence[str], str, None]) -> list[str]:
    """Normalize search columns given as a list, a JSON array or comma-separated text."""
    if not search_columns:
        return []
    if isinstance(search_columns, str):
        text = search_columns.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError as e:
                raise InvalidQueryError(f"search_columns is not a valid JSON array: {e}") from e
            if not isinstance(parsed, list) or not all(isinstance(c, str) for c in parsed):
                raise InvalidQueryError("search_columns must be an array of field names")
            return parsed
        return [column.strip() for column in text.split(",") if column.strip()]
    return [str(column) for column in search_columns]


class QueryFacade(Generic[ModelType]):
    """Search and pagination on top of an EntityRepository.

    Args:
        repository: Repository the facade composes queries for

    Example:
        facade = QueryFacade(EntityRepository(session_factory, User))
        page = await facade.search_and_paginate(
            {"status": "active"}, page=2, page_size=25,
            search_term="jo", search_columns=["name", "email"],
        )
    """

    def __init__(self, repository: EntityRepository[ModelType]) -> None:
        self._repository = repository
        self._logger = get_logger(f"{__name__}.{repository.model.__name__}Query")

    @property
    def repository(self) -> EntityRepository[ModelType]:
        return self._repository

    def build_search_condition(
        self,
        condition: Optional[Condition],
        search_term: str,
        search_columns: Union[Sequence[str], str, None] = None,
    ) -> dict[str, Any]:
        """Return a copy of ``condition`` AND-ed with a pattern search.

        Requested columns are intersected with the schema fields, dropping
        unknown names silently; with no requested columns every schema field
        is searched. Each column gets ``{column: {"$like": "%term%"}}`` and the
        clauses are OR-ed. An empty search term leaves the condition as is.
        """
        if not search_term:
            return dict(condition or {})

        schema_fields = self._repository.schema_fields()
        requested = parse_search_columns(search_columns)
        if requested:
            columns = [column for column in requested if column in schema_fields]
            dropped = [column for column in requested if column not in schema_fields]
            if dropped:
                self._logger.debug("Ignoring unknown search columns", columns=dropped)
        else:
            columns = schema_fields

        pattern = f"%{search_term}%"
        clauses = [{column: {LIKE: pattern}} for column in columns]
        return merge_or(condition, clauses)

    async def search_and_paginate(
        self,
        condition: Optional[Condition] = None,
        page: Any = 1,
        page_size: Any = DEFAULT_PAGE_SIZE,
        fields: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        order_dir: Union[SortDirection, str] = SortDirection.DESC,
        search_term: str = "",
        search_columns: Union[Sequence[str], str, None] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> PaginatedResult[ModelType]:
        """Search, then fetch one page with pagination metadata.

        Args:
            condition: Base condition the search is AND-ed with
            page: 1-based page number (int or digit string)
            page_size: Records per page (int or digit string)
            fields: Columns to load
            order_by: Ordering field, primary key when None
            order_dir: "ASC" or "DESC"
            search_term: Text matched anywhere in the searched columns
            search_columns: Columns to search; all schema fields when empty
            tombstone_filter: Hide logically deleted records
            session: Transactional context

        Returns:
            PaginatedResult with records, current_page, page_size,
            total_count and total_pages

        Raises:
            InvalidPageError: If page or page_size is not a positive integer
                within the repository's max_page_size
        """
        request = PageRequest(page, page_size, max_page_size=self._repository.config.max_page_size)
        search_condition = self.build_search_condition(condition, search_term, search_columns)

        self._logger.debug(
            "Searching and paginating",
            page=request.page,
            page_size=request.page_size,
            search_term=search_term or None,
        )

        record_page = await self._repository.get_page(
            search_condition,
            request.page,
            request.page_size,
            fields,
            order_by,
            order_dir,
            tombstone_filter=tombstone_filter,
            session=session,
        )

        return PaginatedResult(
            records=record_page.records,
            current_page=request.page,
            page_size=request.page_size,
            total_count=record_page.total_count,
        )

    # ========================================================================
    # DELEGATED REPOSITORY OPERATIONS
    # ========================================================================
    # Explicit delegation keeps the facade the single entry point for
    # dispatch code and lets tests substitute the repository.

    def primary_key_field(self) -> str:
        return self._repository.primary_key_field()

    def default_tombstone_policy(self) -> bool:
        return self._repository.default_tombstone_policy()

    def schema_fields(self) -> list[str]:
        return self._repository.schema_fields()

    async def create(
        self, record: Mapping[str, Any], *, session: Optional[AsyncSession] = None
    ) -> ModelType:
        return await self._repository.create(record, session=session)

    async def create_many(
        self,
        records: Sequence[Mapping[str, Any]],
        *,
        session: Optional[AsyncSession] = None,
    ) -> list[ModelType]:
        return await self._repository.create_many(records, session=session)

    async def update_by_id(
        self,
        entity_id: EntityId,
        patch: Mapping[str, Any],
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> ModelType:
        return await self._repository.update_by_id(
            entity_id, patch, tombstone_filter=tombstone_filter, session=session
        )

    async def update_by_condition(
        self,
        condition: Condition,
        patch: Mapping[str, Any],
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self._repository.update_by_condition(
            condition, patch, tombstone_filter=tombstone_filter, session=session
        )

    async def delete_by_id(
        self,
        entity_id: EntityId,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        return await self._repository.delete_by_id(
            entity_id, tombstone_filter=tombstone_filter, session=session
        )

    async def delete_by_condition(
        self,
        condition: Condition,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self._repository.delete_by_condition(
            condition, tombstone_filter=tombstone_filter, session=session
        )

    async def get_by_id(
        self,
        entity_id: EntityId,
        fields: Optional[Sequence[str]] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ModelType]:
        return await self._repository.get_by_id(
            entity_id, fields, tombstone_filter=tombstone_filter, session=session
        )

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
        return await self._repository.get_all(
            condition, fields, order_by, order_dir,
            tombstone_filter=tombstone_filter, session=session,
        )

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
        return await self._repository.get_one(
            condition, fields, order_by, order_dir,
            tombstone_filter=tombstone_filter, session=session,
        )

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
        return await self._repository.get_page(
            condition, page, page_size, fields, order_by, order_dir,
            tombstone_filter=tombstone_filter, session=session,
        )

    async def exists(
        self,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        return await self._repository.exists(
            condition, tombstone_filter=tombstone_filter, session=session
        )

    async def count(
        self,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self._repository.count(
            condition, tombstone_filter=tombstone_filter, session=session
        )

    async def max_of(
        self,
        field: Optional[str] = None,
        condition: Optional[Condition] = None,
        *,
        tombstone_filter: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> Any:
        return await self._repository.max_of(
            field, condition, tombstone_filter=tombstone_filter, session=session
        )
