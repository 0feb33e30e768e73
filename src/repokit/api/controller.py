"""Resource controller mapping facade results and errors to response envelopes.

Every response, success or failure, has the same shape:

    {"data": {...}, "message": "...", "status": 200}

The controller knows nothing about HTTP frameworks; router.py mounts it on
FastAPI.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Generic, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import inspect as sa_inspect

from repokit.core.logging import get_logger
from repokit.repositories.base import DEFAULT_PAGE_SIZE, ModelType, SortDirection
from repokit.repositories.exceptions import (
    ConstraintError,
    InvalidQueryError,
    NotFoundError,
)
from repokit.repositories.query import PaginatedResult, QueryFacade

logger = get_logger(__name__)


class ControllerMessages(BaseModel):
    """Messages used in response envelopes; override per controller."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_created: str = "Data saved successfully."
    record_updated: str = "Data updated successfully."
    record_deleted: str = "Data deleted successfully."
    records_fetched: str = "Data fetched successfully."
    record_not_available: str = "No data available. Please check your request."
    internal_error: str = "Server issue, try after some time."


class Envelope(BaseModel):
    """Fixed response envelope."""

    data: Any = Field(default_factory=dict)
    message: str
    status: int


def serialize_record(record: Any) -> dict[str, Any]:
    """Column values of a loaded record; columns left out by a projection are skipped."""
    state = sa_inspect(record)
    return {
        attr.key: getattr(record, attr.key)
        for attr in state.mapper.column_attrs
        if attr.key not in state.unloaded
    }


def serialize_page(result: PaginatedResult[Any]) -> dict[str, Any]:
    return {
        "records": [serialize_record(record) for record in result.records],
        "current_page": result.current_page,
        "page_size": result.page_size,
        "total_count": result.total_count,
        "total_pages": result.total_pages,
    }


class ResourceController(Generic[ModelType]):
    """Thin dispatch over a QueryFacade.

    Error mapping:
        NotFoundError     -> 404, record_not_available message
        ConstraintError   -> 400, the repository's catalog message
        InvalidQueryError -> 400, the validation message
        anything else     -> 500, internal_error message (always logged)

    Args:
        facade: Facade serving the resource
        messages: ControllerMessages or mapping overriding entries
        log_errors: Also log expected (4xx) failures
    """

    def __init__(
        self,
        facade: QueryFacade[ModelType],
        *,
        messages: Union[ControllerMessages, Mapping[str, str], None] = None,
        log_errors: bool = False,
    ) -> None:
        if messages is None:
            messages = ControllerMessages()
        elif not isinstance(messages, ControllerMessages):
            messages = ControllerMessages(**messages)

        self._facade = facade
        self._messages = messages
        self._log_errors = log_errors
        self._logger = get_logger(
            f"{__name__}.{facade.repository.model.__name__}Controller"
        )

    @property
    def facade(self) -> QueryFacade[ModelType]:
        return self._facade

    def coerce_id(self, raw_id: Any) -> Any:
        """Convert a path identifier to the primary key's Python type."""
        model = self._facade.repository.model
        column = sa_inspect(model).columns[self._facade.primary_key_field()]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return raw_id

        if isinstance(raw_id, python_type):
            return raw_id
        try:
            return python_type(raw_id)
        except (TypeError, ValueError):
            raise InvalidQueryError(
                f"Invalid {self._facade.primary_key_field()}: {raw_id!r}"
            ) from None

    async def create(self, body: Mapping[str, Any]) -> Envelope:
        try:
            record = await self._facade.create(body)
        except Exception as e:
            return self._error(e, "create")
        return self._success({"record": serialize_record(record)}, 201, self._messages.record_created)

    async def update(self, raw_id: Any, body: Mapping[str, Any]) -> Envelope:
        try:
            record = await self._facade.update_by_id(self.coerce_id(raw_id), body)
        except Exception as e:
            return self._error(e, "update")
        return self._success({"record": serialize_record(record)}, 200, self._messages.record_updated)

    async def delete(self, raw_id: Any) -> Envelope:
        try:
            await self._facade.delete_by_id(self.coerce_id(raw_id))
        except Exception as e:
            return self._error(e, "delete")
        return self._success({}, 200, self._messages.record_deleted)

    async def get_by_id(self, raw_id: Any) -> Envelope:
        try:
            record = await self._facade.get_by_id(self.coerce_id(raw_id))
        except Exception as e:
            return self._error(e, "get_by_id")
        if record is None:
            return Envelope(message=self._messages.record_not_available, status=404)
        return self._success({"record": serialize_record(record)})

    async def get_all(self) -> Envelope:
        try:
            records = await self._facade.get_all()
        except Exception as e:
            return self._error(e, "get_all")
        return self._success({"records": [serialize_record(record) for record in records]})

    async def get_page(
        self,
        page: Any = 1,
        limit: Any = DEFAULT_PAGE_SIZE,
        order_by: Optional[str] = None,
        order_dir: Union[SortDirection, str] = SortDirection.DESC,
        search_by: str = "",
        search_columns: Union[Sequence[str], str, None] = None,
    ) -> Envelope:
        try:
            result = await self._facade.search_and_paginate(
                {},
                page,
                limit,
                None,
                order_by,
                order_dir,
                search_by,
                search_columns,
            )
        except Exception as e:
            return self._error(e, "get_page")
        return self._success(serialize_page(result))

    def _success(self, data: Any, status: int = 200, message: Optional[str] = None) -> Envelope:
        return Envelope(data=data, message=message or self._messages.records_fetched, status=status)

    def _error(self, error: Exception, operation: str) -> Envelope:
        if isinstance(error, NotFoundError):
            status, message = 404, self._messages.record_not_available
        elif isinstance(error, (ConstraintError, InvalidQueryError)):
            status, message = 400, str(error)
        else:
            self._logger.error(
                "Unhandled error while dispatching",
                operation=operation,
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
            )
            return Envelope(message=self._messages.internal_error, status=500)

        if self._log_errors:
            self._logger.warning(
                "Request rejected", operation=operation, status=status, error=str(error)
            )
        return Envelope(message=message, status=status)
