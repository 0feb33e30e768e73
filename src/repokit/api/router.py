"""FastAPI router exposing a ResourceController."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from repokit.api.controller import Envelope, ResourceController


def _respond(envelope: Envelope) -> JSONResponse:
    return JSONResponse(status_code=envelope.status, content=jsonable_encoder(envelope))


def build_router(
    controller: ResourceController[Any],
    *,
    prefix: str = "",
    tags: Optional[list[str]] = None,
) -> APIRouter:
    """Build the standard CRUD routes for one resource.

    Routes:
        POST   /            create
        GET    /            list every record
        GET    /page        paginated, searchable list
        GET    /{record_id} fetch one record
        PUT    /{record_id} update one record
        DELETE /{record_id} delete one record

    Paging parameters are taken as text so malformed values reach the
    facade's validation and come back as a 400 envelope.

    Example:
        app.include_router(build_router(users_controller, prefix="/users", tags=["users"]))
    """
    router = APIRouter(prefix=prefix, tags=tags or [])

    @router.post("/")
    async def create_record(body: dict[str, Any] = Body(...)) -> JSONResponse:
        return _respond(await controller.create(body))

    @router.get("/")
    async def list_records() -> JSONResponse:
        return _respond(await controller.get_all())

    @router.get("/page")
    async def list_page(
        page: str = "1",
        limit: str = "10",
        order_by: Optional[str] = None,
        order_dir: str = "DESC",
        search_by: str = "",
        search_columns: Optional[list[str]] = Query(default=None),
    ) -> JSONResponse:
        # ?search_columns=["a","b"] and ?search_columns=a,b arrive as one item
        columns: Any = search_columns
        if search_columns and len(search_columns) == 1:
            columns = search_columns[0]
        return _respond(
            await controller.get_page(page, limit, order_by, order_dir, search_by, columns)
        )

    @router.get("/{record_id}")
    async def get_record(record_id: str) -> JSONResponse:
        return _respond(await controller.get_by_id(record_id))

    @router.put("/{record_id}")
    async def update_record(record_id: str, body: dict[str, Any] = Body(...)) -> JSONResponse:
        return _respond(await controller.update(record_id, body))

    @router.delete("/{record_id}")
    async def delete_record(record_id: str) -> JSONResponse:
        return _respond(await controller.delete(record_id))

    return router
