"""
HTTP server implementation for Megamarket.

This module exposes the catalog service as a REST API:
- POST /imports: create or update a batch of offers and categories
- GET /nodes/{id}: a node with its derived price and its subtree
- DELETE /delete/{id}: remove a node and its subtree
- GET /sales: offers updated in the 24 hours before a date

Invariants:
    - Field names on the wire are camelCase (parentId, updateDate)
    - Timestamps must carry an offset on input and are UTC on output
    - A category without offers is rendered with price null
    - Errors are {"code": int, "message": str}

How to change safely:
    - Keep handlers thin; all tree rules live in CatalogService
    - Map every new core error type in create_app()
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import (
    AwareDatetime,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    field_serializer,
)
from pydantic import ValidationError as PydanticValidationError

from .._version import __version__
from ..catalog import MAX_PRICE, CatalogService, NodeInput, NodeView
from ..config import Settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..store import Node, NodeKind, NodeStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Megamarket"])


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as yyyy-MM-ddTHH:mm:ss.SSSZ in UTC."""
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


_ISO_TIMESTAMP = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})"
)


def _require_iso_timestamp(value: Any) -> Any:
    """Reject anything but an ISO 8601 string with an explicit offset."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not _ISO_TIMESTAMP.fullmatch(value):
        raise ValueError("expected ISO 8601 timestamp with offset")
    return value


IsoTimestamp = Annotated[AwareDatetime, BeforeValidator(_require_iso_timestamp)]

_iso_timestamp_adapter = TypeAdapter(IsoTimestamp)


# --- Request/Response Models ---


class ShopUnitImport(BaseModel):
    """One offer or category to import."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID = Field(..., description="Node identifier")
    name: str = Field(..., min_length=1, description="Node name")
    type: NodeKind = Field(..., description="OFFER or CATEGORY")
    price: int | None = Field(None, ge=1, le=MAX_PRICE, description="Price, offers only")
    parent_id: UUID | None = Field(None, alias="parentId", description="Parent category id")


class ShopUnitImportRequest(BaseModel):
    """Request to import a batch of nodes."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[ShopUnitImport] | None = Field(None, description="Imported nodes")
    update_date: IsoTimestamp = Field(..., alias="updateDate", description="Update time")


class ShopUnit(BaseModel):
    """Node response."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    name: str
    type: NodeKind
    price: int | None
    date: datetime
    parent_id: UUID | None = Field(None, alias="parentId")
    children: list[ShopUnit] | None = None

    @field_serializer("date")
    def serialize_date(self, value: datetime) -> str:
        return format_timestamp(value)


class ShopUnitList(BaseModel):
    """List of nodes."""

    items: list[ShopUnit]


class Error(BaseModel):
    """Error response."""

    code: int
    message: str


ShopUnit.model_rebuild()


def _unit_from_node(node: Node, price: int | None, children: list[ShopUnit] | None) -> ShopUnit:
    return ShopUnit(
        id=node.node_id,
        name=node.name,
        type=node.kind,
        price=price,
        date=node.last_modified,
        parent_id=node.parent_id,
        children=children,
    )


def _unit_from_view(root: NodeView) -> ShopUnit:
    """Convert a view tree without recursion, children before parents."""
    order: list[NodeView] = []
    stack = [root]
    while stack:
        view = stack.pop()
        order.append(view)
        stack.extend(view.children or [])

    units: dict[UUID, ShopUnit] = {}
    for view in reversed(order):
        children = None
        if view.children is not None:
            children = [units[child.node.node_id] for child in view.children]
        # No offers below: the price is undefined, not zero.
        price = view.price if view.offer_count else None
        units[view.node.node_id] = _unit_from_node(view.node, price, children)
    return units[root.node.node_id]


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        Error(code=status_code, message=message).model_dump(),
        status_code=status_code,
    )


# --- Dependencies ---


def get_service(request: Request) -> CatalogService:
    """Get catalog service from app state."""
    return request.app.state.service


def get_sales_date(
    date: str = Query(..., description="End of the 24h window, ISO 8601 with offset"),
) -> datetime:
    """Parse the ?date= query parameter with the same rules as updateDate."""
    try:
        return _iso_timestamp_adapter.validate_python(date)
    except PydanticValidationError as e:
        raise RequestValidationError(
            [{**error, "loc": ("query", "date", *error["loc"])} for error in e.errors()]
        ) from e


# --- Routes ---


@router.post("/imports", responses={400: {"model": Error}})
async def import_items(
    body: ShopUnitImportRequest,
    service: CatalogService = Depends(get_service),
) -> Response:
    """Import new offers and categories; known ids are updated."""
    items = [
        NodeInput(
            node_id=item.id,
            name=item.name,
            kind=item.type,
            price=item.price,
            parent_id=item.parent_id,
        )
        for item in body.items or []
    ]
    await service.import_batch(items, body.update_date)
    return Response(status_code=200)


@router.get(
    "/nodes/{node_id}",
    response_model=ShopUnit,
    responses={400: {"model": Error}, 404: {"model": Error}},
)
async def get_node(
    node_id: UUID,
    service: CatalogService = Depends(get_service),
) -> ShopUnit:
    """Get a node; categories include their whole subtree."""
    view = await service.get_by_id(node_id)
    return _unit_from_view(view)


@router.delete("/delete/{node_id}", responses={400: {"model": Error}, 404: {"model": Error}})
async def delete_node(
    node_id: UUID,
    service: CatalogService = Depends(get_service),
) -> Response:
    """Delete a node and all of its descendants."""
    await service.delete_by_id(node_id)
    return Response(status_code=200)


@router.get("/sales", response_model=ShopUnitList, responses={400: {"model": Error}})
async def get_sales(
    date: datetime = Depends(get_sales_date),
    service: CatalogService = Depends(get_service),
) -> ShopUnitList:
    """Get offers updated within [date - 24h, date]."""
    offers = await service.get_updated_offers(date)
    # Wrapped in {"items": [...]} per the Megamarket Open API, not a bare list.
    return ShopUnitList(items=[_unit_from_node(offer, offer.price, None) for offer in offers])


# --- Application ---


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the node store for the lifetime of the app."""
    settings: Settings = app.state.settings
    store = NodeStore(
        str(settings.db_path),
        wal_mode=settings.sqlite_wal_mode,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        cache_size_pages=settings.sqlite_cache_size_pages,
    )
    store.initialize()
    app.state.service = CatalogService(store)

    yield


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Megamarket Open API",
        description="Catalog of offers and categories with derived category prices.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(
            "Request validation failed",
            extra={"path": request.url.path, "errors": str(exc.errors())},
        )
        return _error_response(400, "Validation Failed")

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(400, "Validation Failed")

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, "Item not found")

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
        logger.warning("Write conflict", extra={"path": request.url.path, "error": exc.message})
        return _error_response(409, "Conflict")

    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "megamarket"}

    return app
