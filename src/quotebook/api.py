"""FastAPI REST API for quotebook order management."""

import logging
import threading
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .errors import (
    AlreadyNumberedError,
    ConflictError,
    HierarchyError,
    InvalidSchemaVersionError,
    InvalidStateError,
    OrderNotFoundError,
    QuotebookError,
    ValidationError,
)
from .models import Order
from .order_store import JsonOrderStore
from .quotes import QuoteAggregate
from .settings import Settings

log = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class LineItemRequest(BaseModel):
    """Line as sent by the portal. Ranges are checked by the domain model."""

    description: str
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None  # identifier ("square_meters") or label ("kvm")
    unit_price: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None


class LineItemUpdateRequest(BaseModel):
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None


class LineItemSchema(BaseModel):
    description: str
    quantity: str
    unit: str
    unit_label: str
    unit_price: str
    discount_percent: str
    line_total: str


class OrderSchema(BaseModel):
    id: str
    customer_id: str
    contact_person_id: Optional[str] = None
    parent_order_id: Optional[str] = None
    order_number: Optional[str] = None
    sub_number: Optional[int] = None
    full_order_number: Optional[str] = None
    is_extra_work: bool
    state: str
    lines: list[LineItemSchema]
    valid_until: str
    vat_rate: str
    total: str
    vat_amount: str
    total_incl_vat: str
    title: Optional[str] = None
    notes: Optional[str] = None
    version: int
    superseded_by: Optional[str] = None
    created_at: str
    updated_at: str
    confirmed_at: Optional[str] = None


class OrderCreateRequest(BaseModel):
    """Request body for creating a draft order."""

    customer_id: str
    contact_person_id: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    valid_until: Optional[date] = None
    parent_order_id: Optional[str] = Field(
        default=None, description="Create the draft as extra work under this order"
    )
    lines: list[LineItemRequest] = Field(default_factory=list)


class ExtraWorkCreateRequest(BaseModel):
    """Request body for creating extra work under an order."""

    title: Optional[str] = None
    notes: Optional[str] = None
    contact_person_id: Optional[str] = None
    lines: list[LineItemRequest] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int


class SupersedeResponse(BaseModel):
    superseded: OrderSchema
    replacement: OrderSchema


class OrderSummarySchema(BaseModel):
    order_id: str
    full_order_number: Optional[str] = None
    revenue_main: str
    revenue_extra: str
    revenue: str
    extra_work_count: int
    extra_work_numbers: list[str]


class BackfillRequest(BaseModel):
    skip_drafts: bool = Field(default=False, description="Leave drafts unnumbered")


class BackfillResponse(BaseModel):
    orders: list[OrderSchema]
    count: int


class HierarchyCheckResponse(BaseModel):
    ok: bool
    problems: list[str]


class ContactCreateRequest(BaseModel):
    customer_id: str
    name: str
    email: Optional[str] = None


class ContactSchema(BaseModel):
    id: str
    customer_id: str
    name: str
    email: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    error_type: str
    field: Optional[str] = None


# --- Helper Functions ---


# One aggregate per data directory, so every request shares its numbering locks
_aggregates: dict[Path, QuoteAggregate] = {}
_aggregates_lock = threading.Lock()


def get_aggregate() -> QuoteAggregate:
    """Get the QuoteAggregate for the configured data directory."""
    settings = Settings.from_env()
    with _aggregates_lock:
        aggregate = _aggregates.get(settings.data_dir)
        if aggregate is None:
            store = JsonOrderStore(settings.data_dir)
            aggregate = QuoteAggregate(store, store, settings=settings)
            _aggregates[settings.data_dir] = aggregate
        return aggregate


def order_to_schema(order: Order) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema."""
    return OrderSchema(**QuoteAggregate.to_record(order))


def _line_payload(line: LineItemRequest) -> dict:
    return line.model_dump(exclude_none=True)


app = FastAPI(
    title="quotebook API",
    description="REST API for quotes, order numbering and extra work",
    version=__version__,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes; subclasses inherit their base's code
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    OrderNotFoundError: 404,
    HierarchyError: 422,
    ConflictError: 409,
    AlreadyNumberedError: 409,
    InvalidStateError: 409,
    InvalidSchemaVersionError: 500,
}


def _status_for(exc: QuotebookError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(QuotebookError)
async def quotebook_error_handler(request: Request, exc: QuotebookError) -> JSONResponse:
    """Map QuotebookError subclasses to appropriate HTTP responses."""
    status_code = _status_for(exc)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content["field"] = exc.field
    if isinstance(exc, HierarchyError) and exc.problems:
        content["problems"] = exc.problems
    if status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=content)


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """
    Health check endpoint.

    Reports whether the order store can be read.
    """
    try:
        orders = get_aggregate().list_orders()
        return {"status": "ok", "order_count": len(orders)}
    except QuotebookError as e:
        return {"status": "error", "detail": str(e)}


# --- Order Endpoints ---


@app.post("/api/orders", response_model=OrderSchema, status_code=201)
def create_order(request: OrderCreateRequest):
    """Create a draft order (or draft extra work when parent_order_id is set)."""
    aggregate = get_aggregate()
    order = aggregate.create_draft(
        request.customer_id,
        request.contact_person_id,
        title=request.title,
        notes=request.notes,
        valid_until=request.valid_until,
        parent_order_id=request.parent_order_id,
        lines=[_line_payload(line) for line in request.lines],
    )
    return order_to_schema(order)


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
def get_order(order_id: str):
    return order_to_schema(get_aggregate().get(order_id))


@app.get("/api/customers/{customer_id}/orders", response_model=OrderListResponse)
def list_customer_orders(customer_id: str):
    """List a customer's orders in creation order."""
    orders = get_aggregate().list_orders(customer_id)
    return OrderListResponse(orders=[order_to_schema(o) for o in orders], count=len(orders))


@app.post("/api/orders/{order_id}/lines", response_model=OrderSchema, status_code=201)
def add_order_line(order_id: str, request: LineItemRequest):
    aggregate = get_aggregate()
    order = aggregate.get(order_id)
    aggregate.add_line(order, _line_payload(request))
    return order_to_schema(aggregate.save(order))


@app.patch("/api/orders/{order_id}/lines/{index}", response_model=OrderSchema)
def update_order_line(order_id: str, index: int, request: LineItemUpdateRequest):
    """Update the given fields of one line; other fields keep their values."""
    aggregate = get_aggregate()
    order = aggregate.get(order_id)
    aggregate.update_line(order, index, request.model_dump(exclude_unset=True))
    return order_to_schema(aggregate.save(order))


@app.delete("/api/orders/{order_id}/lines/{index}", response_model=OrderSchema)
def remove_order_line(order_id: str, index: int):
    aggregate = get_aggregate()
    order = aggregate.get(order_id)
    aggregate.remove_line(order, index)
    return order_to_schema(aggregate.save(order))


@app.post("/api/orders/{order_id}/confirm", response_model=OrderSchema)
def confirm_order(order_id: str):
    """Assign the order number (or sub-number for extra work)."""
    aggregate = get_aggregate()
    return order_to_schema(aggregate.confirm(aggregate.get(order_id)))


@app.post("/api/orders/{order_id}/extra-work", response_model=OrderSchema, status_code=201)
def create_extra_work(order_id: str, request: ExtraWorkCreateRequest):
    """Create draft extra work under a numbered order."""
    order = get_aggregate().create_extra_work(
        order_id,
        title=request.title,
        notes=request.notes,
        contact_person_id=request.contact_person_id,
        lines=[_line_payload(line) for line in request.lines],
    )
    return order_to_schema(order)


@app.post("/api/orders/{order_id}/supersede", response_model=SupersedeResponse)
def supersede_order(order_id: str):
    """Retire a numbered order and return its replacement draft."""
    aggregate = get_aggregate()
    order = aggregate.get(order_id)
    replacement = aggregate.supersede(order)
    return SupersedeResponse(
        superseded=order_to_schema(order),
        replacement=order_to_schema(replacement),
    )


@app.post("/api/orders/{order_id}/cancel", response_model=OrderSchema)
def cancel_order(order_id: str):
    aggregate = get_aggregate()
    return order_to_schema(aggregate.cancel(aggregate.get(order_id)))


@app.delete("/api/orders/{order_id}", response_model=OrderSchema)
def delete_order(order_id: str):
    """Delete a draft. Numbered orders and orders with extra work are kept."""
    return order_to_schema(get_aggregate().delete(order_id))


@app.get("/api/orders/{order_id}/summary", response_model=OrderSummarySchema)
def get_order_summary(order_id: str):
    """Revenue of an order and its extra work."""
    return OrderSummarySchema(**get_aggregate().summary(order_id).to_dict())


# --- Maintenance Endpoints ---


@app.post("/api/maintenance/backfill", response_model=BackfillResponse)
def backfill_numbers(request: BackfillRequest):
    """Number legacy records that lack an order number."""
    changed = get_aggregate().backfill(skip_drafts=request.skip_drafts)
    return BackfillResponse(orders=[order_to_schema(o) for o in changed], count=len(changed))


@app.get("/api/maintenance/hierarchy", response_model=HierarchyCheckResponse)
def check_hierarchy():
    problems = get_aggregate().check_hierarchy()
    return HierarchyCheckResponse(ok=not problems, problems=problems)


# --- Contact Endpoints ---


@app.post("/api/contacts", response_model=ContactSchema, status_code=201)
def create_contact(request: ContactCreateRequest):
    contact = get_aggregate().add_contact(request.customer_id, request.name, request.email)
    return ContactSchema(**contact.to_dict())
