import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from models import InvoiceStatus


def _strip_required(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("must not be empty")
    return v.strip()


def _blank_to_none(v: str | None) -> str | None:
    if v is None or not v.strip():
        return None
    return v.strip()


class ClientCreate(BaseModel):
    name: str
    contact: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v)

    @field_validator("contact")
    @classmethod
    def validate_contact(cls, v):
        v = _blank_to_none(v)
        if v is not None and "@" not in v:
            raise ValueError("Contact must be an email address")
        return v


class ClientResponse(BaseModel):
    id: int
    name: str
    contact: str | None = None


class ProjectCreate(BaseModel):
    title: str
    description: str | None = None
    rate: Decimal | None = Field(default=None, ge=0)
    due_date: dt.date | None = None
    client_id: int

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        return _strip_required(v)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        return _blank_to_none(v)


class ProjectUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    rate: Decimal | None = Field(default=None, ge=0)
    due_date: dt.date | None = None
    client_id: int | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        return None if v is None else _strip_required(v)


class ProjectResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    rate: Decimal | None = None
    due_date: dt.date | None = None
    completed: bool
    completed_at: dt.datetime | None = None
    client: ClientResponse


class TimeEntryCreate(BaseModel):
    project_id: int
    date: dt.date
    hours: Decimal = Field(ge=0)
    description: str | None = None

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        return _blank_to_none(v)


class TimeEntryResponse(BaseModel):
    id: int
    date: dt.date
    hours: Decimal
    description: str | None = None
    billed: bool
    project_id: int
    project_title: str
    client_id: int
    client_name: str
    rate: Decimal
    line_total: Decimal


class ServiceCreate(BaseModel):
    name: str
    description: str | None = None
    fee: Decimal = Field(ge=0)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        return _blank_to_none(v)


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    fee: Decimal


class BillableItemsResponse(BaseModel):
    time_entries: list[TimeEntryResponse]
    services: list[ServiceResponse]


class InvoiceCreate(BaseModel):
    client_id: int | None = None
    time_entry_ids: list[int] = []
    service_ids: list[int] = []

    @field_validator("time_entry_ids", "service_ids")
    @classmethod
    def dedupe_ids(cls, v):
        # Keep first occurrence, preserve order
        return list(dict.fromkeys(v))


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        # Accept "PAID", " Paid " etc. and normalize to the enum value
        if isinstance(v, str):
            return v.strip().lower()
        return v


class TotalsResponse(BaseModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class InvoiceSummary(BaseModel):
    id: int
    date: dt.datetime
    status: InvoiceStatus
    amount: Decimal
    client_id: int | None = None
    client_name: str | None = None


class InvoiceDetailResponse(InvoiceSummary):
    time_entries: list[TimeEntryResponse]
    services: list[ServiceResponse]
    totals: TotalsResponse


class SendInvoiceResponse(BaseModel):
    ok: bool
    message: str
    recipient: str


class DashboardResponse(BaseModel):
    unbilled_hours: Decimal
    unbilled_amount: Decimal
    outstanding_invoices: int
    outstanding_amount: Decimal
    revenue_this_month: Decimal


class MetricsResponse(BaseModel):
    hours_this_week: Decimal
    pending_invoices: int
    upcoming_deadlines: int
