import datetime as dt
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel, UniqueConstraint


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Client(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)  # Owning account holder
    name: str
    contact: str | None = Field(default=None)  # Email address invoices are sent to
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    projects: list["Project"] = Relationship(back_populates="client")


class Project(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    client_id: int = Field(foreign_key="client.id", index=True)
    title: str
    description: str | None = Field(default=None)
    rate: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)
    due_date: dt.date | None = Field(default=None, index=True)
    # completed and completed_at always change together
    completed: bool = Field(default=False, index=True)
    completed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    client: Optional["Client"] = Relationship(back_populates="projects")
    time_entries: list["TimeEntry"] = Relationship(back_populates="project")

    @property
    def effective_rate(self) -> Decimal:
        return self.rate if self.rate is not None else Decimal("0")


class TimeEntry(SQLModel, table=True):
    __tablename__ = "time_entry"

    id: int | None = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    date: dt.date = Field(index=True)
    hours: Decimal = Field(max_digits=8, decimal_places=2)
    description: str | None = Field(default=None)
    billed: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    project: Optional["Project"] = Relationship(back_populates="time_entries")
    invoice_links: list["InvoiceEntryLink"] = Relationship(back_populates="time_entry")


class Service(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    name: str
    description: str | None = Field(default=None)
    fee: Decimal = Field(max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    invoice_links: list["InvoiceServiceLink"] = Relationship(back_populates="service")


class Invoice(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    client_id: int | None = Field(default=None, foreign_key="client.id", index=True)
    date: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING, index=True)
    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    client: Optional["Client"] = Relationship()
    entry_links: list["InvoiceEntryLink"] = Relationship(back_populates="invoice")
    service_links: list["InvoiceServiceLink"] = Relationship(back_populates="invoice")


class InvoiceEntryLink(SQLModel, table=True):
    __tablename__ = "invoice_entry"
    __table_args__ = (UniqueConstraint("time_entry_id", name="uniq_invoice_entry_time_entry"),)

    id: int | None = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="invoice.id", index=True)
    time_entry_id: int = Field(foreign_key="time_entry.id")
    # Rate charged when the invoice was created
    rate: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    invoice: Optional["Invoice"] = Relationship(back_populates="entry_links")
    time_entry: Optional["TimeEntry"] = Relationship(back_populates="invoice_links")


class InvoiceServiceLink(SQLModel, table=True):
    __tablename__ = "invoice_service"

    id: int | None = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="invoice.id", index=True)
    service_id: int = Field(foreign_key="service.id", index=True)
    fee: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    invoice: Optional["Invoice"] = Relationship(back_populates="service_links")
    service: Optional["Service"] = Relationship(back_populates="invoice_links")
