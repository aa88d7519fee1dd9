"""Invoice pipeline: billable items, invoice creation and invoice lookup."""
import logging
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from errors import InvalidSelectionError, NotFoundError, PersistenceError
from models import (
    Client,
    Invoice,
    InvoiceEntryLink,
    InvoiceServiceLink,
    InvoiceStatus,
    Project,
    Service,
    TimeEntry,
)
from totals import InvoiceTotals, calculate_totals, line_total, round2

logger = logging.getLogger(__name__)


def owned_entries_query(account_id: int):
    """Select time entries whose project's client belongs to the account."""
    return (
        select(TimeEntry)
        .join(Project, TimeEntry.project_id == Project.id)
        .join(Client, Project.client_id == Client.id)
        .where(Client.user_id == account_id)
        .options(selectinload(TimeEntry.project).selectinload(Project.client))
    )


def get_client(session: Session, account_id: int, client_id: int) -> Client:
    client = session.exec(
        select(Client).where(Client.id == client_id, Client.user_id == account_id)
    ).first()
    if not client:
        raise NotFoundError("Client not found")
    return client


def get_project(session: Session, account_id: int, project_id: int) -> Project:
    project = session.exec(
        select(Project)
        .join(Client, Project.client_id == Client.id)
        .where(Project.id == project_id, Client.user_id == account_id)
    ).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def get_time_entry(session: Session, account_id: int, entry_id: int) -> TimeEntry:
    entry = session.exec(owned_entries_query(account_id).where(TimeEntry.id == entry_id)).first()
    if not entry:
        raise NotFoundError("Time entry not found")
    return entry


def get_service(session: Session, account_id: int, service_id: int) -> Service:
    service = session.exec(
        select(Service).where(Service.id == service_id, Service.user_id == account_id)
    ).first()
    if not service:
        raise NotFoundError("Service not found")
    return service


def time_entry_row(entry: TimeEntry) -> dict:
    """Flatten a time entry with its project, client and effective rate."""
    project = entry.project
    rate = project.effective_rate
    return {
        "id": entry.id,
        "date": entry.date,
        "hours": entry.hours,
        "description": entry.description,
        "billed": entry.billed,
        "project_id": project.id,
        "project_title": project.title,
        "client_id": project.client.id,
        "client_name": project.client.name,
        "rate": rate,
        "line_total": line_total(entry.hours, rate),
    }


def service_row(service: Service) -> dict:
    return {
        "id": service.id,
        "name": service.name,
        "description": service.description,
        "fee": service.fee,
    }


def list_billable_items(session: Session, account_id: int, client_id: int | None = None) -> dict:
    """List what can go on a new invoice.

    Time entries are limited to unbilled ones (optionally for one client).
    Services have no billed flag, so every service of the account is
    returned every time. An unknown client simply yields no time entries.
    """
    stmt = owned_entries_query(account_id).where(TimeEntry.billed == False)  # noqa: E712
    if client_id is not None:
        stmt = stmt.where(Project.client_id == client_id)
    entries = session.exec(stmt.order_by(TimeEntry.date, TimeEntry.id)).all()

    services = session.exec(
        select(Service).where(Service.user_id == account_id).order_by(Service.created_at.desc(), Service.id.desc())
    ).all()

    return {
        "time_entries": [time_entry_row(e) for e in entries],
        "services": [service_row(s) for s in services],
    }


def _load_selected_entries(session: Session, account_id: int, entry_ids: list[int]) -> list[TimeEntry]:
    if not entry_ids:
        return []
    found = session.exec(owned_entries_query(account_id).where(TimeEntry.id.in_(entry_ids))).all()
    by_id = {e.id: e for e in found}
    missing = [i for i in entry_ids if i not in by_id]
    if missing:
        raise InvalidSelectionError(f"Time entries not found: {missing}")
    billed = [i for i in entry_ids if by_id[i].billed]
    if billed:
        raise InvalidSelectionError(f"Time entries already billed: {billed}")
    return [by_id[i] for i in entry_ids]


def _load_selected_services(session: Session, account_id: int, service_ids: list[int]) -> list[Service]:
    if not service_ids:
        return []
    found = session.exec(
        select(Service).where(Service.id.in_(service_ids), Service.user_id == account_id)
    ).all()
    by_id = {s.id: s for s in found}
    missing = [i for i in service_ids if i not in by_id]
    if missing:
        raise InvalidSelectionError(f"Services not found: {missing}")
    return [by_id[i] for i in service_ids]


def _resolve_invoice_client(
    session: Session, account_id: int, client_id: int | None, entries: list[TimeEntry]
) -> int | None:
    """Pick the single client an invoice is addressed to."""
    entry_clients = {e.project.client_id for e in entries}
    if client_id is not None:
        get_client(session, account_id, client_id)
        foreign = sorted(entry_clients - {client_id})
        if foreign:
            raise InvalidSelectionError(f"Time entries belong to other clients: {foreign}")
        return client_id
    if len(entry_clients) > 1:
        raise InvalidSelectionError("Time entries on one invoice must belong to a single client")
    return next(iter(entry_clients), None)


def totals_for_selection(entries: list[TimeEntry], services: list[Service]) -> InvoiceTotals:
    return calculate_totals(
        [(e.hours, e.project.effective_rate) for e in entries],
        [s.fee for s in services],
    )


def totals_for_invoice(invoice: Invoice) -> InvoiceTotals:
    """Recompute totals from an invoice's line items.

    Rates and fees come from the line links, as charged at creation, so
    later edits to a project rate or a service fee leave old invoices alone.
    """
    return calculate_totals(
        [(link.time_entry.hours, link.rate) for link in invoice.entry_links],
        [link.fee for link in invoice.service_links],
    )


def invoiced_entry_row(link: InvoiceEntryLink) -> dict:
    row = time_entry_row(link.time_entry)
    row["rate"] = link.rate
    row["line_total"] = line_total(link.time_entry.hours, link.rate)
    return row


def invoiced_service_row(link: InvoiceServiceLink) -> dict:
    row = service_row(link.service)
    row["fee"] = link.fee
    return row


def _is_duplicate_line(error: IntegrityError) -> bool:
    message = str(error.orig)
    return "uniq_invoice_entry_time_entry" in message or "invoice_entry.time_entry_id" in message


def create_invoice(
    session: Session,
    account_id: int,
    client_id: int | None,
    time_entry_ids: list[int],
    service_ids: list[int],
) -> Invoice:
    """Create an invoice from a selection of time entries and services.

    The invoice row, its line links and the billed flag on every selected
    time entry are written in a single transaction. Each line link keeps the
    rate or fee charged. Losing a race for a time entry to another invoice
    raises InvalidSelectionError; any other database failure rolls
    everything back and raises PersistenceError.
    """
    time_entry_ids = list(dict.fromkeys(time_entry_ids))
    service_ids = list(dict.fromkeys(service_ids))
    logger.info(
        f"Create invoice request for account {account_id}: "
        f"{len(time_entry_ids)} time entries, {len(service_ids)} services"
    )

    entries = _load_selected_entries(session, account_id, time_entry_ids)
    services = _load_selected_services(session, account_id, service_ids)
    invoice_client_id = _resolve_invoice_client(session, account_id, client_id, entries)
    totals = totals_for_selection(entries, services)

    try:
        invoice = Invoice(
            user_id=account_id,
            client_id=invoice_client_id,
            date=datetime.now(UTC),
            status=InvoiceStatus.PENDING,
            amount=round2(totals.total),
        )
        session.add(invoice)
        session.flush()

        for entry in entries:
            session.add(
                InvoiceEntryLink(invoice_id=invoice.id, time_entry_id=entry.id, rate=entry.project.effective_rate)
            )
        for service in services:
            session.add(InvoiceServiceLink(invoice_id=invoice.id, service_id=service.id, fee=service.fee))
        session.flush()

        if entries:
            # Only flip rows still unbilled; a concurrent invoice that got
            # there first leaves the count short.
            result = session.exec(
                update(TimeEntry)
                .where(TimeEntry.id.in_(time_entry_ids), TimeEntry.billed == False)  # noqa: E712
                .values(billed=True)
            )
            if result.rowcount != len(entries):
                session.rollback()
                raise InvalidSelectionError("Some time entries were billed by another invoice")

        session.commit()
    except IntegrityError as e:
        session.rollback()
        if not _is_duplicate_line(e):
            logger.error(f"Error creating invoice for account {account_id}: {str(e)}")
            raise PersistenceError("Could not create invoice") from e
        logger.warning(f"Invoice for account {account_id} lost a race for its time entries")
        raise InvalidSelectionError("Some time entries are already on another invoice") from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error creating invoice for account {account_id}: {str(e)}")
        raise PersistenceError("Could not create invoice") from e

    session.refresh(invoice)
    logger.info(f"Created invoice {invoice.id} for account {account_id}, amount {invoice.amount}")
    return invoice


def get_invoice(session: Session, account_id: int, invoice_id: int) -> Invoice:
    """Fetch an invoice with all line items loaded."""
    invoice = session.exec(
        select(Invoice)
        .where(Invoice.id == invoice_id, Invoice.user_id == account_id)
        .options(
            selectinload(Invoice.client),
            selectinload(Invoice.entry_links)
            .selectinload(InvoiceEntryLink.time_entry)
            .selectinload(TimeEntry.project)
            .selectinload(Project.client),
            selectinload(Invoice.service_links).selectinload(InvoiceServiceLink.service),
        )
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(session: Session, account_id: int) -> list[Invoice]:
    return session.exec(
        select(Invoice)
        .where(Invoice.user_id == account_id)
        .options(selectinload(Invoice.client))
        .order_by(Invoice.date.desc(), Invoice.id.desc())
    ).all()


def invoice_summary(invoice: Invoice) -> dict:
    return {
        "id": invoice.id,
        "date": invoice.date,
        "status": invoice.status,
        "amount": invoice.amount,
        "client_id": invoice.client_id,
        "client_name": invoice.client.name if invoice.client else None,
    }


def invoice_detail(invoice: Invoice) -> dict:
    """Invoice with resolved line items and recomputed totals."""
    totals = totals_for_invoice(invoice).rounded()
    detail = invoice_summary(invoice)
    detail.update(
        {
            "time_entries": [invoiced_entry_row(link) for link in invoice.entry_links],
            "services": [invoiced_service_row(link) for link in invoice.service_links],
            "totals": {"subtotal": totals.subtotal, "tax": totals.tax, "total": totals.total},
        }
    )
    return detail


def update_invoice_status(
    session: Session, account_id: int, invoice_id: int, status: InvoiceStatus
) -> Invoice:
    invoice = get_invoice(session, account_id, invoice_id)
    invoice.status = InvoiceStatus(status)
    try:
        session.add(invoice)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError("Could not update invoice status") from e
    session.refresh(invoice)
    logger.info(f"Invoice {invoice_id} marked {invoice.status.value}")
    return invoice
