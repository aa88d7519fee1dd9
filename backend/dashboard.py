"""Account dashboard figures: unbilled work, outstanding invoices, revenue."""
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from billing import owned_entries_query
from models import Client, Invoice, InvoiceStatus, Project, TimeEntry
from totals import line_total, round2


def month_bounds(today: date) -> tuple[datetime, datetime]:
    """Start of this calendar month and start of the next one."""
    start = datetime(today.year, today.month, 1, tzinfo=UTC)
    if today.month == 12:
        end = datetime(today.year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(today.year, today.month + 1, 1, tzinfo=UTC)
    return start, end


def dashboard_metrics(session: Session, account_id: int, today: date | None = None) -> dict:
    """
    Key figures for the account.

    - unbilled_hours / unbilled_amount: time entries not yet on an invoice
    - outstanding_invoices / outstanding_amount: invoices not yet paid
    - revenue_this_month: paid invoices dated in the current calendar month
    """
    today = today or datetime.now(UTC).date()

    unbilled = session.exec(owned_entries_query(account_id).where(TimeEntry.billed == False)).all()  # noqa: E712
    unbilled_hours = sum((e.hours for e in unbilled), Decimal("0"))
    unbilled_amount = sum((line_total(e.hours, e.project.effective_rate) for e in unbilled), Decimal("0"))

    outstanding_count, outstanding_amount = session.exec(
        select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.amount), 0)).where(
            Invoice.user_id == account_id, Invoice.status != InvoiceStatus.PAID
        )
    ).one()

    start, end = month_bounds(today)
    revenue = session.exec(
        select(func.coalesce(func.sum(Invoice.amount), 0)).where(
            Invoice.user_id == account_id,
            Invoice.status == InvoiceStatus.PAID,
            Invoice.date >= start,
            Invoice.date < end,
        )
    ).one()

    return {
        "unbilled_hours": unbilled_hours,
        "unbilled_amount": round2(unbilled_amount),
        "outstanding_invoices": outstanding_count,
        "outstanding_amount": round2(Decimal(str(outstanding_amount))),
        "revenue_this_month": round2(Decimal(str(revenue))),
    }


def activity_metrics(session: Session, account_id: int, today: date | None = None) -> dict:
    """Hours logged over the last week, pending invoices and upcoming deadlines."""
    today = today or datetime.now(UTC).date()
    week_ago = today - timedelta(days=7)
    in_7_days = today + timedelta(days=7)

    hours = session.exec(
        select(func.coalesce(func.sum(TimeEntry.hours), 0))
        .join(Project, TimeEntry.project_id == Project.id)
        .join(Client, Project.client_id == Client.id)
        .where(Client.user_id == account_id, TimeEntry.date >= week_ago)
    ).one()

    pending = session.exec(
        select(func.count(Invoice.id)).where(
            Invoice.user_id == account_id, Invoice.status == InvoiceStatus.PENDING
        )
    ).one()

    upcoming = session.exec(
        select(func.count(Project.id))
        .join(Client, Project.client_id == Client.id)
        .where(
            Client.user_id == account_id,
            Project.completed == False,  # noqa: E712
            Project.due_date >= today,
            Project.due_date <= in_7_days,
        )
    ).one()

    return {
        "hours_this_week": round2(Decimal(str(hours))),
        "pending_invoices": pending,
        "upcoming_deadlines": upcoming,
    }
