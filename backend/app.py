import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

import billing
from auth import get_account_id
from dashboard import activity_metrics, dashboard_metrics
from db import create_db_and_tables, engine, get_session
from delivery import send_email, send_invoice
from errors import BillingError, ConflictError, PersistenceError
from invoice_pdf import invoice_filename, render_invoice_pdf
from models import Client, Invoice, InvoiceEntryLink, InvoiceServiceLink, Project, Service, TimeEntry
from schemas import (
    BillableItemsResponse,
    ClientCreate,
    ClientResponse,
    DashboardResponse,
    InvoiceCreate,
    InvoiceDetailResponse,
    InvoiceStatusUpdate,
    InvoiceSummary,
    MetricsResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    SendInvoiceResponse,
    ServiceCreate,
    ServiceResponse,
    TimeEntryCreate,
    TimeEntryResponse,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_mail_transport():
    """Mail transport used for invoice delivery (overridden in tests)."""
    return send_email


def commit_or_fail(session: Session, action: str):
    """Commit the session, turning database errors into PersistenceError."""
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error trying to {action}: {str(e)}")
        raise PersistenceError(f"Could not {action}") from e


def project_row(project: Project) -> dict:
    return {
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "rate": project.rate,
        "due_date": project.due_date,
        "completed": project.completed,
        "completed_at": project.completed_at,
        "client": project.client,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    create_db_and_tables()

    try:
        from migrations.migrate_001_backfill_project_completed import migrate as migrate_001

        migrate_001(engine)
    except Exception as e:
        # Don't raise - allow app to start, but log the error clearly
        logger.error(f"Migration 001 failed: {str(e)}")

    try:
        from migrations.migrate_002_snapshot_invoice_line_prices import migrate as migrate_002

        migrate_002(engine)
    except Exception as e:
        logger.error(f"Migration 002 failed: {str(e)}")

    logger.info("Database initialized")
    yield


# Create FastAPI app
app = FastAPI(title="Freelancer Billing API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# --- Clients -----------------------------------------------------------------


@app.get("/clients", response_model=list[ClientResponse])
def list_clients(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """List all clients for the account, ordered by name."""
    return session.exec(select(Client).where(Client.user_id == account_id).order_by(Client.name)).all()


@app.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    request: ClientCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Create a new client for the account."""
    client = Client(user_id=account_id, name=request.name, contact=request.contact)
    session.add(client)
    commit_or_fail(session, "create client")
    session.refresh(client)
    logger.info(f"Created client {client.id} for account {account_id}")
    return client


@app.put("/clients/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: int,
    request: ClientCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Update an existing client (only if it belongs to the account)."""
    client = billing.get_client(session, account_id, client_id)
    client.name = request.name
    client.contact = request.contact
    session.add(client)
    commit_or_fail(session, "update client")
    session.refresh(client)
    return client


@app.delete("/clients/{client_id}", status_code=204)
def delete_client(
    client_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Delete a client that has no projects or invoices left."""
    client = billing.get_client(session, account_id, client_id)
    if session.exec(select(Project).where(Project.client_id == client.id)).first():
        raise ConflictError("Client still has projects")
    if session.exec(select(Invoice).where(Invoice.client_id == client.id)).first():
        raise ConflictError("Client still has invoices")
    session.delete(client)
    commit_or_fail(session, "delete client")
    logger.info(f"Deleted client {client_id}")
    return Response(status_code=204)


# --- Projects ----------------------------------------------------------------


@app.get("/projects", response_model=list[ProjectResponse])
def list_projects(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """List all projects, active first, then by due date."""
    projects = session.exec(
        select(Project)
        .join(Client, Project.client_id == Client.id)
        .where(Client.user_id == account_id)
        .order_by(Project.completed, Project.due_date.is_(None), Project.due_date, Project.id)
    ).all()
    return [project_row(p) for p in projects]


@app.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    request: ProjectCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Create a new project under an existing client."""
    client = billing.get_client(session, account_id, request.client_id)
    project = Project(
        client_id=client.id,
        title=request.title,
        description=request.description,
        rate=request.rate,
        due_date=request.due_date,
    )
    session.add(project)
    commit_or_fail(session, "create project")
    session.refresh(project)
    logger.info(f"Created project {project.id} for client {client.id}")
    return project_row(project)


@app.put("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: int,
    request: ProjectUpdate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Update an existing project (only if it belongs to the account)."""
    project = billing.get_project(session, account_id, project_id)
    changes = request.model_dump(exclude_unset=True)
    if changes.get("client_id") is not None:
        # Moving a project requires owning the target client too
        billing.get_client(session, account_id, changes["client_id"])
        if changes["client_id"] != project.client_id and session.exec(
            select(TimeEntry).where(TimeEntry.project_id == project.id, TimeEntry.billed == True)  # noqa: E712
        ).first():
            raise ConflictError("Project has invoiced time entries and cannot move to another client")
    elif "client_id" in changes:
        del changes["client_id"]
    if "title" in changes and changes["title"] is None:
        del changes["title"]

    for key, value in changes.items():
        setattr(project, key, value)
    session.add(project)
    commit_or_fail(session, "update project")
    session.refresh(project)
    return project_row(project)


def set_project_completion(session: Session, project: Project, completed: bool) -> Project:
    """Set the completion flag and its timestamp together."""
    project.completed = completed
    project.completed_at = datetime.now(UTC) if completed else None
    session.add(project)
    commit_or_fail(session, "complete project" if completed else "reactivate project")
    session.refresh(project)
    return project


@app.patch("/projects/{project_id}/complete", response_model=ProjectResponse)
def complete_project(
    project_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Mark a project as completed."""
    project = billing.get_project(session, account_id, project_id)
    return project_row(set_project_completion(session, project, True))


@app.patch("/projects/{project_id}/reactivate", response_model=ProjectResponse)
def reactivate_project(
    project_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Unmark a project as completed."""
    project = billing.get_project(session, account_id, project_id)
    return project_row(set_project_completion(session, project, False))


@app.delete("/projects/{project_id}", status_code=204)
def delete_project(
    project_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Delete a project that has no time entries left."""
    project = billing.get_project(session, account_id, project_id)
    if session.exec(select(TimeEntry).where(TimeEntry.project_id == project.id)).first():
        raise ConflictError("Project still has time entries")
    session.delete(project)
    commit_or_fail(session, "delete project")
    logger.info(f"Deleted project {project_id}")
    return Response(status_code=204)


# --- Time entries ------------------------------------------------------------


@app.get("/time-entries", response_model=list[TimeEntryResponse])
def list_time_entries(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """List all time entries for the account, newest first."""
    entries = session.exec(
        billing.owned_entries_query(account_id).order_by(TimeEntry.date.desc(), TimeEntry.id.desc())
    ).all()
    return [billing.time_entry_row(e) for e in entries]


@app.post("/time-entries", response_model=TimeEntryResponse, status_code=201)
def create_time_entry(
    request: TimeEntryCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Create a new time entry under a project owned by the account."""
    project = billing.get_project(session, account_id, request.project_id)
    entry = TimeEntry(
        project_id=project.id,
        date=request.date,
        hours=request.hours,
        description=request.description,
    )
    session.add(entry)
    commit_or_fail(session, "create time entry")
    logger.info(f"Created time entry {entry.id} on project {project.id}")
    return billing.time_entry_row(billing.get_time_entry(session, account_id, entry.id))


@app.delete("/time-entries/{entry_id}", status_code=204)
def delete_time_entry(
    entry_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Delete a time entry unless it already appears on an invoice."""
    entry = billing.get_time_entry(session, account_id, entry_id)
    linked = session.exec(select(InvoiceEntryLink).where(InvoiceEntryLink.time_entry_id == entry.id)).first()
    if linked:
        raise ConflictError(f"Time entry is on invoice {linked.invoice_id}")
    session.delete(entry)
    commit_or_fail(session, "delete time entry")
    logger.info(f"Deleted time entry {entry_id}")
    return Response(status_code=204)


# --- Services ----------------------------------------------------------------


@app.get("/services", response_model=list[ServiceResponse])
def list_services(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """List all services for the account, newest first."""
    return session.exec(
        select(Service).where(Service.user_id == account_id).order_by(Service.created_at.desc(), Service.id.desc())
    ).all()


@app.post("/services", response_model=ServiceResponse, status_code=201)
def create_service(
    request: ServiceCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Create a new one-time service for the account."""
    service = Service(user_id=account_id, name=request.name, description=request.description, fee=request.fee)
    session.add(service)
    commit_or_fail(session, "create service")
    session.refresh(service)
    return service


@app.put("/services/{service_id}", response_model=ServiceResponse)
def update_service(
    service_id: int,
    request: ServiceCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Update an existing service."""
    service = billing.get_service(session, account_id, service_id)
    service.name = request.name
    service.description = request.description
    service.fee = request.fee
    session.add(service)
    commit_or_fail(session, "update service")
    session.refresh(service)
    return service


@app.delete("/services/{service_id}", status_code=204)
def delete_service(
    service_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Delete a service unless an invoice references it."""
    service = billing.get_service(session, account_id, service_id)
    linked = session.exec(select(InvoiceServiceLink).where(InvoiceServiceLink.service_id == service.id)).first()
    if linked:
        raise ConflictError(f"Service is on invoice {linked.invoice_id}")
    session.delete(service)
    commit_or_fail(session, "delete service")
    return Response(status_code=204)


# --- Invoices ----------------------------------------------------------------


@app.get("/invoices", response_model=list[InvoiceSummary])
def list_invoices(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """List invoices for the account, newest first."""
    return [billing.invoice_summary(i) for i in billing.list_invoices(session, account_id)]


@app.get("/invoices/billable", response_model=BillableItemsResponse)
def list_billable_items(
    client_id: int | None = Query(None, description="Only time entries for this client"),
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Unbilled time entries and all services that can go on a new invoice."""
    return billing.list_billable_items(session, account_id, client_id)


@app.post("/invoices", response_model=InvoiceDetailResponse, status_code=201)
def create_invoice(
    request: InvoiceCreate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Create an invoice from selected time entries and services."""
    invoice = billing.create_invoice(
        session,
        account_id,
        request.client_id,
        request.time_entry_ids,
        request.service_ids,
    )
    return billing.invoice_detail(billing.get_invoice(session, account_id, invoice.id))


@app.get("/invoices/{invoice_id}", response_model=InvoiceDetailResponse)
def get_invoice(
    invoice_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Fetch an invoice with all line items resolved."""
    return billing.invoice_detail(billing.get_invoice(session, account_id, invoice_id))


@app.get("/invoices/{invoice_id}/pdf")
def download_invoice_pdf(
    invoice_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Render an invoice as a downloadable PDF."""
    invoice = billing.get_invoice(session, account_id, invoice_id)
    pdf_bytes = render_invoice_pdf(invoice)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={invoice_filename(invoice)}"},
    )


@app.post("/invoices/{invoice_id}/send", response_model=SendInvoiceResponse)
def send_invoice_email(
    invoice_id: int,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
    transport=Depends(get_mail_transport),
):
    """Email the invoice PDF to the client's contact address."""
    logger.info(f"Send invoice {invoice_id} requested by account {account_id}")
    result = send_invoice(session, account_id, invoice_id, transport=transport)
    return {"ok": True, "message": f"Invoice emailed to {result.recipient}", "recipient": result.recipient}


@app.patch("/invoices/{invoice_id}/status", response_model=InvoiceSummary)
def update_invoice_status(
    invoice_id: int,
    request: InvoiceStatusUpdate,
    account_id: int = Depends(get_account_id),
    session: Session = Depends(get_session),
):
    """Mark an invoice as paid or back to pending."""
    invoice = billing.update_invoice_status(session, account_id, invoice_id, request.status)
    return billing.invoice_summary(invoice)


# --- Dashboard ---------------------------------------------------------------


@app.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """Unbilled work, outstanding invoices and this month's revenue."""
    return dashboard_metrics(session, account_id)


@app.get("/metrics", response_model=MetricsResponse)
def get_metrics(account_id: int = Depends(get_account_id), session: Session = Depends(get_session)):
    """Hours this week, pending invoices and upcoming deadlines."""
    return activity_metrics(session, account_id)


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Freelancer Billing API", "docs": "/docs"}
