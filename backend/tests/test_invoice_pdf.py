"""Tests for invoice document layout and PDF rendering."""
from datetime import datetime
from decimal import Decimal

import pytest

import billing
from conftest import ACCOUNT_ID
from invoice_pdf import build_invoice_document, invoice_filename, render_invoice_pdf


@pytest.fixture
def invoice(test_session, make_client, make_project, make_entry, make_service):
    acme = make_client(name="Acme Corp")
    project = make_project(acme, title="Website Redesign", rate=Decimal("100.00"))
    e1 = make_entry(project, hours="3")
    e2 = make_entry(project, hours="1.5")
    service = make_service(name="Domain setup", fee="250.00")
    created = billing.create_invoice(test_session, ACCOUNT_ID, None, [e1.id, e2.id], [service.id])
    return billing.get_invoice(test_session, ACCOUNT_ID, created.id)


def test_document_time_entry_rows(invoice):
    document = build_invoice_document(invoice)

    assert document.time_rows == [
        ["Acme Corp", "Website Redesign", "3.00", "$100.00", "$300.00"],
        ["Acme Corp", "Website Redesign", "1.50", "$100.00", "$150.00"],
    ]


def test_document_service_rows(invoice):
    document = build_invoice_document(invoice)

    assert document.service_rows == [["Domain setup", "$250.00"]]


def test_document_totals_block(invoice):
    document = build_invoice_document(invoice)

    assert document.totals_rows == [
        ["Subtotal:", "$700.00"],
        ["Tax (6.25%):", "$43.75"],
        ["Total:", "$743.75"],
    ]


def test_document_header(invoice):
    invoice.date = datetime(2024, 1, 15, 9, 30)
    document = build_invoice_document(invoice)

    assert document.title == f"Invoice #{invoice.id}"
    assert document.date_line == "Date: Mon Jan 15 2024"


def test_empty_invoice_renders_zero_totals(test_session):
    created = billing.create_invoice(test_session, ACCOUNT_ID, None, [], [])
    invoice = billing.get_invoice(test_session, ACCOUNT_ID, created.id)

    document = build_invoice_document(invoice)
    pdf_bytes = render_invoice_pdf(invoice)

    assert document.time_rows == []
    assert document.service_rows == []
    assert [row[1] for row in document.totals_rows] == ["$0.00", "$0.00", "$0.00"]
    assert pdf_bytes.startswith(b"%PDF")


def test_render_produces_pdf(invoice):
    pdf_bytes = render_invoice_pdf(invoice)

    assert pdf_bytes.startswith(b"%PDF")
    assert pdf_bytes.rstrip().endswith(b"%%EOF")


def test_render_is_byte_for_byte_repeatable(invoice):
    assert render_invoice_pdf(invoice) == render_invoice_pdf(invoice)


def test_invoice_filename(invoice):
    assert invoice_filename(invoice) == f"invoice-{invoice.id}.pdf"
