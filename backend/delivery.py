"""Email delivery of rendered invoices."""
import logging
import os
import smtplib
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, List, Tuple

from sqlmodel import Session

from billing import get_invoice
from errors import InvalidSelectionError, NoContactError, TransportError
from invoice_pdf import invoice_filename, render_invoice_pdf
from models import Client, Invoice

logger = logging.getLogger(__name__)

# (filename, content, mime subtype)
Attachment = Tuple[str, bytes, str]
MailTransport = Callable[..., bool]


@dataclass
class DeliveryResult:
    recipient: str
    subject: str
    filename: str


def send_email(
    subject: str,
    body: str,
    recipients: List[str],
    attachments: List[Attachment] | None = None,
    smtp_server: str = None,
    smtp_port: int = None,
    smtp_user: str = None,
    smtp_password: str = None,
    from_email: str = None,
) -> bool:
    """
    Send a plain text email with optional attachments over SMTP.

    All connection parameters fall back to environment variables.
    Any SMTP or socket failure is raised as TransportError.
    """
    smtp_server = smtp_server or os.getenv("SMTP_SERVER", "localhost")
    smtp_port = smtp_port or int(os.getenv("SMTP_PORT", "587"))
    smtp_user = smtp_user or os.getenv("SMTP_USER")
    smtp_password = smtp_password or os.getenv("SMTP_PASSWORD")
    from_email = from_email or os.getenv("FROM_EMAIL", "no-reply@example.com")

    if not recipients:
        raise ValueError("At least one recipient email address is required")
    if smtp_user and not smtp_password:
        raise TransportError(f"SMTP_PASSWORD environment variable not set. Current SMTP_USER: {smtp_user}")

    logger.info(f"Creating email message. From: {from_email}, To: {recipients}")
    msg = MIMEMultipart()
    msg["Subject"] = subject
    msg["From"] = from_email
    msg["To"] = ", ".join(recipients)
    msg.attach(MIMEText(body, "plain"))

    for filename, content, subtype in attachments or []:
        part = MIMEApplication(content, _subtype=subtype)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    try:
        logger.info(f"Connecting to SMTP server: {smtp_server}:{smtp_port}")
        # Port 465 speaks SSL from the first byte, everything else upgrades with STARTTLS
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port, timeout=10)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port, timeout=10)
        with server:
            if smtp_port != 465:
                logger.info("Starting TLS...")
                server.starttls()
            if smtp_user:
                logger.info("Attempting login...")
                server.login(smtp_user, smtp_password)
            server.send_message(msg)
            logger.info("Message sent successfully")
        return True
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {str(e)}")
        raise TransportError(f"SMTP authentication failed. Check your SMTP_PASSWORD. Error: {str(e)}") from e
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email: {str(e)}")
        raise TransportError(f"Failed to send email: {str(e)}") from e


def resolve_recipient(invoice: Invoice) -> Client:
    """Find the client an invoice is delivered to.

    The client recorded on the invoice wins. Older invoices without one fall
    back to the clients of their time entries, which must be exactly one.
    """
    if invoice.client is not None:
        return invoice.client

    clients = {link.time_entry.project.client.id: link.time_entry.project.client for link in invoice.entry_links}
    if len(clients) > 1:
        raise InvalidSelectionError(
            f"Invoice {invoice.id} has time entries for several clients: {sorted(clients)}"
        )
    if not clients:
        raise NoContactError(f"Invoice {invoice.id} has no client to send to")
    return next(iter(clients.values()))


def send_invoice(
    session: Session,
    account_id: int,
    invoice_id: int,
    transport: MailTransport = send_email,
) -> DeliveryResult:
    """Email an invoice PDF to its client's contact address.

    Nothing on the invoice changes, whether or not the send succeeds, so a
    failed delivery can simply be retried by the caller.
    """
    invoice = get_invoice(session, account_id, invoice_id)
    client = resolve_recipient(invoice)
    if not client.contact:
        raise NoContactError(f"Client {client.name} has no contact email")

    pdf_bytes = render_invoice_pdf(invoice)
    filename = invoice_filename(invoice)
    subject = f"Invoice #{invoice.id}"
    body = f"Hello {client.name},\n\nPlease find attached your invoice #{invoice.id}.\n\nThanks!"

    logger.info(f"Sending invoice {invoice.id} to {client.contact}")
    transport(subject, body, [client.contact], attachments=[(filename, pdf_bytes, "pdf")])

    return DeliveryResult(recipient=client.contact, subject=subject, filename=filename)
