# utils/alerts.py
import logging
import os
import smtplib
from email.message import EmailMessage
from dotenv import load_dotenv

load_dotenv()

SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
ALERT_EMAIL = os.getenv("ALERT_EMAIL")
FROM_EMAIL = os.getenv("FROM_EMAIL")

logger = logging.getLogger("alerts")


def build_message(subject, body, html=None, attachments=None):
    """
    Assemble a plain-text email with an optional HTML alternative and files.

    Attachments that cannot be read are logged and left out.
    """
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"Vine Monitor <{FROM_EMAIL}>" if FROM_EMAIL else "Vine Monitor"
    msg["To"] = ALERT_EMAIL or ""
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    for file_path in attachments or []:
        try:
            with open(file_path, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.error(f"Failed to attach {file_path}: {e}")
            continue
        msg.add_attachment(
            data,
            maintype="application",
            subtype="octet-stream",
            filename=os.path.basename(file_path),
        )
    return msg


def send_alert(subject, body, html=None, attachments=None):
    """
    Send an email alert.

    Uses implicit TLS on port 465 and STARTTLS elsewhere when the server
    offers it. SMTP errors propagate to the caller.

    Args:
        subject (str): Email subject line
        body (str): Plain-text body
        html (str, optional): HTML alternative body
        attachments (list, optional): File paths to attach
    """
    msg = build_message(subject, body, html, attachments)

    if SMTP_PORT == 465:
        with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
            if SMTP_USER and SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg)
            return

    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        if SMTP_USER and SMTP_PASS:
            server.login(SMTP_USER, SMTP_PASS)
        server.send_message(msg)
