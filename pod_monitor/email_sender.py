import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import (
    EMAIL_PASSWORD,
    EMAIL_SMTP_PORT,
    EMAIL_SMTP_SERVER,
    EMAIL_USE_TLS,
    EMAIL_USERNAME,
)

log = logging.getLogger("PodMonitor.EmailSender")


async def send_email_notification(recipients: list[str], subject: str, html_content: str) -> bool:
    if not recipients:
        log.warning("No email recipients specified. Skipping email notification.")
        return False

    if not EMAIL_USERNAME or not EMAIL_PASSWORD:
        log.error("SMTP credentials are not configured. Cannot send email.")
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = EMAIL_USERNAME
    message["To"] = ", ".join(recipients)
    message.attach(MIMEText(html_content, "html"))

    try:
        await asyncio.to_thread(_send_smtp_email, message, recipients)
        log.info(f"Sent email to {', '.join(recipients)}")
        return True
    except Exception as e:
        log.error(f"Failed to send email: {e}", exc_info=True)
        return False


def _send_smtp_email(message: MIMEMultipart, recipients: list[str]):
    context = ssl.create_default_context()
    if EMAIL_USE_TLS:
        server = smtplib.SMTP(EMAIL_SMTP_SERVER, EMAIL_SMTP_PORT)
        server.starttls(context=context)
    else:
        server = smtplib.SMTP_SSL(EMAIL_SMTP_SERVER, EMAIL_SMTP_PORT, context=context)
    try:
        server.login(EMAIL_USERNAME, EMAIL_PASSWORD)
        server.sendmail(EMAIL_USERNAME, recipients, message.as_string())
    finally:
        server.quit()
