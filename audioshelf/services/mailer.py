# services/mailer.py
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from audioshelf.settings.config import settings

logger = logging.getLogger(__name__)


def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """
    Send an email over SMTP, or only log it when EMAIL_TRANSPORT=dummy.
    Blocking; call through background.run_sync from async code.
    """
    transport = (settings.EMAIL_TRANSPORT or "smtp").lower()

    if transport == "dummy":
        logger.info("DUMMY EMAIL to=%s subject=%r\n%s", to_email, subject, text_body)
        return True

    from_addr = (settings.SMTP_FROM or settings.SMTP_USERNAME or "").strip()
    # Gmail enforces From to match the authenticated account; push branded address into Reply-To
    if settings.SMTP_USERNAME and from_addr and from_addr.lower() != settings.SMTP_USERNAME.lower():
        if not reply_to:
            reply_to = from_addr
        from_addr = settings.SMTP_USERNAME

    msg = MIMEMultipart("alternative")
    msg["From"] = from_addr
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.attach(MIMEText(text_body or "", "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT or 587)
    try:
        if settings.SMTP_USE_SSL:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=30) as s:
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        else:
            with smtplib.SMTP(host, port, timeout=30) as s:
                s.ehlo()
                if settings.SMTP_USE_TLS:
                    s.starttls(context=ssl.create_default_context())
                    s.ehlo()
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("send_email: delivery to %s failed", to_email)
        return False


__all__ = ["send_email"]
