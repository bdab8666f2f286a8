import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from app.config import settings
from app.services.omnibridge.errors import PermanentOutboundError, TransientOutboundError

logger = logging.getLogger(__name__)


def default_smtp_config() -> dict:
    return {
        "host": settings.smtp_host,
        "port": settings.smtp_port,
        "username": settings.smtp_username,
        "password": settings.smtp_password,
        "use_tls": settings.smtp_use_tls,
        "use_ssl": settings.smtp_use_ssl,
        "from_email": settings.smtp_from_email,
        "from_name": settings.smtp_from_name,
    }


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: float | None = None):
    timeout_value = float(timeout) if timeout is not None else settings.smtp_timeout
    if use_ssl:
        return smtplib.SMTP_SSL(host, port, timeout=timeout_value)
    return smtplib.SMTP(host, port, timeout=timeout_value)


def _build_email_message(
    subject: str,
    from_name: str,
    from_email: str,
    to_email: str,
    body_text: str,
    body_html: str | None = None,
    reply_to: str | None = None,
    in_reply_to: str | None = None,
    references: str | None = None,
    extra_headers: dict[str, str] | None = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_email))
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid(domain=from_email.rsplit("@", 1)[-1] if "@" in from_email else None)
    if reply_to:
        msg["Reply-To"] = reply_to
    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
    if references:
        msg["References"] = references
    for name, value in (extra_headers or {}).items():
        msg[name] = value

    msg.attach(MIMEText(body_text, "plain", "utf-8"))
    if body_html is None:
        body_html = "<p>" + html.escape(body_text).replace("\n", "<br>") + "</p>"
    msg.attach(MIMEText(body_html, "html", "utf-8"))
    return msg


def classify_smtp_error(exc: Exception) -> Exception:
    """Map an SMTP failure onto the outbound retry taxonomy."""
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return PermanentOutboundError(f"SMTP authentication failed: {exc}")
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        return PermanentOutboundError(f"SMTP recipient refused: {exc}")
    if isinstance(exc, smtplib.SMTPResponseException):
        if 400 <= exc.smtp_code < 500:
            return TransientOutboundError(f"SMTP {exc.smtp_code}: {exc.smtp_error!r}")
        return PermanentOutboundError(f"SMTP {exc.smtp_code}: {exc.smtp_error!r}")
    # smtplib errors subclass OSError; whatever is left is connection trouble.
    if isinstance(exc, OSError):
        return TransientOutboundError(f"SMTP connection error: {exc}")
    return PermanentOutboundError(str(exc))


def send_email_with_config(
    config: dict,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
    reply_to: str | None = None,
    in_reply_to: str | None = None,
    references: str | None = None,
    extra_headers: dict[str, str] | None = None,
) -> str:
    """Send one email and return its Message-ID.

    Raises ``TransientOutboundError`` or ``PermanentOutboundError``.
    """
    from_email = str(config.get("from_email") or config.get("username") or settings.smtp_from_email)
    msg = _build_email_message(
        subject=subject,
        from_name=config.get("from_name") or settings.smtp_from_name,
        from_email=from_email,
        to_email=to_email,
        body_text=body_text,
        body_html=body_html,
        reply_to=reply_to,
        in_reply_to=in_reply_to,
        references=references,
        extra_headers=extra_headers,
    )

    host = str(config.get("host") or "localhost")
    port = int(config.get("port") or 587)
    try:
        server = _create_smtp_client(host, port, bool(config.get("use_ssl")), config.get("timeout"))
        try:
            if config.get("use_tls") and not config.get("use_ssl"):
                server.starttls()
            username = config.get("username")
            password = config.get("password")
            if username and password:
                server.login(username, password)
            refused = server.sendmail(from_email, [to_email], msg.as_string())
        finally:
            try:
                server.quit()
            except smtplib.SMTPException:
                logger.debug("SMTP quit failed for %s", host)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("smtp_send_failed host=%s to=%s error=%s", host, to_email, exc)
        raise classify_smtp_error(exc) from exc

    if refused:
        raise PermanentOutboundError(f"SMTP refused recipients: {refused}")
    return str(msg["Message-ID"])
