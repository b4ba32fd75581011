"""
Email notifications for workflow transitions.

``NotificationService.notify`` delivers one email synchronously and raises
``NotificationError`` on failure. The workflow never calls it directly on the
request path: it goes through ``NotificationDispatcher``, which hands the
delivery to a thread pool and only logs the outcome.

Providers:
- console: prints the email (development)
- smtp: stdlib smtplib, SSL on port 465, STARTTLS otherwise
"""
import contextvars
import smtplib
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Any, Dict, Optional

from carrental.domain.notifications import NotificationKind
from carrental.lib.logging import get_logger
from carrental.lib.metrics import MetricsCollector, get_metrics_collector
from carrental.lib.settings import settings


logger = get_logger(__name__)


class NotificationError(Exception):
    """Email could not be delivered."""


class EmailProvider(ABC):
    """
    Abstract base class for email delivery providers.
    """

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> bool:
        """
        Send one plain-text email.

        Returns:
            True if sent successfully, False otherwise
        """
        pass


class ConsoleEmailProvider(EmailProvider):
    """
    Console email provider for development/testing.
    Prints emails to stdout instead of sending them.
    """

    def send(self, to: str, subject: str, body: str) -> bool:
        print("\n" + "=" * 60)
        print(f"Email to {to}: {subject}")
        print(body)
        print("=" * 60 + "\n")
        logger.info("Email logged to console", extra={"extra_fields": {"to": to}})
        return True


class SmtpEmailProvider(EmailProvider):
    """
    SMTP email provider.
    Requires SMTP_USERNAME and SMTP_PASSWORD.
    """

    def __init__(self):
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    def send(self, to: str, subject: str, body: str) -> bool:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to

        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port) as server:
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    server.starttls()
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed: {e}", extra={"extra_fields": {"to": to}})
            return False

        logger.info("Email sent via SMTP", extra={"extra_fields": {"to": to}})
        return True


_SUBJECTS = {
    NotificationKind.BOOKING_CONFIRMED: "Booking {reference} confirmed",
    NotificationKind.BOOKING_CANCELLED: "Booking {reference} cancelled",
    NotificationKind.BOOKING_COMPLETED: "Booking {reference} completed",
    NotificationKind.AGENCY_APPROVED: "Your agency {agency_name} has been approved",
    NotificationKind.AGENCY_REJECTED: "Your agency application for {agency_name}",
    NotificationKind.AGENCY_REGISTERED: "New agency registration: {agency_name}",
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def compose_email(kind: NotificationKind, payload: Dict[str, Any]) -> tuple[str, str]:
    """Plain subject and body for a notification kind."""
    fields = {key: "" if value is None else value for key, value in payload.items()}
    subject = _SUBJECTS[kind].format_map(_Defaults(fields))

    name = fields.get("recipient_name")
    lines = [f"Hello {name}," if name else "Hello,", ""]

    if kind in (
        NotificationKind.BOOKING_CONFIRMED,
        NotificationKind.BOOKING_CANCELLED,
        NotificationKind.BOOKING_COMPLETED,
    ):
        verb = kind.value.split("_", 1)[1]
        lines.append(f"Your booking {fields.get('reference', '')} has been {verb}.")
        lines.append("")
        lines.append(f"Car: {fields.get('car_name', '')}")
        lines.append(f"Pickup: {fields.get('pickup_at', '')}")
        lines.append(f"Drop-off: {fields.get('dropoff_at', '')}")
        lines.append(f"Total: {fields.get('total_price', '')}")
        lines.append(f"Security deposit: {fields.get('deposit_amount', '')}")
    elif kind == NotificationKind.AGENCY_APPROVED:
        lines.append(f"{fields.get('agency_name', '')} is approved. Your cars can now be booked.")
    elif kind == NotificationKind.AGENCY_REJECTED:
        lines.append(f"Your application for {fields.get('agency_name', '')} was not approved.")
        if fields.get("reason"):
            lines.append(f"Reason: {fields['reason']}")
    elif kind == NotificationKind.AGENCY_REGISTERED:
        lines.append(f"{fields.get('agency_name', '')} registered and is waiting for review.")
        lines.append(f"Contact: {fields.get('contact_email', '')}")

    lines.extend(["", settings.app_base_url, "", f"{settings.smtp_from_name}"])
    return subject, "\n".join(lines)


class NotificationService:
    """
    Delivers workflow notifications through one email provider.
    """

    def __init__(self, provider: EmailProvider):
        self.provider = provider

    def notify(self, kind: NotificationKind, recipient_email: str, payload: Dict[str, Any]) -> None:
        """
        Compose and send one notification.

        Raises:
            NotificationError: if the provider fails or reports failure
        """
        subject, body = compose_email(NotificationKind(kind), payload)
        try:
            sent = self.provider.send(recipient_email, subject, body)
        except Exception as e:
            raise NotificationError(f"{kind} to {recipient_email} failed: {e}") from e
        if not sent:
            raise NotificationError(f"{kind} to {recipient_email} was not delivered")


class NotificationDispatcher:
    """
    Fire-and-forget wrapper around a notifier.

    ``dispatch`` submits the delivery and returns immediately. Failures are
    logged from a done-callback and never reach the caller.
    """

    def __init__(
        self,
        notifier,
        executor: Optional[Executor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.notifier = notifier
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.notification_workers,
            thread_name_prefix="notify",
        )
        self._metrics = metrics or get_metrics_collector()

    def dispatch(self, kind: NotificationKind, recipient_email: str, payload: Dict[str, Any]) -> Optional[Future]:
        # Carry the request's correlation id into the worker thread
        context = contextvars.copy_context()
        try:
            future = self._executor.submit(
                context.run, self.notifier.notify, kind, recipient_email, payload
            )
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Could not schedule {kind.value} notification: {e}")
            self._metrics.increment_notifications(kind.value, "failed")
            return None

        future.add_done_callback(lambda f: self._on_done(f, kind, recipient_email, context))
        return future

    def _on_done(self, future: Future, kind: NotificationKind, recipient_email: str, context) -> None:
        error = future.exception()
        if error is None:
            self._metrics.increment_notifications(kind.value, "sent")
            return

        self._metrics.increment_notifications(kind.value, "failed")
        context.run(
            logger.error,
            f"Notification {kind.value} failed: {error}",
            exc_info=(type(error), error, error.__traceback__),
            extra={"extra_fields": {"kind": kind.value, "recipient": recipient_email}},
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def get_email_provider() -> EmailProvider:
    """Email provider selected by ``settings.email_provider``."""
    provider_name = settings.email_provider.lower()

    if provider_name == "console":
        return ConsoleEmailProvider()
    if provider_name == "smtp":
        try:
            return SmtpEmailProvider()
        except ValueError as e:
            logger.warning(f"SMTP provider not available ({e}), falling back to console provider")
            return ConsoleEmailProvider()
    raise ValueError(
        f"Unknown email provider: {provider_name}. Valid options: console, smtp"
    )


def get_notification_service() -> NotificationService:
    return NotificationService(get_email_provider())


@lru_cache(maxsize=1)
def get_notification_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher sharing one thread pool."""
    return NotificationDispatcher(get_notification_service())

