"""
Outbound booking email.

Delivery goes through Resend. Every dispatch is bounded by
``settings.notification_timeout_seconds``; callers get back a
:class:`DispatchResult` instead of an exception so that a failed email never
fails the booking operation that triggered it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from html import escape
from typing import Any, Dict, Optional

import resend

from config import Settings, settings
from errors import DependencyError

logger = logging.getLogger(__name__)

# Shared pool so that a slow provider cannot pile up request threads
_email_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="email_")


@dataclass
class DispatchResult:
    sent: bool
    warning: Optional[str] = None


class EmailNotifier:
    """Sends booking confirmations and review links."""

    def __init__(self, config: Settings = settings) -> None:
        self.api_key = config.resend_api_key
        self.from_email = config.from_email
        self.timeout = config.notification_timeout_seconds

    def send_email(self, to_email: str, subject: str, html_content: str) -> Dict[str, Any]:
        if not self.api_key:
            raise DependencyError("Email delivery is not configured", "EmailNotConfigured")
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(
                {
                    "from": self.from_email,
                    "to": [to_email],
                    "subject": subject,
                    "html": html_content,
                }
            )
        except Exception as e:
            raise DependencyError(f"Email provider error: {e}", "EmailSendFailed") from e
        logger.info("Email sent to %s - Subject: %s", to_email, subject)
        return response

    def dispatch(self, to_email: str, subject: str, html_content: str) -> DispatchResult:
        """Send without ever raising; wait at most ``self.timeout`` seconds."""
        future = _email_executor.submit(self.send_email, to_email, subject, html_content)
        try:
            future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning("Email to %s timed out after %ss", to_email, self.timeout)
            return DispatchResult(sent=False, warning="Email notification timed out")
        except DependencyError as e:
            logger.warning("Email to %s failed: %s", to_email, e.message)
            return DispatchResult(sent=False, warning=e.message)
        return DispatchResult(sent=True)

    def booking_confirmation(self, booking: Dict[str, Any], home: Dict[str, Any]) -> DispatchResult:
        html = (
            f"<p>Hi {escape(booking['client_name'])},</p>"
            f"<p>Your booking at <strong>{escape(home['name'])}</strong> ({escape(home['location'])}) is confirmed "
            f"from {booking['check_in']:%Y-%m-%d} to {booking['check_out']:%Y-%m-%d}.</p>"
            f"<p>Total price: {booking['total_price']:.2f}</p>"
            f"<p>After your stay, tell us how it went: "
            f"<a href=\"{escape(booking['review_link'])}\">leave a review</a>.</p>"
        )
        return self.dispatch(booking["client_email"], f"Booking confirmed: {home['name']}", html)

    def review_link(self, booking: Dict[str, Any], home: Dict[str, Any]) -> DispatchResult:
        html = (
            f"<p>Hi {escape(booking['client_name'])},</p>"
            f"<p>Thanks for staying at <strong>{escape(home['name'])}</strong>. "
            f"<a href=\"{escape(booking['review_link'])}\">Leave a review</a>.</p>"
        )
        return self.dispatch(booking["client_email"], f"How was your stay at {home['name']}?", html)


def get_notifier() -> EmailNotifier:
    return EmailNotifier(settings)
