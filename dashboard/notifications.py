import asyncio
import logging
from collections import deque
from typing import Callable, List, Optional
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from dashboard.config import settings
from dashboard.schemas import Notification

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Notifier = Callable[[Notification], None]

class ToastNotifier:
    """Keeps the most recent notifications for the dashboard to display."""
    def __init__(self, maxlen: int = 50):
        self._toasts = deque(maxlen=maxlen)

    def __call__(self, notification: Notification) -> None:
        log = logger.warning if notification.variant == "destructive" else logger.info
        log(f"{notification.title}: {notification.description}")
        self._toasts.appendleft(notification)

    def list(self) -> List[Notification]:
        return list(self._toasts)

    def clear(self) -> None:
        self._toasts.clear()

def send_email_notification(to_email: str, subject: str, content: str) -> Optional[int]:
    """
    Send an email notification using SendGrid.

    Parameters:
        to_email (str): The recipient's email address.
        subject (str): The subject for the email.
        content (str): The plain text content of the email.

    Returns:
        Optional[int]: The status code returned by the SendGrid API, or None
        when no API key is configured and the email is only logged.
    """
    if not settings.SENDGRID_API_KEY or not settings.FROM_EMAIL:
        logger.info(f"Simulating email to {to_email} with subject '{subject}'")
        return None
    message = Mail(
        from_email=settings.FROM_EMAIL,
        to_emails=to_email,
        subject=subject,
        plain_text_content=content,
    )
    try:
        sg = SendGridAPIClient(settings.SENDGRID_API_KEY)
        response = sg.send(message)
        logger.info(f"Email sent to {to_email} with status code {response.status_code}")
        return response.status_code
    except Exception as e:
        logger.error("Failed to send email", exc_info=True)
        raise e

def _log_send_failure(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.error(f"Email notification failed: {future.exception()}")

class EmailNotifier:
    """Emails the outcome of each run; notifications without a run id are skipped."""
    def __init__(self, to_email: str):
        self.to_email = to_email

    def __call__(self, notification: Notification) -> None:
        if notification.run_id is None:
            return
        subject = f"{notification.title} (run {notification.run_id})"
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            send_email_notification(self.to_email, subject, notification.description)
            return
        # SendGrid is blocking, keep it off the event loop
        future = loop.run_in_executor(None, send_email_notification, self.to_email, subject, notification.description)
        future.add_done_callback(_log_send_failure)

def fan_out(*notifiers: Notifier) -> Notifier:
    """Combine several notifiers into one callback."""
    def notify(notification: Notification) -> None:
        for notifier in notifiers:
            notifier(notification)
    return notify
