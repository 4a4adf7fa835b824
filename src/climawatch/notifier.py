from urllib.parse import quote

import apprise
import structlog

from climawatch.config import Settings
from climawatch.errors import DeliveryError
from climawatch.models import AlertEvent, AlertKind

logger = structlog.get_logger("Notifier")


def render_alert(event: AlertEvent) -> tuple[str, str]:
    """Subject and body for an alert email."""
    subject = f"Weather Alert for {event.city}"
    if event.kind is AlertKind.TEMP:
        body = (
            f"The temperature in {event.city} has exceeded the threshold "
            f"of {event.limit:g}°C: {event.value:.2f}°C."
        )
    else:
        body = f"The AQI in {event.city} has exceeded the threshold of {event.limit:g}: {event.value:g}."
    return subject, body


class Notifier:
    """Delivers alert emails through Apprise."""

    def __init__(self, settings: Settings) -> None:
        self.smtp_server = settings.smtp_server
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = (
            settings.smtp_password.get_secret_value() if settings.smtp_password else None
        )
        self.sender = settings.sender_email or settings.smtp_user
        self.extra_urls = list(settings.apprise_urls)

        if not self.smtp_user or not self.smtp_password:
            logger.warning("smtp_not_configured")

    def _mail_url(self, recipient: str) -> str | None:
        if not self.smtp_user or not self.smtp_password:
            return None
        # mailtos:// for implicit SSL (465), mailto:// (STARTTLS) otherwise
        scheme = "mailtos" if self.smtp_port == 465 else "mailto"
        user = quote(self.smtp_user, safe="")
        password = quote(self.smtp_password, safe="")
        url = f"{scheme}://{user}:{password}@{self.smtp_server}:{self.smtp_port}/?to={quote(recipient)}"
        if self.sender:
            url += f"&from={quote(self.sender)}"
        return url

    def _build(self, recipient: str) -> apprise.Apprise:
        apobj = apprise.Apprise()
        urls = [u for u in [self._mail_url(recipient), *self.extra_urls] if u]
        for url in urls:
            if not apobj.add(url):
                masked_url = url.split("@")[-1] if "@" in url else "..."
                logger.error("notification_url_rejected", url=f"...@{masked_url}")
        return apobj

    def send(self, recipient: str, subject: str, body: str) -> None:
        """Send one message. Raises DeliveryError when nothing was delivered."""
        apobj = self._build(recipient)
        if len(apobj) == 0:
            raise DeliveryError("No notification backend configured")

        try:
            status = bool(apobj.notify(body=body, title=f"[ClimaWatch] {subject}"))
        except Exception as e:
            raise DeliveryError(f"Error sending notification: {e}") from e

        if not status:
            raise DeliveryError(f"Failed to send notification: {subject}")
        logger.info("notification_sent", subject=subject)

    def send_alert(self, event: AlertEvent) -> None:
        subject, body = render_alert(event)
        self.send(event.email, subject, body)
