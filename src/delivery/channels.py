"""Channel senders for alert delivery.

Provides an ABC for channel senders plus one implementation per channel
(site notification, email digest, WhatsApp, tzintuk). A CircuitBreaker
decorator wraps any sender to stop hammering a provider that keeps
failing.

Senders receive one release slice (alert, jobs oldest first, contact
target) and return True on delivery. Transport failures propagate as
exceptions so the router can record the error text.

Pattern: Decorator (CircuitBreaker wraps any ChannelSender).
"""

import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.alerts.schemas import AlertPreference
from src.delivery.formatting import (
    build_digest_payload,
    format_whatsapp_text,
)
from src.delivery.notifications import NotificationRepository, SiteNotification
from src.delivery.templates import digest_subject, render_job_alert_digest
from src.delivery.transports import (
    ResendEmailTransport,
    WhatsAppTransport,
    YemotTzintukTransport,
)
from src.jobs.schemas import Job

logger = logging.getLogger(__name__)


class ChannelSendError(Exception):
    """A sender refused or failed to deliver."""


@dataclass
class DeliveryPayload:
    """What one channel delivers for one release."""

    alert: AlertPreference
    jobs: list[Job]
    recipient: str


class ChannelSender(ABC):
    """Abstract base for delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel name (``site``, ``email``, ``whatsapp``, ``tzintuk``)."""

    @abstractmethod
    async def send(self, payload: DeliveryPayload) -> bool:
        """Deliver a release slice through this channel.

        Args:
            payload: Alert, jobs and contact target.

        Returns:
            True if delivery succeeded, False otherwise.
        """


class SiteNotificationSender(ChannelSender):
    """Writes one in-app ``job_alert_match`` notification per job."""

    def __init__(self, repository: NotificationRepository) -> None:
        self._repo = repository

    @property
    def name(self) -> str:
        return "site"

    async def send(self, payload: DeliveryPayload) -> bool:
        alert = payload.alert
        for job in payload.jobs:
            await self._repo.create(SiteNotification(
                notification_id=SiteNotification.match_id(alert.alert_id, job.job_id),
                user_id=payload.recipient,
                title=f"משרה חדשה בהתראת '{alert.name}'",
                message=f'"{job.title}" באזור {job.area}.',
                link=f"#/job/{job.job_id}",
            ))
        return True


class EmailDigestSender(ChannelSender):
    """Renders one RTL digest per release and sends it through Resend."""

    def __init__(
        self,
        transport: ResendEmailTransport,
        base_url: str,
        timezone_name: str = "Asia/Jerusalem",
    ) -> None:
        self._transport = transport
        self._base_url = base_url
        self._tz = timezone_name

    @property
    def name(self) -> str:
        return "email"

    async def send(self, payload: DeliveryPayload) -> bool:
        digest = build_digest_payload(
            payload.alert.owner_name, payload.alert.name, payload.jobs, self._tz,
        )
        html = render_job_alert_digest(digest, base_url=self._base_url)
        message_id = await self._transport.send_email(
            payload.recipient, digest_subject(len(payload.jobs)), html,
        )
        logger.debug(
            "Digest for alert %s sent to %s (id=%s)",
            payload.alert.alert_id, payload.recipient, message_id,
        )
        return True


class WhatsAppSender(ChannelSender):
    """Sends a short text digest through the WhatsApp Cloud API."""

    def __init__(self, transport: WhatsAppTransport, base_url: str) -> None:
        self._transport = transport
        self._base_url = base_url

    @property
    def name(self) -> str:
        return "whatsapp"

    async def send(self, payload: DeliveryPayload) -> bool:
        text = format_whatsapp_text(
            payload.alert.owner_name, payload.alert.name, payload.jobs, self._base_url,
        )
        await self._transport.send_text(payload.recipient, text)
        return True


class TzintukSender(ChannelSender):
    """Places one outbound tzintuk call per release."""

    def __init__(self, transport: YemotTzintukTransport) -> None:
        self._transport = transport

    @property
    def name(self) -> str:
        return "tzintuk"

    async def send(self, payload: DeliveryPayload) -> bool:
        await self._transport.run_tzintuk(payload.recipient)
        return True


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(ChannelSender):
    """Wraps a ChannelSender with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All sends pass through. Consecutive failures (False or an
      exception) are tracked.
    - OPEN: Sends rejected with ChannelSendError. After recovery_timeout,
      moves to HALF_OPEN.
    - HALF_OPEN: Single trial send allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        sender: ChannelSender,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._sender = sender
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._sender.name

    @property
    def state(self) -> CircuitState:
        return self._state

    async def send(self, payload: DeliveryPayload) -> bool:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery trial)",
                    self.name,
                )
            else:
                logger.debug(
                    "Circuit breaker %s: OPEN, rejecting alert %s",
                    self.name, payload.alert.alert_id,
                )
                raise ChannelSendError(f"circuit open for channel {self.name}")

        try:
            success = await self._sender.send(payload)
        except Exception:
            self._on_failure()
            raise

        if success:
            self._on_success()
        else:
            self._on_failure()
        return success

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (trial succeeded)",
                self.name,
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (trial failed)",
                self.name,
            )
        elif self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name, self._consecutive_failures,
            )
