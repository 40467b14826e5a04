"""Delivery of released alert matches to users.

Components:
- ChannelRouter / NotificationConfig: Concurrent per-channel fan-out
- ChannelSender and one sender per channel (site, email, WhatsApp, tzintuk)
- CircuitBreaker: Resilience wrapper for senders
- Transports: Resend, WhatsApp Cloud API and Yemot HTTP clients
- render_job_alert_digest: RTL HTML email digest
- NotificationRepository: In-app notification storage
"""

from src.delivery.channels import (
    ChannelSender,
    ChannelSendError,
    CircuitBreaker,
    CircuitState,
    DeliveryPayload,
    EmailDigestSender,
    SiteNotificationSender,
    TzintukSender,
    WhatsAppSender,
)
from src.delivery.notifications import NotificationRepository, SiteNotification
from src.delivery.router import ChannelRouter, NotificationConfig
from src.delivery.templates import render_job_alert_digest
from src.delivery.transports import (
    EmailConfig,
    ResendEmailTransport,
    TransportError,
    WhatsAppConfig,
    WhatsAppTransport,
    YemotConfig,
    YemotTzintukTransport,
)

__all__ = [
    "ChannelRouter",
    "ChannelSendError",
    "ChannelSender",
    "CircuitBreaker",
    "CircuitState",
    "DeliveryPayload",
    "EmailConfig",
    "EmailDigestSender",
    "NotificationConfig",
    "NotificationRepository",
    "ResendEmailTransport",
    "SiteNotification",
    "SiteNotificationSender",
    "TransportError",
    "TzintukSender",
    "WhatsAppConfig",
    "WhatsAppSender",
    "WhatsAppTransport",
    "YemotConfig",
    "YemotTzintukTransport",
    "render_job_alert_digest",
]
