"""HTTP transports for the external delivery providers.

Each transport creates a short-lived ``httpx.AsyncClient`` per call and
owns its retry budget: network errors, timeouts, 429 and 5xx responses
are retried with exponential backoff; anything else fails immediately.
A delivery that cannot be completed raises ``TransportError``.

Providers:
- Resend (email)
- WhatsApp Cloud API (text messages)
- Yemot ``RunTzintuk`` (outbound phone call list)
"""

import logging

import httpx
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.queues.backoff import ExponentialBackoff, retry_async

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """A provider call failed for good."""


class RetryableTransportError(TransportError):
    """A provider call failed in a way worth retrying (429, 5xx)."""


_RETRY_ON = (httpx.TransportError, RetryableTransportError)


def _check_status(provider: str, resp: httpx.Response) -> None:
    if resp.status_code == 429 or resp.status_code >= 500:
        raise RetryableTransportError(f"{provider} returned {resp.status_code}")
    if not resp.is_success:
        raise TransportError(f"{provider} returned {resp.status_code}: {resp.text[:200]}")


# ── Configuration ─────────────────────────────────────────


class EmailConfig(BaseSettings):
    """Resend email transport settings."""

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        case_sensitive=False,
        extra="ignore",
    )

    resend_api_key: str | None = Field(default=None, description="Resend API key")
    from_address: str = Field(
        default="alerts@example.org",
        description="Sender address for digests",
    )
    api_url: str = Field(default="https://api.resend.com/emails")
    timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.resend_api_key)


class WhatsAppConfig(BaseSettings):
    """WhatsApp Cloud API settings."""

    model_config = SettingsConfigDict(
        env_prefix="WHATSAPP_",
        case_sensitive=False,
        extra="ignore",
    )

    api_url: str = Field(default="https://graph.facebook.com/v19.0")
    phone_number_id: str | None = Field(default=None)
    access_token: str | None = Field(default=None)
    timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)


class YemotConfig(BaseSettings):
    """Yemot phone system settings for the tzintuk channel."""

    model_config = SettingsConfigDict(
        env_prefix="YEMOT_",
        case_sensitive=False,
        extra="ignore",
    )

    api_base: str = Field(default="https://www.call2all.co.il/ym/api")
    api_token: str | None = Field(default=None)
    system_number: str | None = Field(default=None)
    tzintuk_extension: str = Field(
        default="ivr2:/1",
        description="Extension callers are routed to when they call back",
    )
    timeout_seconds: float = Field(default=15.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token and self.system_number)


# ── Transports ────────────────────────────────────────────


class _RetryingTransport:
    def __init__(self, retry_attempts: int = 3, backoff: ExponentialBackoff | None = None) -> None:
        self._retry_attempts = retry_attempts
        self._backoff = backoff or ExponentialBackoff(base_delay=1.0, max_delay=30.0)

    async def _with_retry(self, operation, label: str):
        try:
            return await retry_async(
                operation,
                attempts=self._retry_attempts,
                backoff=self._backoff,
                retry_on=_RETRY_ON,
                label=label,
            )
        except httpx.TransportError as e:
            raise TransportError(f"{label}: {e!r}") from e


class ResendEmailTransport(_RetryingTransport):
    """Sends HTML email through the Resend API."""

    def __init__(
        self,
        config: EmailConfig | None = None,
        retry_attempts: int = 3,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        super().__init__(retry_attempts, backoff)
        self._config = config or EmailConfig()

    async def send_email(self, to: str, subject: str, html: str) -> str | None:
        """Send one email.

        Returns:
            The provider's message id, if reported.

        Raises:
            TransportError: If the email could not be sent.
        """
        if not self._config.is_configured:
            raise TransportError("Resend API key not configured")

        async def _post() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(
                    self._config.api_url,
                    json={
                        "from": self._config.from_address,
                        "to": [to],
                        "subject": subject,
                        "html": html,
                    },
                    headers={"Authorization": f"Bearer {self._config.resend_api_key}"},
                )
            _check_status("Resend", resp)
            return resp

        resp = await self._with_retry(_post, f"email to {to}")
        try:
            return resp.json().get("id")
        except ValueError:
            return None


class WhatsAppTransport(_RetryingTransport):
    """Sends text messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        config: WhatsAppConfig | None = None,
        retry_attempts: int = 3,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        super().__init__(retry_attempts, backoff)
        self._config = config or WhatsAppConfig()

    async def send_text(self, phone: str, text: str) -> None:
        if not self._config.is_configured:
            raise TransportError("WhatsApp API not configured")

        url = f"{self._config.api_url.rstrip('/')}/{self._config.phone_number_id}/messages"

        async def _post() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(
                    url,
                    json={
                        "messaging_product": "whatsapp",
                        "to": phone,
                        "type": "text",
                        "text": {"body": text, "preview_url": True},
                    },
                    headers={"Authorization": f"Bearer {self._config.access_token}"},
                )
            _check_status("WhatsApp", resp)
            return resp

        await self._with_retry(_post, f"whatsapp to {phone}")


class YemotTzintukTransport(_RetryingTransport):
    """Places a phone number on the Yemot outbound tzintuk list."""

    def __init__(
        self,
        config: YemotConfig | None = None,
        retry_attempts: int = 3,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        super().__init__(retry_attempts, backoff)
        self._config = config or YemotConfig()

    async def run_tzintuk(self, phone: str) -> None:
        """Trigger a tzintuk call to ``phone``.

        Raises:
            TransportError: On HTTP failure or a non-``OK`` responseStatus.
        """
        if not self._config.is_configured:
            raise TransportError("Yemot API not configured")

        url = f"{self._config.api_base.rstrip('/')}/RunTzintuk"
        params = {
            "token": self._config.api_token,
            "Rone": self._config.system_number,
            "SendTo": phone,
            "AddToExtension": self._config.tzintuk_extension,
        }

        async def _get() -> dict:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.get(url, params=params)
            _check_status("Yemot", resp)
            return resp.json()

        data = await self._with_retry(_get, f"tzintuk to {phone}")
        status = data.get("responseStatus")
        if status != "OK":
            raise TransportError(f"Yemot API error: {status}")
