"""
Email delivery for medication reminders.

EmailChannel validates the recipient and hands the message to exactly one
backend, chosen once at construction from configuration:

- SMTPEmailBackend: SMTP relay via aiosmtplib, with exponential backoff retry
- ResendEmailBackend: Resend transactional HTTP API via httpx
- ConsoleEmailBackend: logs the message only, for development

Backends raise PermanentDeliveryError when the recipient itself is rejected
and TransientDeliveryError for provider and network failures.
"""

import asyncio
import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

import aiosmtplib
import httpx

from medreminder.channels.base import Channel
from medreminder.core.errors import PermanentDeliveryError, TransientDeliveryError
from medreminder.core.models import ReminderMessage
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


EMAIL_PATTERN = re.compile(r'^[^@\s<>()\[\],;:"]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$')

# Resend names the offending field, e.g. "Invalid `to` field."
RECIPIENT_ERROR_PATTERN = re.compile(r"invalid\s+[`'\"]?to[`'\"]?\s+field", re.IGNORECASE)


def is_valid_email(address: Optional[str]) -> bool:
    return bool(address) and bool(EMAIL_PATTERN.match(address.strip()))


class EmailBackend:
    """Interface shared by the email providers."""

    name = "email"

    async def send(self, to_email: str, message: ReminderMessage) -> None:
        raise NotImplementedError

    async def close(self):
        """Release provider resources."""
        return None


class SMTPEmailBackend(EmailBackend):
    """
    SMTP relay backend.

    Sends multipart (plain + HTML) messages with:
    - STARTTLS or implicit TLS depending on configuration
    - Exponential backoff retry for connection failures (2 retries)
    - Permanent classification for 5xx recipient refusals
    """

    name = "smtp"

    def __init__(
        self,
        server: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        from_email: str,
        from_name: str,
        use_tls: bool = False,
        timeout: int = 30,
        max_retries: int = 2
    ):
        self.smtp_server = server
        self.smtp_port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout
        self.max_retries = max_retries

    def _compose_email(self, to_email: str, message: ReminderMessage) -> MIMEMultipart:
        """
        Compose a multipart/alternative message.

        Args:
            to_email: Recipient email address
            message: Rendered reminder content

        Returns:
            Composed MIME message ready to send
        """
        msg = MIMEMultipart('alternative')
        msg['From'] = formataddr((self.from_name, self.from_email))
        msg['To'] = to_email
        msg['Subject'] = message.subject

        msg.attach(MIMEText(message.text_body, 'plain', 'utf-8'))
        msg.attach(MIMEText(message.html_body, 'html', 'utf-8'))

        return msg

    @staticmethod
    def _raise_for_refusal(to_email: str, error: aiosmtplib.SMTPRecipientsRefused):
        codes = [r.code for r in error.recipients]
        if codes and all(500 <= code < 600 for code in codes):
            raise PermanentDeliveryError(
                f"Recipient {to_email} refused: {error}",
                status_code=codes[0]
            ) from error
        raise TransientDeliveryError(
            f"Recipient {to_email} temporarily refused: {error}",
            status_code=codes[0] if codes else None
        ) from error

    async def send(self, to_email: str, message: ReminderMessage) -> None:
        """
        Send email with exponential backoff retry.

        Backoff delays: 1s, 2s between attempts.

        Args:
            to_email: Recipient email address
            message: Rendered reminder content

        Raises:
            PermanentDeliveryError: The server permanently refused the recipient
            TransientDeliveryError: Authentication, connection or server failure
        """
        mime = self._compose_email(to_email, message)

        for attempt in range(self.max_retries + 1):
            try:
                async with aiosmtplib.SMTP(
                    hostname=self.smtp_server,
                    port=self.smtp_port,
                    use_tls=self.use_tls,
                    start_tls=not self.use_tls,
                    timeout=self.timeout
                ) as smtp:
                    if self.username and self.password:
                        await smtp.login(self.username, self.password)
                    await smtp.send_message(mime)

                if attempt > 0:
                    logger.info(f"Email sent on retry {attempt} to {to_email}")
                else:
                    logger.info(f"Email sent to {to_email}")
                return

            except aiosmtplib.SMTPRecipientsRefused as e:
                self._raise_for_refusal(to_email, e)

            except aiosmtplib.SMTPAuthenticationError as e:
                logger.error(
                    f"SMTP authentication failed for {self.username}: {e}. "
                    "Check SMTP credentials."
                )
                raise TransientDeliveryError(f"SMTP authentication failed: {e}") from e

            except (
                aiosmtplib.SMTPException,
                ConnectionError,
                TimeoutError,
                OSError
            ) as e:
                if attempt == self.max_retries:
                    raise TransientDeliveryError(
                        f"SMTP send failed after {self.max_retries + 1} attempts: {e}"
                    ) from e

                delay = 2 ** attempt
                logger.warning(
                    f"SMTP send failed (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)


class ResendEmailBackend(EmailBackend):
    """Resend transactional email API backend."""

    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        api_url: str = 'https://api.resend.com/emails',
        timeout: int = 15,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        return body.get('message') or str(body)

    async def send(self, to_email: str, message: ReminderMessage) -> None:
        """
        Send one email through the Resend API.

        Args:
            to_email: Recipient email address
            message: Rendered reminder content

        Raises:
            PermanentDeliveryError: Resend rejected the recipient address
            TransientDeliveryError: Network failure, rate limit, server or config error
        """
        payload = {
            'from': formataddr((self.from_name, self.from_email)),
            'to': [to_email],
            'subject': message.subject,
            'html': message.html_body,
            'text': message.text_body,
        }

        try:
            response = await self._get_client().post(
                self.api_url,
                json=payload,
                headers={'Authorization': f"Bearer {self.api_key}"}
            )
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"Resend request failed: {e!r}") from e

        if response.is_success:
            email_id = None
            try:
                email_id = response.json().get('id')
            except ValueError:
                pass
            logger.info(f"Email sent to {to_email} via Resend (id={email_id})")
            return

        detail = self._error_message(response)

        # 422 validation errors that name the recipient will never succeed
        if response.status_code == 422 and RECIPIENT_ERROR_PATTERN.search(detail):
            raise PermanentDeliveryError(
                f"Resend rejected recipient {to_email}: {detail}",
                status_code=response.status_code
            )

        raise TransientDeliveryError(
            f"Resend API error {response.status_code}: {detail}",
            status_code=response.status_code
        )


class ConsoleEmailBackend(EmailBackend):
    """
    Logs reminders instead of sending them.

    Sends still count as delivered, so reminders are marked sent without
    anyone being notified; every send is logged as a warning.
    """

    name = "console"

    async def send(self, to_email: str, message: ReminderMessage) -> None:
        logger.warning(
            f"[Email console] Not delivered, no email provider configured | "
            f"To: {to_email} | Subject: {message.subject}"
        )
        logger.debug(message.text_body)


class EmailChannel(Channel):
    """Email channel. The destination is the user's email address."""

    name = "email"

    def __init__(self, backend: EmailBackend):
        self.backend = backend

    def describe(self, destination) -> str:
        return str(destination)

    async def _deliver(self, destination: str, message: ReminderMessage) -> None:
        if not is_valid_email(destination):
            raise PermanentDeliveryError(f"Invalid email address: {destination!r}")
        await self.backend.send(destination.strip(), message)

    async def close(self):
        await self.backend.close()


def create_email_channel(settings) -> EmailChannel:
    """
    Build the email channel for the configured provider.

    Falls back to the console backend when the chosen provider has no
    credentials.

    Args:
        settings: Application Settings

    Returns:
        EmailChannel wrapping exactly one backend
    """
    provider = settings.email_provider

    if provider == 'smtp':
        if settings.smtp_password:
            logger.info(
                f"Email provider: SMTP {settings.smtp_server}:{settings.smtp_port} "
                f"(from {settings.email_from})"
            )
            return EmailChannel(SMTPEmailBackend(
                server=settings.smtp_server,
                port=settings.smtp_port,
                username=settings.smtp_username or settings.email_from,
                password=settings.smtp_password,
                from_email=settings.email_from,
                from_name=settings.email_from_name,
                use_tls=settings.smtp_use_tls,
                timeout=settings.smtp_timeout
            ))
        logger.warning("SMTP_PASSWORD not set, using console email backend")

    elif provider == 'resend':
        if settings.resend_api_key:
            logger.info(f"Email provider: Resend API (from {settings.email_from})")
            return EmailChannel(ResendEmailBackend(
                api_key=settings.resend_api_key,
                from_email=settings.email_from,
                from_name=settings.email_from_name,
                api_url=settings.resend_api_url,
                timeout=settings.resend_timeout
            ))
        logger.warning("RESEND_API_KEY not set, using console email backend")

    else:
        logger.info("Email provider: console")

    return EmailChannel(ConsoleEmailBackend())
