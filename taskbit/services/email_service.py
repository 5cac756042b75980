import logging
from typing import Optional
import httpx
from taskbit.core.config import settings
from taskbit.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailService:
    """Transactional email through SendGrid; logs only when no key is configured"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(settings.sendgrid_api_key and settings.mail_from)

    async def send_email(self, to: str, subject: str, html: str):
        self.logger.info(f"send_email: Entry - to: {to}, subject: {subject}")

        if not self.enabled:
            self.logger.info(f"send_email: Skipped - no mail provider configured, would send '{subject}' to {to}")
            return

        body = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": settings.mail_from},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        headers = {"Authorization": f"Bearer {settings.sendgrid_api_key}"}

        try:
            if self.client is not None:
                response = await self.client.post(SENDGRID_URL, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(SENDGRID_URL, json=body, headers=headers)
            response.raise_for_status()
            self.logger.info(f"send_email: Success - to: {to}")
        except httpx.HTTPError as e:
            self.logger.error(f"send_email: Failure - {e}")
            raise ExternalServiceError("sendgrid", "Failed to send email")
