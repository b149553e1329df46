"""
Outbound email through AWS SES.

One Mailer is built at start-up and handed to the code that needs it.
"""
import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings
from exceptions import NotificationError

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, sender: str, region: Optional[str] = None, timeout: float = 5.0, client=None):
        self.sender = sender
        self.client = client or boto3.client(
            "ses",
            region_name=region,
            config=Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 2}),
        )

    def send(self, to: str, subject: str, text_body: str, html_body: str) -> str:
        """Send one message and return the SES MessageId."""
        message = {
            "Subject": {"Data": subject, "Charset": "UTF-8"},
            "Body": {
                "Html": {"Data": html_body, "Charset": "UTF-8"},
                "Text": {"Data": text_body, "Charset": "UTF-8"},
            },
        }
        try:
            response = self.client.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [to]},
                Message=message,
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            raise NotificationError(
                f"SES rejected email to {to}: {error.get('Code')} - {error.get('Message')}"
            ) from e
        except BotoCoreError as e:
            raise NotificationError(f"Could not reach SES for {to}: {e}") from e

        message_id = response.get("MessageId", "")
        logger.info("Email sent to %s. MessageId: %s", to, message_id)
        return message_id


def build_mailer(settings: Settings) -> Optional[Mailer]:
    if not settings.email_from:
        logger.info("EMAIL_FROM not set, order emails disabled")
        return None
    return Mailer(settings.email_from, region=settings.aws_region, timeout=settings.external_timeout)
