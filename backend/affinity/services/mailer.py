"""
Mailer collaborator for digest emails, backed by Resend.

Set RESEND_API_KEY in your .env file to enable email sending. Without it the
rendered email is logged instead, which keeps local runs side-effect free.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import resend

from affinity.core.config import settings as default_settings, Settings
from affinity.services.preferences import Recipient
from affinity.utils.email import render_email

logger = logging.getLogger(__name__)


class Mailer(ABC):
    @abstractmethod
    def send(
        self,
        recipient: Recipient,
        category: str,
        items: List[Dict[str, Any]],
        template_name: str,
        cadence: str,
    ) -> bool:
        """Dispatch one digest. Returns True when the email was handed off."""
        raise NotImplementedError


class ResendMailer(Mailer):
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    @property
    def sender(self) -> str:
        return f"{self.settings.EMAIL_FROM_NAME} <{self.settings.EMAIL_FROM}>"

    def send(
        self,
        recipient: Recipient,
        category: str,
        items: List[Dict[str, Any]],
        template_name: str,
        cadence: str,
    ) -> bool:
        try:
            subject, html_content = render_email(
                template_name,
                recipient.name,
                cadence,
                items,
                self.settings.BASE_URL,
            )

            api_key = self.settings.RESEND_API_KEY
            if not api_key:
                logger.warning("[DIGEST EMAIL] RESEND_API_KEY not set in .env file")
                logger.info(f"[DIGEST EMAIL] Would send '{subject}' to: {recipient.email}")
                logger.debug(f"[DIGEST EMAIL] Content:\n{html_content}")
                return True

            resend.api_key = api_key
            params = {
                "from": self.sender,
                "to": [recipient.email],
                "subject": subject,
                "html": html_content,
            }
            response = resend.Emails.send(params)
            logger.info(
                f"[DIGEST EMAIL] Sent {category} to {recipient.email}. Response id: {response.get('id') if isinstance(response, dict) else response}"
            )
            return True

        except Exception:
            logger.exception(f"Failed to send {category} digest to user {recipient.user_id}")
            return False
