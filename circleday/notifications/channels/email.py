"""SendGrid email delivery channel."""

import logging
import os
import re
from datetime import date

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from ...config import is_production
from ..errors import TransientSendError, classify_http_status
from ..templates import build_reminder_context, get_message

logger = logging.getLogger(__name__)

# Regex to match markdown links: [text](url)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")


def markdown_to_html(text: str) -> str:
    """
    Convert markdown-style links to HTML and wrap in basic HTML structure.

    Converts [text](url) to <a href="url">text</a> and preserves line breaks.
    """
    html_body = MARKDOWN_LINK_PATTERN.sub(r'<a href="\2">\1</a>', text)
    html_body = html_body.replace("\n", "<br>\n")

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.5; color: #333;">
{html_body}
</body>
</html>"""


def markdown_to_plain_text(text: str) -> str:
    """
    Convert markdown-style links to plain text with URL in parentheses.

    Converts [text](url) to text (url) for plain text email fallback.
    """
    return MARKDOWN_LINK_PATTERN.sub(r"\1 (\2)", text)


class EmailSender:
    """
    Sends reminder emails through an injected SendGrid client.

    Outside production, mail is redirected to ``test_email`` when one is set.
    """

    def __init__(
        self,
        client: SendGridAPIClient,
        from_email: str = "reminders@circleday.app",
        from_name: str = "CircleDay",
        test_email: str | None = None,
        redirect: bool | None = None,
    ):
        self.client = client
        self.from_email = from_email
        self.from_name = from_name
        self.test_email = test_email
        self.redirect = (not is_production()) if redirect is None else redirect

    @classmethod
    def from_env(cls) -> "EmailSender | None":
        """Build a sender from SENDGRID_* settings, or None if no API key is set."""
        api_key = os.environ.get("SENDGRID_API_KEY")
        if not api_key:
            return None
        return cls(
            SendGridAPIClient(api_key),
            from_email=os.environ.get("FROM_EMAIL", "reminders@circleday.app"),
            from_name=os.environ.get("FROM_NAME", "CircleDay"),
            test_email=os.environ.get("TEST_EMAIL"),
        )

    def _resolve_recipient(self, to: str) -> str:
        if self.redirect and self.test_email:
            logger.info(f"Redirecting reminder email for {to} to {self.test_email}")
            return self.test_email
        return to

    def send_email(
        self,
        to: str,
        recipient_name: str,
        occasion_name: str,
        date: date,
        days_until: int,
        group_name: str | None = None,
    ) -> str | None:
        """
        Send one reminder email.

        Returns:
            The SendGrid X-Message-Id, when the provider returns one

        Raises:
            TransientSendError: timeouts, 429 and 5xx responses
            PermanentSendError: other rejections
        """
        context = build_reminder_context(
            recipient_name, occasion_name, date, days_until, group_name
        )
        subject = get_message("reminder", "email_subject", context)
        body = get_message("reminder", "email_body", context)

        message = Mail(
            from_email=(self.from_email, self.from_name),
            to_emails=self._resolve_recipient(to),
            subject=subject,
            plain_text_content=markdown_to_plain_text(body),
            html_content=markdown_to_html(body),
        )

        try:
            response = self.client.send(message)
        except TimeoutError as e:
            raise TransientSendError(f"SendGrid timed out: {e}") from e
        except Exception as e:
            # python-http-client raises HTTPError subclasses carrying status_code
            status_code = getattr(e, "status_code", None)
            raise classify_http_status(
                status_code, f"SendGrid rejected email to {to}: {e}"
            ) from e

        if response.status_code not in (200, 201, 202):
            raise classify_http_status(
                response.status_code,
                f"SendGrid returned {response.status_code} for {to}",
            )

        headers = getattr(response, "headers", None) or {}
        message_id = headers.get("X-Message-Id")
        logger.info(f"Sent reminder email for {occasion_name} (message {message_id})")
        return message_id
