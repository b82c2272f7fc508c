from dataclasses import dataclass
from typing import List, Optional
import logging

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
    RetryError,
)
import structlog

from ar_api.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

# Module-level singleton, reuses TLS connections across calls
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class _SendGridRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


def build_payload(
    to_emails: List[str],
    subject: str,
    html_content: str,
    sender_email: str,
    sender_name: Optional[str] = None,
) -> dict:
    sender = {"email": sender_email}
    if sender_name:
        sender["name"] = sender_name
    return {
        "personalizations": [
            {"to": [{"email": email} for email in to_emails], "subject": subject}
        ],
        "from": sender,
        "content": [{"type": "text/html", "value": html_content}],
        # Collection emails go out without tracking pixels or rewritten links
        "tracking_settings": {
            "click_tracking": {"enable": False, "enable_text": False},
            "open_tracking": {"enable": False},
        },
    }


@retry(
    retry=retry_if_exception_type(_SendGridRetryableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=False,
)
async def _send_with_retry(
    headers: dict,
    payload: dict,
    to_emails: List[str],
    subject: str,
) -> EmailResult:
    client = get_http_client()
    try:
        response = await client.post(SENDGRID_API_URL, headers=headers, json=payload)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error_retrying", error=str(exc), to=to_emails)
        raise _SendGridRetryableError(str(exc)) from exc

    if response.status_code in (200, 202):
        message_id = response.headers.get("X-Message-Id")
        logger.info(
            "email_sent_sendgrid",
            to=to_emails,
            subject=subject,
            message_id=message_id,
        )
        return EmailResult(success=True, message_id=message_id)

    if response.status_code >= 500:
        logger.warning(
            "email_sendgrid_5xx_retrying",
            status_code=response.status_code,
            to=to_emails,
        )
        raise _SendGridRetryableError(f"SendGrid returned {response.status_code}")

    # 4xx: client error, no point retrying
    logger.error(
        "email_failed_sendgrid",
        status_code=response.status_code,
        response=response.text[:500],
        to=to_emails,
        subject=subject,
    )
    return EmailResult(success=False, error=response.text[:500] or str(response.status_code))


async def send_email(
    to_emails: List[str],
    subject: str,
    html_content: str,
    sender_name: Optional[str] = settings.APP_NAME,
    sender_email: str = settings.EMAIL_FROM_ADDRESS,
) -> EmailResult:
    """
    Send email using the SendGrid v3 REST API.

    Retries up to 3 times with exponential back-off on 5xx and network errors.
    Never raises; failures come back as EmailResult(success=False, error=...).
    """
    if not settings.SENDGRID_API_KEY:
        logger.warning("sendgrid_api_key_missing", message="Email sending skipped")
        return EmailResult(success=False, error="SENDGRID_API_KEY not configured")

    if not to_emails:
        logger.warning("email_no_recipients")
        return EmailResult(success=False, error="No recipients")

    headers = {
        "Authorization": f"Bearer {settings.SENDGRID_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = build_payload(to_emails, subject, html_content, sender_email, sender_name)

    try:
        return await _send_with_retry(headers, payload, to_emails, subject)
    except RetryError as exc:
        logger.error(
            "email_all_retries_exhausted",
            error=str(exc),
            to=to_emails,
            subject=subject,
        )
        return EmailResult(success=False, error="SendGrid unavailable after retries")
    except Exception as exc:
        logger.error(
            "email_send_unexpected_error",
            error=str(exc),
            to=to_emails,
            subject=subject,
        )
        return EmailResult(success=False, error=str(exc))

