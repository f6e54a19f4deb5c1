# src/cold_mirror/notifier.py
"""
Webhook notification of batch summaries.

Messages are posted as plain text and signed with HMAC-SHA1 (the scheme used
by traQ webhooks). Delivery is best effort: failures are logged and never
affect the outcome of the batch.
"""

import hashlib
import hmac
import logging
from typing import Dict

import requests

from cold_mirror.config import WebhookConfig
from cold_mirror.summary import BatchSummary

logger: logging.Logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S: float = 10.0


def format_summary_message(summary: BatchSummary, bucket: str) -> str:
    """
    Renders a batch summary as a short Markdown message.

    Args:
        summary (BatchSummary): The finalized batch statistics.
        bucket (str): The primary-store bucket the pass covered.

    Returns:
        str: The message body.
    """
    hours: float = summary.duration.total_seconds() / 3600
    return (
        f"### Object storage {summary.operation.lower()} finished\n"
        f"Bucket: {bucket}\n"
        f"Started at: {summary.started_at.strftime('%Y/%m/%d %H:%M:%S')} UTC\n"
        f"Duration: {hours:.4f} hours\n"
        f"Objects: {summary.total}\n"
        f"Skipped objects: {summary.skipped}\n"
        f"Errors: {summary.error_count}\n"
    )


def sign_message(message: str, secret: str) -> str:
    """Returns the hex HMAC-SHA1 signature of `message`."""
    return hmac.new(
        secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha1
    ).hexdigest()


def post_webhook(message: str, webhook: WebhookConfig) -> bool:
    """
    Posts a message to the configured webhook.

    Args:
        message (str): The plain-text body.
        webhook (WebhookConfig): Target URL and signing settings.

    Returns:
        bool: True if the webhook accepted the message.
    """
    headers: Dict[str, str] = {"Content-Type": "text/plain; charset=utf-8"}
    if webhook.secret:
        headers[webhook.signature_header] = sign_message(message, webhook.secret)

    try:
        response: requests.Response = requests.post(
            webhook.url,
            data=message.encode("utf-8"),
            headers=headers,
            timeout=REQUEST_TIMEOUT_S,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Failed to deliver webhook notification: {e}")
        return False

    logger.info(f"Sent webhook notification (status {response.status_code}).")
    return True
