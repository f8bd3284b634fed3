"""
Background delivery of transactional email
"""

import logging

from tenant_auth.services.email_service import EmailDeliveryError, deliver_email
from tenant_auth.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, name='tenant_auth.tasks.email_tasks.send_email_task')
def send_email_task(self, to: str, subject: str, html_body: str, text_body: str) -> None:
    """
    Deliver one email, retrying with exponential backoff on transport errors

    Args:
        to: Recipient address
        subject: Subject line
        html_body: HTML alternative
        text_body: Plain-text body
    """
    try:
        deliver_email(to, subject, html_body, text_body)
    except EmailDeliveryError as e:
        logger.error(f"Email delivery failed (attempt {self.request.retries + 1}): {e}")
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))
