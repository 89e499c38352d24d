"""
Celery tasks for account housekeeping.
"""
import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def purge_expired_login_as_sessions(self):
    """
    Delete login-as sessions past their expiry.

    Expired sessions are already rejected at authentication time; this
    only keeps the table small.
    """
    from apps.accounts.services import ImpersonationService

    deleted = ImpersonationService.purge_expired_sessions()
    if deleted:
        logger.info(
            f"Purged {deleted} expired login-as sessions",
            extra={'deleted': deleted, 'task_id': self.request.id}
        )
    return {'deleted': deleted}
