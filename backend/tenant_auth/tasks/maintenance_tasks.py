"""
Periodic housekeeping tasks
"""

import logging
from typing import Dict

from tenant_auth.core.database import SessionLocal
from tenant_auth.services import token_service
from tenant_auth.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name='tenant_auth.tasks.maintenance_tasks.purge_expired_tokens')
def purge_expired_tokens() -> Dict[str, int]:
    """Delete expired refresh tokens and spent email tokens"""
    db = SessionLocal()
    try:
        return token_service.purge_expired_tokens(db)
    except Exception as e:
        logger.error(f"Token purge failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()
