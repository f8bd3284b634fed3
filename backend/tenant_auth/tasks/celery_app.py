"""
Celery application configuration for background tasks
"""

from celery import Celery
from celery.schedules import crontab
from tenant_auth.core.config import settings

# Create Celery app instance
celery_app = Celery(
    'tenant_auth',
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        'tenant_auth.tasks.email_tasks',
        'tenant_auth.tasks.maintenance_tasks',
    ],
)

# Load configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_ignore_result=True,
    task_time_limit=5 * 60,  # 5 minutes hard limit
    task_soft_time_limit=4 * 60,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    'purge-expired-tokens-daily': {
        'task': 'tenant_auth.tasks.maintenance_tasks.purge_expired_tokens',
        'schedule': crontab(hour=3, minute=0),  # Run at 03:00 UTC daily
    },
}
