from celery import Celery
from celery.signals import setup_logging

from app.core.config import settings
from app.core.logging import configure_logging

celery_app = Celery(
    "hub_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=['app.workers.sync_task']
)

@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()
