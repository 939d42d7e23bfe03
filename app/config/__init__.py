# Loading the Celery app here lets shared_task bind to it when Django starts
from config.celery import app as celery_app

__all__ = ("celery_app",)
