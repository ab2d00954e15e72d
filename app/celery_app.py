from datetime import timedelta

from celery import Celery

from app.config import settings

celery_app = Celery(
    "woo_sync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.woocommerce"],
)


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    if settings.woo_enabled:
        schedule["woo_outbox_push"] = {
            "task": "app.tasks.woocommerce.enqueue_outbox_push",
            "schedule": timedelta(seconds=max(settings.woo_outbox_push_interval_seconds, 10)),
        }
        schedule["woo_reconcile"] = {
            "task": "app.tasks.woocommerce.enqueue_reconcile",
            "schedule": timedelta(seconds=max(settings.woo_reconcile_interval_seconds, 300)),
        }
    return schedule


celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule=build_beat_schedule(),
)
