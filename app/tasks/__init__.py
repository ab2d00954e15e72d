from app.tasks.woocommerce import drain_job_queue, enqueue_outbox_push, enqueue_reconcile

__all__ = [
    "drain_job_queue",
    "enqueue_outbox_push",
    "enqueue_reconcile",
]
