from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import require_sync_admin
from app.config import settings
from app.db import get_db
from app.models.woo_reconcile_report import WooReconcileReport
from app.schemas.woocommerce import (
    JOB_IMPORT,
    JOB_OUTBOX_PUSH,
    JOB_RECONCILE,
    EnqueuedJobRead,
    ImportJob,
    ImportRequest,
    ImportResource,
    OutboxPushJob,
    OutboxPushRequest,
    ReconcileJob,
    ReconcileReportRead,
    ReconcileRequest,
    job_payload,
)
from app.services.job_queue import JobQueue
from app.services.woocommerce.outbox import OutboxPublisher
from app.services.woocommerce.webhooks import ingest_webhook

webhook_router = APIRouter(prefix="/webhooks", tags=["woocommerce-webhooks"])
router = APIRouter(
    prefix="/woocommerce",
    tags=["woocommerce"],
    dependencies=[Depends(require_sync_admin)],
)


@webhook_router.post("/woocommerce")
async def woocommerce_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    client_ip = request.client.host if request.client else None
    result = ingest_webhook(db, body, request.headers, client_ip)
    content = {
        "status": "ok" if result.http_status < 400 else "error",
        "detail": result.message,
    }
    if result.event_id is not None:
        content["event_id"] = result.event_id
    if result.duplicate:
        content["duplicate"] = True
    return JSONResponse(status_code=result.http_status, content=content)


def _enqueue(db: Session, job: str, payload: dict) -> EnqueuedJobRead:
    queue = settings.woo_queue
    job_id = JobQueue(db).push(job, payload, queue=queue)
    return EnqueuedJobRead(job_id=job_id, job=job, queue=queue)


@router.post("/outbox/publish", response_model=EnqueuedJobRead, status_code=status.HTTP_202_ACCEPTED)
def publish_outbox(payload: OutboxPushRequest | None = None, db: Session = Depends(get_db)):
    payload = payload or OutboxPushRequest()
    job = OutboxPushJob(site_id=payload.site_id, batch_size=payload.batch_size)
    return _enqueue(db, JOB_OUTBOX_PUSH, job_payload(job))


@router.get("/outbox/summary")
def outbox_summary(site_id: int | None = None, db: Session = Depends(get_db)):
    return OutboxPublisher(db).summary(site_id)


@router.post("/imports/{resource}", response_model=EnqueuedJobRead, status_code=status.HTTP_202_ACCEPTED)
def start_import(
    resource: ImportResource,
    payload: ImportRequest | None = None,
    db: Session = Depends(get_db),
):
    payload = payload or ImportRequest()
    job = ImportJob(resource=resource, **payload.model_dump())
    return _enqueue(db, JOB_IMPORT, job_payload(job))


@router.post("/reconcile", response_model=EnqueuedJobRead, status_code=status.HTTP_202_ACCEPTED)
def start_reconcile(payload: ReconcileRequest, db: Session = Depends(get_db)):
    job = ReconcileJob(**payload.model_dump())
    return _enqueue(db, JOB_RECONCILE, job_payload(job))


@router.get("/reconcile/reports", response_model=list[ReconcileReportRead])
def list_reconcile_reports(
    site_id: int | None = None,
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    query = db.query(WooReconcileReport)
    if site_id is not None:
        query = query.filter(WooReconcileReport.site_id == site_id)
    return query.order_by(WooReconcileReport.id.desc()).limit(limit).all()
