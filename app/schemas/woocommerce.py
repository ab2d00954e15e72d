"""Typed job payloads and request bodies for the WooCommerce sync engine.

Each job variant carries a fixed ``kind``; ``WooJob`` is the tagged union the
worker dispatches on.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

JOB_OUTBOX_PUSH = "woo.outbox_push"
JOB_PROCESS_WEBHOOK = "woo.process_webhook"
JOB_IMPORT = "woo.import"
JOB_RECONCILE = "woo.reconcile"

RESERVED_PAYLOAD_KEYS = ("handler", "no_retry")

ImportResource = Literal["products", "customers", "orders"]
ReconcileMode = Literal["single", "products", "customers", "orders", "all"]
ReconcileStrategy = Literal["remote_wins", "local_wins", "merge"]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


class _JobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class OutboxPushJob(_JobPayload):
    kind: Literal["woo.outbox_push"] = JOB_OUTBOX_PUSH
    site_id: int | None = None
    batch_size: int | None = Field(default=None, ge=1, le=500)
    lease_seconds: int | None = Field(default=None, ge=1)


class ProcessWebhookJob(_JobPayload):
    kind: Literal["woo.process_webhook"] = JOB_PROCESS_WEBHOOK
    event_id: int
    force_fetch: bool = False


class ImportJob(_JobPayload):
    kind: Literal["woo.import"] = JOB_IMPORT
    resource: ImportResource
    site_id: int | None = None
    page: int | None = Field(default=None, ge=1)
    per_page: int | None = None
    since: str | None = None
    status: str | None = None
    max_pages: int | None = Field(default=None, ge=1)
    enqueue_next: bool = True
    dry_run: bool = False


class ReconcileRequest(BaseModel):
    mode: ReconcileMode = "all"
    entity_type: Literal["product", "customer", "order"] | None = None
    remote_id: int | None = None
    strategy: ReconcileStrategy = "remote_wins"
    repair: bool = True
    dry_run: bool = False
    limit: int = 100
    scan_window_days: int = 30
    site_id: int | None = None

    @field_validator("limit")
    @classmethod
    def _clamp_limit(cls, value: int) -> int:
        return _clamp(value, 1, 2000)

    @field_validator("scan_window_days")
    @classmethod
    def _clamp_window(cls, value: int) -> int:
        return _clamp(value, 1, 3650)

    @model_validator(mode="after")
    def _require_single_target(self):
        if self.mode == "single" and (not self.entity_type or not self.remote_id):
            raise ValueError("single mode requires entity_type and remote_id")
        return self


class ReconcileJob(ReconcileRequest):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["woo.reconcile"] = JOB_RECONCILE


WooJob = Annotated[
    Union[OutboxPushJob, ProcessWebhookJob, ImportJob, ReconcileJob],
    Field(discriminator="kind"),
]

_JOB_ADAPTER: TypeAdapter = TypeAdapter(WooJob)


def parse_job(kind: str, payload: dict[str, Any] | None) -> WooJob:
    data = {key: value for key, value in (payload or {}).items() if key not in RESERVED_PAYLOAD_KEYS}
    data["kind"] = kind
    return _JOB_ADAPTER.validate_python(data)


def job_payload(job: BaseModel) -> dict[str, Any]:
    """Serialize a job variant for the queue table (``kind`` lives in the job column)."""
    return job.model_dump(mode="json", exclude={"kind"}, exclude_none=True)


class ImportRequest(BaseModel):
    site_id: int | None = None
    page: int | None = Field(default=None, ge=1)
    per_page: int | None = Field(default=None, ge=1, le=100)
    since: str | None = None
    status: str | None = None
    max_pages: int | None = Field(default=None, ge=1)
    dry_run: bool = False


class OutboxPushRequest(BaseModel):
    site_id: int | None = None
    batch_size: int | None = Field(default=None, ge=1, le=500)


class EnqueuedJobRead(BaseModel):
    job_id: int
    job: str
    queue: str


class ReconcileReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    site_id: int
    mode: str
    strategy: str
    repair: bool
    dry_run: bool
    summary: dict
    created_at: datetime | None = None
