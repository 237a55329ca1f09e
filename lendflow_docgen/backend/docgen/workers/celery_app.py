# backend/docgen/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

PIPELINE_QUEUE = "pipelines"

celery_app = Celery(
    "lendflow_docgen",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["docgen.workers.pipeline_tasks"],
)

celery_app.conf.update(
    # a redelivered trigger replays its recorded PipelineRun, so late acks are safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # a pipeline holds one worker slot for minutes; never prefetch a second
    worker_prefetch_multiplier=1,
    task_default_queue=PIPELINE_QUEUE,
    task_routes={"docgen.workers.pipeline_tasks.*": {"queue": PIPELINE_QUEUE}},
    task_track_started=True,
    result_expires=7 * 24 * 3600,
    broker_connection_retry_on_startup=True,
    timezone="UTC",
)
