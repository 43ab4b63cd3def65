from __future__ import annotations

import os
from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..config import DEFAULT_QUEUE_NAME
from ..errors import StoreError
from ..redisq import JobQueue
from ..store import SqlJobStore

app = FastAPI(title="Bazooka Orchestration Control Plane")

# -------------------- Schemas --------------------

class CreateJobRequest(BaseModel):
    scm: str = "git"
    scm_url: str
    reference: str = "HEAD"

class CreateJobResponse(BaseModel):
    job_id: str
    status: str

class VariantResponse(BaseModel):
    id: str
    number: int
    status: str | None
    metas: dict[str, Any] = Field(default_factory=dict)
    image: str | None
    started: datetime
    completed: datetime | None

class JobResponse(BaseModel):
    id: str
    project_id: str
    status: str
    reference: str | None
    started: datetime
    completed: datetime | None
    variants: list[VariantResponse] = Field(default_factory=list)

class LogLine(BaseModel):
    image: str
    variant_id: str | None
    message: str
    time: datetime

# -------------------- Dependencies --------------------

@lru_cache(maxsize=1)
def get_store() -> SqlJobStore:
    return SqlJobStore.from_url(os.environ["BZK_DATABASE_URL"])

@lru_cache(maxsize=1)
def get_queue() -> JobQueue:
    return JobQueue.from_url(
        os.environ["BZK_REDIS_URL"],
        os.environ.get("BZK_QUEUE_NAME", DEFAULT_QUEUE_NAME),
    )

# -------------------- Endpoints --------------------

@app.post("/projects/{project_id}/jobs", response_model=CreateJobResponse, status_code=201)
def create_job(
    project_id: str,
    req: CreateJobRequest,
    store: SqlJobStore = Depends(get_store),
    queue: JobQueue = Depends(get_queue),
):
    try:
        job = store.create_job(project_id, req.scm, req.scm_url, req.reference)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    # push to Redis after DB commit
    queue.enqueue(job.id)
    return CreateJobResponse(job_id=job.id, status=job.status)

@app.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: str, store: SqlJobStore = Depends(get_store)):
    job = store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    variants = [
        VariantResponse(
            id=v.id,
            number=v.number,
            status=v.status,
            metas=v.metas or {},
            image=v.image,
            started=v.started,
            completed=v.completed,
        )
        for v in store.list_variants(job_id)
    ]
    return JobResponse(
        id=job.id,
        project_id=job.project_id,
        status=job.status,
        reference=job.reference,
        started=job.started,
        completed=job.completed,
        variants=variants,
    )

@app.get("/jobs/{job_id}/log", response_model=list[LogLine])
def get_job_log(job_id: str, variant_id: str | None = None, store: SqlJobStore = Depends(get_store)):
    if not store.get_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return [
        LogLine(image=row.image, variant_id=row.variant_id, message=row.message, time=row.time)
        for row in store.get_logs(job_id, variant_id)
    ]
