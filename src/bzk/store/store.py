from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreError
from ..logs import LogEntry
from ..model import JobStatus, Variant, now_utc
from .db import create_schema, make_engine, make_sessionmaker
from .models import ImageRow, JobRow, LogRow, VariantRow


class JobStore(Protocol):
    """What the pipeline needs from persistence."""

    def create_variant(self, variant: Variant) -> None: ...

    def update_variant_status(
        self, variant_id: str, status: JobStatus, completed: Optional[datetime]
    ) -> None: ...

    def set_variant_image(self, variant_id: str, image: str) -> None: ...

    def finish_job(self, job_id: str, status: JobStatus, completed: datetime) -> None: ...

    def resolve_image(self, role: str) -> str: ...

    def add_log(self, entry: LogEntry, message: str) -> None: ...


class SqlJobStore:
    """JobStore backed by SQLAlchemy."""

    def __init__(self, sessions: sessionmaker[Session]):
        self._sessions = sessions

    @classmethod
    def from_url(cls, database_url: str, *, create: bool = True) -> "SqlJobStore":
        engine = make_engine(database_url)
        if create:
            create_schema(engine)
        return cls(make_sessionmaker(engine))

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self._sessions() as s:
                with s.begin():
                    yield s
        except SQLAlchemyError as e:
            raise StoreError(operation=operation, message=str(e)) from e

    # ---- jobs ----

    def create_job(self, project_id: str, scm: str, scm_url: str, reference: str | None = None) -> JobRow:
        with self._session("create_job") as s:
            job = JobRow(
                project_id=project_id,
                scm=scm,
                scm_url=scm_url,
                status=JobStatus.RUNNING.value,
                reference=reference,
                started=now_utc(),
            )
            s.add(job)
            s.flush()
            return job

    def get_job(self, job_id: str) -> Optional[JobRow]:
        with self._session("get_job") as s:
            return s.get(JobRow, job_id)

    def finish_job(self, job_id: str, status: JobStatus, completed: datetime) -> None:
        with self._session("finish_job") as s:
            job = s.get(JobRow, job_id)
            if job is None:
                raise StoreError(operation="finish_job", message=f"job {job_id} not found")
            job.status = status.value
            job.completed = completed

    # ---- variants ----

    def create_variant(self, variant: Variant) -> None:
        with self._session("create_variant") as s:
            row = VariantRow(
                job_id=variant.job_id,
                project_id=variant.project_id,
                number=variant.number,
                status=variant.status.value if variant.status else None,
                metas=dict(variant.metas),
                image=variant.image,
                started=variant.started,
                completed=variant.completed,
            )
            s.add(row)
            s.flush()
            variant.id = row.id

    def update_variant_status(
        self, variant_id: str, status: JobStatus, completed: Optional[datetime]
    ) -> None:
        with self._session("update_variant_status") as s:
            row = s.get(VariantRow, variant_id)
            if row is None:
                raise StoreError(operation="update_variant_status", message=f"variant {variant_id} not found")
            row.status = status.value
            row.completed = completed

    def set_variant_image(self, variant_id: str, image: str) -> None:
        with self._session("set_variant_image") as s:
            row = s.get(VariantRow, variant_id)
            if row is None:
                raise StoreError(operation="set_variant_image", message=f"variant {variant_id} not found")
            row.image = image

    def list_variants(self, job_id: str) -> List[VariantRow]:
        with self._session("list_variants") as s:
            q = sa.select(VariantRow).where(VariantRow.job_id == job_id).order_by(VariantRow.number)
            return list(s.scalars(q))

    # ---- images ----

    def set_image(self, role: str, image: str) -> None:
        with self._session("set_image") as s:
            row = s.get(ImageRow, role)
            if row is None:
                s.add(ImageRow(role=role, image=image))
            else:
                row.image = image

    def resolve_image(self, role: str) -> str:
        with self._session("resolve_image") as s:
            row = s.get(ImageRow, role)
        if row is None:
            raise StoreError(operation="resolve_image", message=f"no image registered for role {role!r}")
        return row.image

    # ---- logs ----

    def add_log(self, entry: LogEntry, message: str) -> None:
        with self._session("add_log") as s:
            s.add(LogRow(
                project_id=entry.project_id,
                job_id=entry.job_id,
                variant_id=entry.variant_id,
                image=entry.image,
                message=message,
                time=now_utc(),
            ))

    def get_logs(self, job_id: str, variant_id: str | None = None) -> List[LogRow]:
        with self._session("get_logs") as s:
            q = sa.select(LogRow).where(LogRow.job_id == job_id)
            if variant_id is not None:
                q = q.where(LogRow.variant_id == variant_id)
            return list(s.scalars(q.order_by(LogRow.id)))
