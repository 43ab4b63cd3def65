from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class JobRow(Base):
    __tablename__ = "jobs"
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    scm: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="git")
    scm_url: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    reference: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    started: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    completed: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)


class VariantRow(Base):
    __tablename__ = "variants"
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    number: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # NULL while pending
    status: Mapped[str | None] = mapped_column(sa.String(16), nullable=True)
    metas: Mapped[dict] = mapped_column(sa.JSON, nullable=False, default=dict)
    image: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    started: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    completed: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (sa.UniqueConstraint("job_id", "number", name="uq_variant_job_number"),)


class ImageRow(Base):
    """Which image plays a given role (parser, scm_git, ...)."""
    __tablename__ = "images"
    role: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    image: Mapped[str] = mapped_column(sa.Text, nullable=False)


class LogRow(Base):
    __tablename__ = "logs"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    job_id: Mapped[str] = mapped_column(sa.String(32), nullable=False, index=True)
    variant_id: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    image: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
