from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Run(Base):
    __tablename__ = "runs"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    branch: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event_kind: Mapped[str] = mapped_column(sa.Text, nullable=False)
    sha: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # queued|running|succeeded|failed|skipped
    worker_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=now_utc, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    instances: Mapped[list["InstanceResult"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", lazy="selectin",
    )


class InstanceResult(Base):
    __tablename__ = "instance_results"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    label: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    diagnostics: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    run: Mapped[Run] = relationship(back_populates="instances")
