from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProjectRecord(Base):
    __tablename__ = "project"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    topic: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    assets: Mapped[list["ProjectAssetRecord"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectAssetRecord.position",
    )


class ProjectAssetRecord(Base):
    __tablename__ = "project_asset"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("project.id", ondelete="CASCADE"),
    )
    position: Mapped[int] = mapped_column(Integer)
    kind: Mapped[str] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(Text)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    project: Mapped["ProjectRecord"] = relationship(back_populates="assets")

    __table_args__ = (
        UniqueConstraint("project_id", "position", name="uq_project_asset_position"),
        CheckConstraint(
            "kind in ('script', 'thumbnail', 'video', 'audio')",
            name="ck_project_asset_kind",
        ),
        CheckConstraint(
            "status in ('pending', 'success', 'error')",
            name="ck_project_asset_status",
        ),
    )
