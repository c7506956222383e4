from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import Callable

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from pipeline.types import AssetKind, AssetStatus, GeneratedAsset, Project
from .models import ProjectAssetRecord, ProjectRecord
from .session import SessionLocal

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProjectAck:
    project_id: str
    asset_count: int
    archived_at: datetime


class ProjectStore:
    """Append-only archive of finished pipeline sessions."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def _open_session(self) -> Session:
        try:
            return self._session_factory()
        except SQLAlchemyError as exc:
            raise StorageError(f"session_unavailable: {exc}") from exc

    def save(self, project: Project) -> ProjectAck:
        created_at = (project.created_at or datetime.now(UTC)).astimezone(UTC)
        session = self._open_session()
        try:
            if session.get(ProjectRecord, project.id) is not None:
                raise StorageError(f"project_exists:{project.id}")
            record = ProjectRecord(id=project.id, topic=project.topic, created_at=created_at)
            record.assets = [
                ProjectAssetRecord(
                    id=asset.id,
                    position=position,
                    kind=asset.kind.value,
                    content=asset.content,
                    status=asset.status.value,
                    meta=dict(asset.metadata) or None,
                )
                for position, asset in enumerate(project.assets)
            ]
            session.add(record)
            session.commit()
            ack = ProjectAck(
                project_id=record.id,
                asset_count=len(record.assets),
                archived_at=record.archived_at,
            )
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"project_save_failed:{project.id}: {exc}") from exc
        finally:
            session.close()
        logger.info("Archived project %s (%d assets)", ack.project_id, ack.asset_count)
        return ack

    def list_all(self) -> list[Project]:
        stmt = (
            select(ProjectRecord)
            .options(selectinload(ProjectRecord.assets))
            .order_by(desc(ProjectRecord.created_at), desc(ProjectRecord.archived_at))
        )
        session = self._open_session()
        try:
            records = session.execute(stmt).scalars().all()
            return [_to_project(record) for record in records]
        except SQLAlchemyError as exc:
            raise StorageError(f"project_history_unavailable: {exc}") from exc
        finally:
            session.close()

    def get(self, project_id: str) -> Project | None:
        session = self._open_session()
        try:
            record = session.get(
                ProjectRecord,
                project_id,
                options=[selectinload(ProjectRecord.assets)],
            )
            return _to_project(record) if record is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"project_load_failed:{project_id}: {exc}") from exc
        finally:
            session.close()


def _to_project(record: ProjectRecord) -> Project:
    created_at = record.created_at
    if created_at is not None and created_at.tzinfo is None:
        # SQLite drops tzinfo on the way back.
        created_at = created_at.replace(tzinfo=UTC)
    return Project(
        id=record.id,
        topic=record.topic,
        created_at=created_at,
        assets=[
            GeneratedAsset(
                id=row.id,
                kind=AssetKind(row.kind),
                content=row.content or "",
                status=AssetStatus(row.status),
                metadata=dict(row.meta or {}),
            )
            for row in sorted(record.assets, key=lambda item: item.position)
        ],
    )
