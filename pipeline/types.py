from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


VIDEO_RESOLUTIONS = ("720p", "1080p")
DEFAULT_VIDEO_RESOLUTION = "720p"

THUMBNAIL_STYLES = ("Luxury", "Modern", "Classic", "Minimalist", "Rustic", "Cyberpunk", "Cinematic")
DEFAULT_THUMBNAIL_STYLE = "Luxury"


class AssetKind(StrEnum):
    SCRIPT = "script"
    THUMBNAIL = "thumbnail"
    VIDEO = "video"
    AUDIO = "audio"


class AssetStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class GenerationStep(StrEnum):
    IDLE = "IDLE"
    SCRIPTING = "SCRIPTING"
    VOICING = "VOICING"
    VISUALIZING = "VISUALIZING"
    FILMING = "FILMING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_STEPS = frozenset(
    {
        GenerationStep.SCRIPTING,
        GenerationStep.VOICING,
        GenerationStep.VISUALIZING,
        GenerationStep.FILMING,
    }
)


def new_id() -> str:
    return uuid4().hex


@dataclass
class GeneratedAsset:
    kind: AssetKind
    content: str = ""
    status: AssetStatus = AssetStatus.PENDING
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def resolve(self, status: AssetStatus, content: str | None = None) -> None:
        """Move a pending asset to its terminal status; terminal assets never change."""
        if self.status is not AssetStatus.PENDING:
            raise RuntimeError(f"asset_already_resolved:{self.id}:{self.status}")
        if status is AssetStatus.PENDING:
            raise ValueError("asset status can only move to success or error")
        self.status = status
        if content is not None:
            self.content = content

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "content": self.content,
            "status": self.status.value,
            "metadata": dict(self.metadata),
        }


@dataclass
class Project:
    topic: str
    assets: list[GeneratedAsset] = field(default_factory=list)
    created_at: datetime | None = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "assets": [asset.to_dict() for asset in self.assets],
        }


@dataclass(frozen=True)
class GenerationOptions:
    resolution: str = DEFAULT_VIDEO_RESOLUTION
    thumbnail_style: str = DEFAULT_THUMBNAIL_STYLE

    def __post_init__(self) -> None:
        if self.resolution not in VIDEO_RESOLUTIONS:
            raise ValueError(f"Unsupported video resolution: {self.resolution}")
        if self.thumbnail_style not in THUMBNAIL_STYLES:
            raise ValueError(f"Unsupported thumbnail style: {self.thumbnail_style}")
