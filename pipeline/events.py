from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from .types import GeneratedAsset, GenerationStep, Project


@dataclass(frozen=True)
class RunStarted:
    name: ClassVar[str] = "run_started"
    project_id: str
    topic: str

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "project_id": self.project_id, "topic": self.topic}


@dataclass(frozen=True)
class StepChanged:
    name: ClassVar[str] = "step_changed"
    step: GenerationStep

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "step": self.step.value}


@dataclass(frozen=True)
class LogAdded:
    name: ClassVar[str] = "log"
    line: str

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "line": self.line}


@dataclass(frozen=True)
class AssetAdded:
    name: ClassVar[str] = "asset_added"
    asset: GeneratedAsset

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "asset": self.asset.to_dict()}


@dataclass(frozen=True)
class ProjectReady:
    name: ClassVar[str] = "project_ready"
    project: Project

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "project": self.project.to_dict()}


@dataclass(frozen=True)
class ProjectArchived:
    name: ClassVar[str] = "project_archived"
    project_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "project_id": self.project_id}


@dataclass(frozen=True)
class ArchiveFailed:
    name: ClassVar[str] = "archive_failed"
    project_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "project_id": self.project_id, "error": self.error}


PipelineEvent = Union[
    RunStarted,
    StepChanged,
    LogAdded,
    AssetAdded,
    ProjectReady,
    ProjectArchived,
    ArchiveFailed,
]
