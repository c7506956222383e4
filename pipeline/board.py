from __future__ import annotations

import base64
import copy
import logging
from typing import Callable

from .events import PipelineEvent, RunStarted
from .types import AssetKind, AssetStatus, GeneratedAsset

logger = logging.getLogger(__name__)

UPLOAD_KINDS = {
    "image/": AssetKind.THUMBNAIL,
    "video/": AssetKind.VIDEO,
    "audio/": AssetKind.AUDIO,
}


def upload_kind(mime_type: str) -> AssetKind | None:
    mime_type = (mime_type or "").strip().lower()
    for prefix, kind in UPLOAD_KINDS.items():
        if mime_type.startswith(prefix):
            return kind
    return None


def final_cut(assets: list[GeneratedAsset]) -> tuple[GeneratedAsset, GeneratedAsset] | None:
    """First successful video and voiceover, which play together as the preview."""
    video = next(
        (a for a in assets if a.kind is AssetKind.VIDEO and a.status is AssetStatus.SUCCESS),
        None,
    )
    audio = next(
        (a for a in assets if a.kind is AssetKind.AUDIO and a.status is AssetStatus.SUCCESS),
        None,
    )
    if video is None or audio is None:
        return None
    return video, audio


class AssetBoard:
    """Displayed asset list owned by the presentation layer.

    Uploads live here and never enter the orchestrator's run accumulator;
    `displayed` merges the two, uploads first.
    """

    def __init__(self, log: Callable[[str], None] | None = None) -> None:
        self._uploads: list[GeneratedAsset] = []
        self._log = log or (lambda _message: None)

    @property
    def uploads(self) -> list[GeneratedAsset]:
        return list(self._uploads)

    def add_upload(self, file_name: str, mime_type: str, data: bytes) -> GeneratedAsset | None:
        kind = upload_kind(mime_type)
        if kind is None:
            logger.info("Discarding upload %s with unsupported type %r", file_name, mime_type)
            self._log(f"[UPLOAD] UNSUPPORTED FORMAT: {file_name}")
            return None
        content = f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
        asset = GeneratedAsset(kind=kind, content=content, status=AssetStatus.SUCCESS)
        self._uploads.insert(0, asset)
        self._log(f"[UPLOAD] MEDIA LOADED: {file_name.upper()}")
        return asset

    def clear(self) -> None:
        self._uploads = []

    def displayed(self, pipeline_assets: list[GeneratedAsset]) -> list[GeneratedAsset]:
        return copy.deepcopy(self._uploads) + list(pipeline_assets)

    def on_event(self, event: PipelineEvent) -> None:
        if isinstance(event, RunStarted):
            self.clear()
