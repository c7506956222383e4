from __future__ import annotations

import asyncio
import contextlib
import copy
from datetime import UTC, datetime
import logging
import os
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from db.store import StorageError
from genai.credentials import CredentialProvider
from genai.errors import MissingCredentialError
from .events import (
    ArchiveFailed,
    AssetAdded,
    LogAdded,
    PipelineEvent,
    ProjectArchived,
    ProjectReady,
    RunStarted,
    StepChanged,
)
from .types import (
    ACTIVE_STEPS,
    AssetKind,
    AssetStatus,
    GeneratedAsset,
    GenerationOptions,
    GenerationStep,
    Project,
)

logger = logging.getLogger(__name__)

Listener = Callable[[PipelineEvent], None]


class GenerationBackend(Protocol):
    async def generate_script(self, topic: str) -> str: ...

    async def generate_voiceover(self, text: str) -> str: ...

    async def generate_thumbnail(self, topic: str, style: str) -> str: ...

    async def generate_video(self, topic: str, resolution: str) -> str: ...


class ProjectSink(Protocol):
    def save(self, project: Project) -> Any: ...


class PipelineBusyError(RuntimeError):
    pass


def _stage_delay_seconds() -> float:
    return int(os.getenv("PIPELINE_STAGE_DELAY_MS", "1500")) / 1000.0


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text[:120] if text else exc.__class__.__name__


class PipelineOrchestrator:
    """Runs script, voiceover, thumbnail and video generation in a fixed order.

    Only the script stage is fatal. The other stages record an error asset and
    let the run continue. A run that reaches COMPLETED is archived exactly once;
    a storage failure is logged and leaves the run COMPLETED.
    """

    def __init__(
        self,
        client: GenerationBackend,
        store: ProjectSink,
        *,
        credentials: CredentialProvider | None = None,
        stage_delay_s: float | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.credentials = credentials
        self.stage_delay_s = _stage_delay_seconds() if stage_delay_s is None else stage_delay_s
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or (lambda: datetime.now(UTC))
        self._listeners: list[Listener] = []
        self.step = GenerationStep.IDLE
        self.project_id: str | None = None
        self.topic: str | None = None
        self._assets: list[GeneratedAsset] = []
        self._logs: list[str] = []

    @property
    def is_busy(self) -> bool:
        return self.step in ACTIVE_STEPS

    @property
    def assets(self) -> list[GeneratedAsset]:
        return copy.deepcopy(self._assets)

    @property
    def logs(self) -> list[str]:
        return list(self._logs)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def note(self, message: str) -> None:
        self._log(message)

    def load_project(self, project: Project) -> None:
        if self.is_busy:
            raise PipelineBusyError("pipeline_busy")
        self._assets = copy.deepcopy(project.assets)
        self.project_id = project.id
        self.topic = project.topic
        self._logs = [
            f"[SYSTEM] ARCHIVE LOADED: {project.topic.upper()}",
            f"[SYSTEM] RESTORED {len(project.assets)} ASSETS.",
        ]
        self._set_step(GenerationStep.COMPLETED)

    async def run(
        self,
        topic: str,
        options: GenerationOptions | None = None,
    ) -> AsyncIterator[PipelineEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        finished = object()
        unsubscribe = self.subscribe(queue.put_nowait)

        async def _drive() -> Project | None:
            try:
                return await self.execute(topic, options)
            finally:
                queue.put_nowait(finished)

        task = asyncio.create_task(_drive())
        try:
            while True:
                item = await queue.get()
                if item is finished:
                    break
                yield item
            await task
        finally:
            unsubscribe()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def execute(
        self,
        topic: str,
        options: GenerationOptions | None = None,
    ) -> Project | None:
        if not topic or not topic.strip():
            return None
        if self.is_busy:
            raise PipelineBusyError("pipeline_busy")
        if self.credentials is not None and not self.credentials.has_credential():
            raise MissingCredentialError("API key missing; connect a credential before generating")
        options = options or GenerationOptions()

        project = Project(topic=topic)
        self._assets = []
        self._logs = []
        self.project_id = project.id
        self.topic = topic
        self._set_step(GenerationStep.SCRIPTING)
        self._emit(RunStarted(project_id=project.id, topic=topic))
        self._log("INITIATING ESTATE PROTOCOL...")

        try:
            self._log("AGENT: WRITING PROPERTY SCRIPT...")
            script_text = await self.client.generate_script(topic)
            self._add_asset(GeneratedAsset(kind=AssetKind.SCRIPT, content=script_text, status=AssetStatus.SUCCESS))
            self._log("SCRIPT GENERATED.")
            await self._pause()

            self._set_step(GenerationStep.VOICING)
            self._log("AGENT: TTS - SYNTHESIZING VOICEOVER...")
            await self._isolated_stage(
                AssetKind.AUDIO,
                lambda: self.client.generate_voiceover(script_text),
                label="VOICEOVER",
            )
            await self._pause()

            self._set_step(GenerationStep.VISUALIZING)
            self._log(f"AGENT: IMAGE - RENDERING THUMBNAIL ({options.thumbnail_style})...")
            await self._isolated_stage(
                AssetKind.THUMBNAIL,
                lambda: self.client.generate_thumbnail(topic, options.thumbnail_style),
                label="THUMBNAIL",
                metadata={"topic": topic},
            )
            await self._pause()

            self._set_step(GenerationStep.FILMING)
            self._log(f"AGENT: VEO ({options.resolution}) - FILMING VIRTUAL TOUR...")
            await self._isolated_stage(
                AssetKind.VIDEO,
                lambda: self.client.generate_video(topic, options.resolution),
                label="VIDEO",
            )

            self._set_step(GenerationStep.COMPLETED)
            self._log("MISSION ACCOMPLISHED.")
        except asyncio.CancelledError:
            self._set_step(GenerationStep.FAILED)
            self._log("PIPELINE CANCELLED.")
            raise
        except Exception:
            logger.exception("Pipeline run %s failed", project.id)
            self._set_step(GenerationStep.FAILED)
            self._log("CRITICAL FAILURE IN PIPELINE.")
            return None

        project.created_at = self._clock()
        project.assets = self.assets
        self._emit(ProjectReady(project=project))
        await self._archive(project)
        return project

    async def _isolated_stage(
        self,
        kind: AssetKind,
        call: Callable[[], Awaitable[str]],
        *,
        label: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        asset = GeneratedAsset(kind=kind)
        try:
            content = await call()
        except Exception as exc:
            logger.warning("%s stage failed: %s", kind.value, exc, exc_info=True)
            asset.resolve(AssetStatus.ERROR, "")
            self._add_asset(asset)
            self._log(f"ERROR: {label} FAILED ({_describe(exc)})")
            return
        asset.resolve(AssetStatus.SUCCESS, content)
        if metadata:
            asset.metadata.update(metadata)
        self._add_asset(asset)
        self._log(f"{label} COMPLETE.")

    async def _archive(self, project: Project) -> None:
        try:
            await asyncio.to_thread(self.store.save, copy.deepcopy(project))
        except Exception as exc:
            logger.error("Failed to archive project %s: %s", project.id, exc)
            if isinstance(exc, StorageError):
                self._log("ERROR: FAILED TO ARCHIVE PROJECT (STORAGE ERROR)")
            else:
                self._log(f"ERROR: FAILED TO ARCHIVE PROJECT ({_describe(exc)})")
            self._emit(ArchiveFailed(project_id=project.id, error=str(exc)))
            return
        self._log("PROJECT ARCHIVED TO DB.")
        self._emit(ProjectArchived(project_id=project.id))

    async def _pause(self) -> None:
        if self.stage_delay_s > 0:
            await self._sleep(self.stage_delay_s)

    def _set_step(self, step: GenerationStep) -> None:
        self.step = step
        logger.info("Pipeline step -> %s", step.value)
        self._emit(StepChanged(step=step))

    def _add_asset(self, asset: GeneratedAsset) -> None:
        self._assets.append(asset)
        self._emit(AssetAdded(asset=copy.deepcopy(asset)))

    def _log(self, message: str) -> None:
        line = f"[{self._clock().astimezone().strftime('%H:%M:%S')}] {message}"
        self._logs.insert(0, line)
        self._emit(LogAdded(line=line))

    def _emit(self, event: PipelineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Pipeline listener failed on %s", event.name)
