from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import re

import pytest

from db.store import StorageError
from genai.credentials import StaticCredentialProvider
from genai.errors import GenAIError, MissingCredentialError
from pipeline.events import (
    ArchiveFailed,
    AssetAdded,
    LogAdded,
    ProjectArchived,
    ProjectReady,
    RunStarted,
    StepChanged,
)
from pipeline.factory import build_orchestrator
from pipeline.orchestrator import PipelineBusyError, PipelineOrchestrator
from pipeline.types import (
    AssetKind,
    AssetStatus,
    GeneratedAsset,
    GenerationOptions,
    GenerationStep,
    Project,
)

FIXED_NOW = datetime(2026, 10, 17, 9, 30, tzinfo=UTC)


class _FakeClient:
    def __init__(self, *, fail: tuple[str, ...] = ()) -> None:
        self.fail = set(fail)
        self.calls: list[tuple] = []

    def _maybe_fail(self, stage: str) -> None:
        if stage in self.fail:
            raise GenAIError(code="http_500", message=f"{stage} exploded", operation=stage)

    async def generate_script(self, topic: str) -> str:
        self.calls.append(("script", topic))
        self._maybe_fail("script")
        return f"Kịch bản cho {topic}"

    async def generate_voiceover(self, text: str) -> str:
        self.calls.append(("audio", text))
        self._maybe_fail("audio")
        return "data:audio/wav;base64,UklGRg=="

    async def generate_thumbnail(self, topic: str, style: str) -> str:
        self.calls.append(("thumbnail", topic, style))
        self._maybe_fail("thumbnail")
        return "data:image/png;base64,iVBORw0KGgo="

    async def generate_video(self, topic: str, resolution: str) -> str:
        self.calls.append(("video", topic, resolution))
        self._maybe_fail("video")
        return "https://videos.example/tour.mp4?key=test-key"


class _BlockingVoiceClient(_FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_voiceover(self, text: str) -> str:
        self.calls.append(("audio", text))
        self.entered.set()
        await self.release.wait()
        return "data:audio/wav;base64,UklGRg=="


class _FakeStore:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.saved: list[Project] = []

    def save(self, project: Project) -> None:
        if self.error is not None:
            raise self.error
        self.saved.append(project)


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _orchestrator(client=None, store=None, **kwargs) -> PipelineOrchestrator:
    kwargs.setdefault("stage_delay_s", 1.5)
    kwargs.setdefault("sleep", _RecordingSleep())
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return PipelineOrchestrator(client or _FakeClient(), store or _FakeStore(), **kwargs)


def _collect(orchestrator: PipelineOrchestrator) -> list:
    events: list = []
    orchestrator.subscribe(events.append)
    return events


def test_all_stages_succeed_and_project_is_archived_once() -> None:
    store = _FakeStore()
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(store=store, sleep=sleep)

    project = asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    assert project is not None
    assert [asset.kind for asset in project.assets] == [
        AssetKind.SCRIPT,
        AssetKind.AUDIO,
        AssetKind.THUMBNAIL,
        AssetKind.VIDEO,
    ]
    assert all(asset.status is AssetStatus.SUCCESS for asset in project.assets)
    assert project.created_at == FIXED_NOW
    assert len(store.saved) == 1
    assert store.saved[0].topic == "Penthouse Saigon Pearl"
    assert store.saved[0].id == project.id
    assert orchestrator.step is GenerationStep.COMPLETED
    assert orchestrator.is_busy is False
    assert sleep.delays == [1.5, 1.5, 1.5]


def test_script_text_feeds_voiceover_and_options_reach_client() -> None:
    client = _FakeClient()
    orchestrator = _orchestrator(client=client)

    asyncio.run(
        orchestrator.execute(
            "Villa Thao Dien",
            GenerationOptions(resolution="1080p", thumbnail_style="Modern"),
        )
    )

    assert client.calls == [
        ("script", "Villa Thao Dien"),
        ("audio", "Kịch bản cho Villa Thao Dien"),
        ("thumbnail", "Villa Thao Dien", "Modern"),
        ("video", "Villa Thao Dien", "1080p"),
    ]
    thumbnail = orchestrator.assets[2]
    assert thumbnail.metadata == {"topic": "Villa Thao Dien"}


def test_voiceover_failure_is_isolated() -> None:
    store = _FakeStore()
    orchestrator = _orchestrator(client=_FakeClient(fail=("audio",)), store=store)

    project = asyncio.run(orchestrator.execute("Villa Thu Duc"))

    assert project is not None
    assert len(project.assets) == 4
    audio = project.assets[1]
    assert audio.kind is AssetKind.AUDIO
    assert audio.status is AssetStatus.ERROR
    assert audio.content == ""
    assert [asset.status for asset in project.assets if asset.kind is not AssetKind.AUDIO] == [
        AssetStatus.SUCCESS
    ] * 3
    assert orchestrator.step is GenerationStep.COMPLETED
    assert len(store.saved) == 1
    assert any("ERROR: VOICEOVER FAILED" in line for line in orchestrator.logs)
    saved = store.saved[0]
    assert [asset.to_dict() for asset in saved.assets] == [asset.to_dict() for asset in orchestrator.assets]
    assert [asset.to_dict() for asset in saved.assets] == [asset.to_dict() for asset in project.assets]
    assert saved is not project
    assert saved.assets is not project.assets
    assert all(a is not b for a, b in zip(saved.assets, project.assets))


@pytest.mark.parametrize(
    ("stage", "index", "label"),
    [("thumbnail", 2, "THUMBNAIL"), ("video", 3, "VIDEO")],
)
def test_later_stage_failures_record_error_assets(stage: str, index: int, label: str) -> None:
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(client=_FakeClient(fail=(stage,)), sleep=sleep)

    project = asyncio.run(orchestrator.execute("Saigon Riverside Loft"))

    assert project is not None
    failed = project.assets[index]
    assert failed.status is AssetStatus.ERROR
    assert failed.content == ""
    assert failed.metadata == {}
    assert orchestrator.step is GenerationStep.COMPLETED
    assert sleep.delays == [1.5, 1.5, 1.5]
    assert any(f"ERROR: {label} FAILED" in line for line in orchestrator.logs)


def test_script_failure_is_fatal_and_nothing_is_saved() -> None:
    client = _FakeClient(fail=("script",))
    store = _FakeStore()
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(client=client, store=store, sleep=sleep)

    result = asyncio.run(orchestrator.execute("Condo Landmark 81"))

    assert result is None
    assert orchestrator.step is GenerationStep.FAILED
    assert orchestrator.is_busy is False
    assert client.calls == [("script", "Condo Landmark 81")]
    assert store.saved == []
    assert sleep.delays == []
    assert orchestrator.assets == []
    assert orchestrator.logs[0].endswith("CRITICAL FAILURE IN PIPELINE.")


@pytest.mark.parametrize("topic", ["", "   "])
def test_empty_topic_is_a_no_op(topic: str) -> None:
    client = _FakeClient()
    store = _FakeStore()
    orchestrator = _orchestrator(client=client, store=store)
    events = _collect(orchestrator)

    result = asyncio.run(orchestrator.execute(topic))

    assert result is None
    assert orchestrator.step is GenerationStep.IDLE
    assert orchestrator.logs == []
    assert events == []
    assert client.calls == []
    assert store.saved == []


def test_storage_failure_keeps_run_completed() -> None:
    store = _FakeStore(error=StorageError("disk full"))
    orchestrator = _orchestrator(store=store)
    events = _collect(orchestrator)

    project = asyncio.run(orchestrator.execute("Townhouse Phu My Hung"))

    assert project is not None
    assert orchestrator.step is GenerationStep.COMPLETED
    assert orchestrator.logs[0].endswith("ERROR: FAILED TO ARCHIVE PROJECT (STORAGE ERROR)")
    assert any(isinstance(event, ArchiveFailed) for event in events)
    assert not any(isinstance(event, ProjectArchived) for event in events)


def test_unexpected_store_error_is_contained() -> None:
    store = _FakeStore(error=OSError("disk full"))
    orchestrator = _orchestrator(store=store)
    events = _collect(orchestrator)

    project = asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    assert project is not None
    assert orchestrator.step is GenerationStep.COMPLETED
    assert orchestrator.logs[0].endswith("ERROR: FAILED TO ARCHIVE PROJECT (disk full)")
    failed = [event for event in events if isinstance(event, ArchiveFailed)]
    assert [event.project_id for event in failed] == [project.id]
    assert failed[0].error == "disk full"
    assert isinstance(events[-1], ArchiveFailed)


def test_unexpected_store_error_does_not_break_the_stream() -> None:
    orchestrator = _orchestrator(store=_FakeStore(error=OSError("disk full")), stage_delay_s=0)

    async def _scenario() -> list:
        return [event async for event in orchestrator.run("Penthouse Saigon Pearl")]

    events = asyncio.run(_scenario())

    assert any(isinstance(event, ProjectReady) for event in events)
    assert isinstance(events[-1], ArchiveFailed)
    assert orchestrator.step is GenerationStep.COMPLETED


def test_logs_are_timestamped_newest_first_and_cleared_per_run() -> None:
    orchestrator = _orchestrator()

    asyncio.run(orchestrator.execute("Shophouse Vinhomes"))
    first_run = orchestrator.logs
    asyncio.run(orchestrator.execute("Shophouse Vinhomes"))

    assert first_run[0].endswith("PROJECT ARCHIVED TO DB.")
    assert first_run[-1].endswith("INITIATING ESTATE PROTOCOL...")
    assert all(re.match(r"^\[\d{2}:\d{2}:\d{2}\] ", line) for line in first_run)
    assert sum("INITIATING ESTATE PROTOCOL" in line for line in orchestrator.logs) == 1
    assert len(orchestrator.logs) == len(first_run)


def test_execute_rejects_a_second_run_while_busy() -> None:
    client = _BlockingVoiceClient()
    orchestrator = _orchestrator(client=client, stage_delay_s=0)

    async def _scenario() -> None:
        task = asyncio.create_task(orchestrator.execute("Biet thu Ecopark"))
        await client.entered.wait()
        assert orchestrator.is_busy is True
        assert orchestrator.step is GenerationStep.VOICING
        with pytest.raises(PipelineBusyError):
            await orchestrator.execute("Another topic")
        client.release.set()
        await task

    asyncio.run(_scenario())

    assert orchestrator.step is GenerationStep.COMPLETED
    assert [call[0] for call in client.calls].count("script") == 1


def test_missing_credential_is_rejected_before_any_stage() -> None:
    client = _FakeClient()
    orchestrator = _orchestrator(client=client, credentials=StaticCredentialProvider(""))

    with pytest.raises(MissingCredentialError):
        asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    assert orchestrator.step is GenerationStep.IDLE
    assert orchestrator.logs == []
    assert client.calls == []


def test_run_streams_events_in_pipeline_order() -> None:
    orchestrator = _orchestrator(stage_delay_s=0)

    async def _scenario() -> list:
        return [event async for event in orchestrator.run("Penthouse Saigon Pearl")]

    events = asyncio.run(_scenario())

    steps = [event.step for event in events if isinstance(event, StepChanged)]
    assert steps == [
        GenerationStep.SCRIPTING,
        GenerationStep.VOICING,
        GenerationStep.VISUALIZING,
        GenerationStep.FILMING,
        GenerationStep.COMPLETED,
    ]
    assert isinstance(events[1], RunStarted)
    added = [event.asset for event in events if isinstance(event, AssetAdded)]
    assert [asset.kind for asset in added] == [
        AssetKind.SCRIPT,
        AssetKind.AUDIO,
        AssetKind.THUMBNAIL,
        AssetKind.VIDEO,
    ]
    assert all(asset.status is not AssetStatus.PENDING for asset in added)
    ready = next(i for i, event in enumerate(events) if isinstance(event, ProjectReady))
    archived = next(i for i, event in enumerate(events) if isinstance(event, ProjectArchived))
    assert ready < archived
    assert isinstance(events[-1], ProjectArchived)
    assert sum(isinstance(event, LogAdded) for event in events) == len(orchestrator.logs)


def test_cancelling_a_run_fails_it_without_archiving() -> None:
    client = _BlockingVoiceClient()
    store = _FakeStore()
    orchestrator = _orchestrator(client=client, store=store, stage_delay_s=0)

    async def _scenario() -> None:
        task = asyncio.create_task(orchestrator.execute("Can ho Masteri"))
        await client.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    assert orchestrator.step is GenerationStep.FAILED
    assert orchestrator.logs[0].endswith("PIPELINE CANCELLED.")
    assert store.saved == []


def test_listener_errors_do_not_abort_the_run() -> None:
    orchestrator = _orchestrator()

    def _broken(_event) -> None:
        raise ValueError("listener bug")

    orchestrator.subscribe(_broken)
    project = asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    assert project is not None
    assert orchestrator.step is GenerationStep.COMPLETED


def test_unsubscribe_stops_delivery() -> None:
    orchestrator = _orchestrator()
    events: list = []
    unsubscribe = orchestrator.subscribe(events.append)
    unsubscribe()

    asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    assert events == []


def test_assets_property_returns_copies() -> None:
    orchestrator = _orchestrator()
    asyncio.run(orchestrator.execute("Penthouse Saigon Pearl"))

    snapshot = orchestrator.assets
    snapshot[0].content = "tampered"

    assert orchestrator.assets[0].content == "Kịch bản cho Penthouse Saigon Pearl"


def test_load_project_restores_assets_and_logs() -> None:
    orchestrator = _orchestrator()
    archived = Project(
        topic="Villa Thu Duc",
        created_at=FIXED_NOW,
        assets=[
            GeneratedAsset(kind=AssetKind.SCRIPT, content="script", status=AssetStatus.SUCCESS),
            GeneratedAsset(kind=AssetKind.AUDIO, content="", status=AssetStatus.ERROR),
        ],
    )

    orchestrator.load_project(archived)

    assert orchestrator.step is GenerationStep.COMPLETED
    assert orchestrator.project_id == archived.id
    assert orchestrator.logs == [
        "[SYSTEM] ARCHIVE LOADED: VILLA THU DUC",
        "[SYSTEM] RESTORED 2 ASSETS.",
    ]
    assert [asset.id for asset in orchestrator.assets] == [asset.id for asset in archived.assets]


def test_load_project_is_rejected_while_busy() -> None:
    orchestrator = _orchestrator()
    orchestrator.step = GenerationStep.FILMING

    with pytest.raises(PipelineBusyError):
        orchestrator.load_project(Project(topic="Villa Thu Duc"))


def test_build_orchestrator_accepts_any_credential_provider() -> None:
    credentials = StaticCredentialProvider("static-key")
    store = _FakeStore()

    orchestrator = build_orchestrator(credentials=credentials, store=store)

    assert orchestrator.credentials is credentials
    assert orchestrator.store is store
    assert orchestrator.client.config.api_key == "static-key"
