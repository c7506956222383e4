from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
import json
import logging
from os import getenv
from typing import Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from db.session import init_db
from db.store import ProjectStore, StorageError
from genai.errors import MissingCredentialError
from pipeline.board import AssetBoard, final_cut
from pipeline.factory import build_orchestrator
from pipeline.orchestrator import PipelineBusyError, PipelineOrchestrator
from pipeline.types import GenerationOptions

logger = logging.getLogger(__name__)

app = FastAPI(title="Estate Vision API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Runtime:
    orchestrator: PipelineOrchestrator
    board: AssetBoard
    store: ProjectStore


_RUNTIME: Runtime | None = None
_BACKGROUND: set[asyncio.Task] = set()


def _runtime() -> Runtime:
    global _RUNTIME
    if _RUNTIME is None:
        init_db()
        store = ProjectStore()
        orchestrator = build_orchestrator(store=store)
        board = AssetBoard(log=orchestrator.note)
        orchestrator.subscribe(board.on_event)
        _RUNTIME = Runtime(orchestrator=orchestrator, board=board, store=store)
    return _RUNTIME


def _log_task_result(task: asyncio.Task) -> None:
    _BACKGROUND.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background pipeline run failed: %s", exc)


class RunRequest(BaseModel):
    topic: str = Field(default="")
    resolution: Literal["720p", "1080p"] = Field(default="720p")
    thumbnail_style: Literal[
        "Luxury", "Modern", "Classic", "Minimalist", "Rustic", "Cyberpunk", "Cinematic"
    ] = Field(default="Luxury")


class UploadRequest(BaseModel):
    file_name: str
    mime_type: str
    content_base64: str


def _check_run(runtime: Runtime, request: RunRequest) -> GenerationOptions:
    if not request.topic.strip():
        raise HTTPException(status_code=400, detail="topic_required")
    orchestrator = runtime.orchestrator
    if orchestrator.is_busy:
        raise HTTPException(status_code=409, detail="pipeline_busy")
    credentials = orchestrator.credentials
    if credentials is not None and not credentials.has_credential():
        raise HTTPException(status_code=401, detail="credential_missing")
    return GenerationOptions(resolution=request.resolution, thumbnail_style=request.thumbnail_style)


def _pipeline_payload(runtime: Runtime) -> dict:
    orchestrator = runtime.orchestrator
    displayed = runtime.board.displayed(orchestrator.assets)
    cut = final_cut(displayed)
    return jsonable_encoder(
        {
            "step": orchestrator.step.value,
            "busy": orchestrator.is_busy,
            "project_id": orchestrator.project_id,
            "topic": orchestrator.topic,
            "logs": orchestrator.logs,
            "assets": [asset.to_dict() for asset in displayed],
            "final_cut": (
                {"video": cut[0].to_dict(), "audio": cut[1].to_dict()} if cut is not None else None
            ),
        }
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/credential")
def credential_status() -> dict:
    credentials = _runtime().orchestrator.credentials
    return {"connected": credentials is None or credentials.has_credential()}


@app.get("/pipeline")
def pipeline_state() -> dict:
    return _pipeline_payload(_runtime())


@app.post("/pipeline/runs", status_code=202)
async def start_run(request: RunRequest) -> dict:
    runtime = _runtime()
    options = _check_run(runtime, request)
    task = asyncio.create_task(runtime.orchestrator.execute(request.topic, options))
    _BACKGROUND.add(task)
    task.add_done_callback(_log_task_result)
    # Let the run claim the pipeline before responding.
    await asyncio.sleep(0)
    return {
        "accepted": True,
        "project_id": runtime.orchestrator.project_id,
        "step": runtime.orchestrator.step.value,
    }


@app.post("/pipeline/runs/stream")
async def stream_run(request: RunRequest) -> StreamingResponse:
    runtime = _runtime()
    options = _check_run(runtime, request)

    async def _lines():
        # The pipeline is only claimed once the body is iterated.
        try:
            async for event in runtime.orchestrator.run(request.topic, options):
                yield json.dumps(jsonable_encoder(event.to_dict()), ensure_ascii=False) + "\n"
        except PipelineBusyError:
            yield json.dumps({"event": "error", "detail": "pipeline_busy"}) + "\n"
        except MissingCredentialError:
            yield json.dumps({"event": "error", "detail": "credential_missing"}) + "\n"

    return StreamingResponse(_lines(), media_type="application/x-ndjson")


@app.post("/uploads")
def upload_media(request: UploadRequest) -> dict:
    runtime = _runtime()
    if runtime.orchestrator.is_busy:
        raise HTTPException(status_code=409, detail="pipeline_busy")
    try:
        data = base64.b64decode(request.content_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        runtime.orchestrator.note("[UPLOAD] ERROR READING FILE")
        raise HTTPException(status_code=400, detail="upload_unreadable") from exc
    asset = runtime.board.add_upload(request.file_name, request.mime_type, data)
    if asset is None:
        raise HTTPException(status_code=415, detail="unsupported_media_type")
    return {"asset": asset.to_dict()}


@app.get("/projects")
def list_projects(limit: int = Query(default=50, ge=1, le=200)) -> dict:
    runtime = _runtime()
    try:
        projects = runtime.store.list_all()
    except StorageError as exc:
        logger.error("History unavailable: %s", exc)
        runtime.orchestrator.note("ERROR: HISTORY DATABASE UNAVAILABLE")
        raise HTTPException(status_code=503, detail="history_unavailable") from exc
    items = [
        {
            "id": project.id,
            "topic": project.topic,
            "created_at": project.created_at,
            "asset_count": len(project.assets),
        }
        for project in projects[:limit]
    ]
    return jsonable_encoder({"items": items, "total": len(projects)})


@app.post("/projects/{project_id}/load")
def load_project(project_id: str) -> dict:
    runtime = _runtime()
    try:
        project = runtime.store.get(project_id)
    except StorageError as exc:
        raise HTTPException(status_code=503, detail="history_unavailable") from exc
    if project is None:
        raise HTTPException(status_code=404, detail="project_not_found")
    try:
        runtime.orchestrator.load_project(project)
    except PipelineBusyError as exc:
        raise HTTPException(status_code=409, detail="pipeline_busy") from exc
    runtime.board.clear()
    return _pipeline_payload(runtime)
