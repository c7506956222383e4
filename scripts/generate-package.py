#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import asyncio
import logging

from db.session import init_db
from genai.credentials import EnvCredentialProvider
from pipeline.events import AssetAdded, LogAdded, ProjectArchived, ProjectReady, StepChanged
from pipeline.factory import build_orchestrator
from pipeline.types import (
    DEFAULT_THUMBNAIL_STYLE,
    DEFAULT_VIDEO_RESOLUTION,
    THUMBNAIL_STYLES,
    VIDEO_RESOLUTIONS,
    GenerationOptions,
    GenerationStep,
)


async def _run(topic: str, options: GenerationOptions, credentials: EnvCredentialProvider) -> int:
    orchestrator = build_orchestrator(credentials=credentials)
    async for event in orchestrator.run(topic, options):
        if isinstance(event, LogAdded):
            print(f"[log] {event.line}")
        elif isinstance(event, StepChanged):
            print(f"[step] {event.step.value}")
        elif isinstance(event, AssetAdded):
            asset = event.asset
            print(
                f"[asset] kind={asset.kind.value} status={asset.status.value} bytes={len(asset.content)}"
            )
        elif isinstance(event, ProjectReady):
            print(f"[project] id={event.project.id} assets={len(event.project.assets)}")
        elif isinstance(event, ProjectArchived):
            print(f"[archive] id={event.project_id}")
    print(f"[result] step={orchestrator.step.value}")
    return 0 if orchestrator.step is GenerationStep.COMPLETED else 1


def main() -> None:
    parser = ArgumentParser(description="Generate a marketing package for one property topic")
    parser.add_argument("topic")
    parser.add_argument("--resolution", choices=VIDEO_RESOLUTIONS, default=DEFAULT_VIDEO_RESOLUTION)
    parser.add_argument("--style", choices=THUMBNAIL_STYLES, default=DEFAULT_THUMBNAIL_STYLE)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.topic.strip():
        print("[error] topic is empty")
        raise SystemExit(2)

    credentials = EnvCredentialProvider()
    if not credentials.has_credential():
        credentials.request_credential()

    init_db()
    options = GenerationOptions(resolution=args.resolution, thumbnail_style=args.style)
    raise SystemExit(asyncio.run(_run(args.topic, options, credentials)))


if __name__ == "__main__":
    main()
