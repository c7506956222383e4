#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.session import init_db
from db.store import ProjectStore


def main() -> None:
    parser = ArgumentParser(description="List archived marketing packages, newest first")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--assets", action="store_true", help="Show per-asset status lines")
    args = parser.parse_args()

    init_db()
    projects = ProjectStore().list_all()
    if not projects:
        print("[history] empty")
        return
    for project in projects[: args.limit]:
        created = project.created_at.isoformat() if project.created_at else "-"
        print(
            f"[project] id={project.id} created_at={created} assets={len(project.assets)} topic={project.topic!r}"
        )
        if args.assets:
            for asset in project.assets:
                print(f"[asset] id={asset.id} kind={asset.kind.value} status={asset.status.value}")


if __name__ == "__main__":
    main()
