#!/usr/bin/env python3
"""
Render call videos outside the web process.

    python scripts/video_worker.py                 # all pending videos
    python scripts/video_worker.py --call-id <id>  # one call (re-render)
"""

from __future__ import annotations

import argparse
import json
import sys

from app.clients import build_video_pipeline
from app.config import config
from app.database import init_db, session_scope
from app.db_models import VideoStatus
from app.services import CallService
from app.video.pipeline import process_pending_videos


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Render Santa call videos")
    parser.add_argument("--call-id", help="Render one call instead of the pending queue")
    parser.add_argument(
        "--limit",
        type=int,
        default=config.PENDING_VIDEO_BATCH_SIZE,
        help=f"Max pending videos to render (default: {config.PENDING_VIDEO_BATCH_SIZE})",
    )
    args = parser.parse_args(argv)

    init_db()
    with session_scope() as db:
        pipeline = build_video_pipeline(db)
        if args.call_id:
            call = CallService.get_call(db, args.call_id)
            if call is None:
                print(f"Call {args.call_id} not found", file=sys.stderr)
                return 1
            if VideoStatus(call.video_status) == VideoStatus.COMPLETED:
                CallService.set_video_status(db, call, VideoStatus.PENDING)
            result = pipeline.render(call.id, call.child_name)
            print(json.dumps(result.model_dump(), indent=2))
            return 0 if result.success else 1

        report = process_pending_videos(db, pipeline, args.limit)
        print(json.dumps(report.model_dump(by_alias=True), indent=2))
        return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
