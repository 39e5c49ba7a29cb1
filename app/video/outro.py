"""Appends the branded outro clip to a rendered call video."""

from __future__ import annotations

import os
import subprocess

from app.logging_config import get_logger
from app.video.renderer import WIDTH, HEIGHT

logger = get_logger(__name__)


def concat_command(ffmpeg: str, main_path: str, outro_path: str, output_path: str, fps: int = 60) -> list[str]:
    # Both clips are normalized to one size, frame rate and sample rate
    # before concat so audio and video stay in sync.
    normalize = f"scale={WIDTH}:{HEIGHT}:force_original_aspect_ratio=decrease," \
                f"pad={WIDTH}:{HEIGHT}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps}"
    filter_graph = ";".join([
        f"[0:v:0]{normalize}[v0]",
        f"[1:v:0]{normalize}[v1]",
        "[0:a:0]aresample=44100[a0]",
        "[1:a:0]aresample=44100[a1]",
        "[v0][a0][v1][a1]concat=n=2:v=1:a=1[outv][outa]",
    ])
    return [
        ffmpeg, "-y", "-v", "error",
        "-i", main_path, "-i", outro_path,
        "-filter_complex", filter_graph,
        "-map", "[outv]", "-map", "[outa]",
        "-c:v", "libx264", "-c:a", "aac", "-preset", "fast", "-crf", "23",
        output_path,
    ]


def concatenate_with_outro(
    main_path: str,
    outro_path: str,
    output_path: str,
    ffmpeg: str = "ffmpeg",
    timeout_s: float = 600.0,
) -> str:
    """
    Returns the path of the video to publish: `output_path` when the outro
    was appended, otherwise `main_path` unchanged. Never raises.
    """
    if not outro_path or not os.path.exists(outro_path):
        logger.info("outro_not_found", outro_path=outro_path)
        return main_path

    try:
        proc = subprocess.run(
            concat_command(ffmpeg, main_path, outro_path, output_path),
            capture_output=True,
            timeout=timeout_s,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("outro_concat_failed", error=str(e))
        return main_path

    if proc.returncode != 0 or not os.path.exists(output_path):
        logger.warning(
            "outro_concat_failed",
            returncode=proc.returncode,
            stderr=proc.stderr.decode(errors="replace")[-500:],
        )
        return main_path

    logger.info("outro_appended", output_path=output_path)
    return output_path
