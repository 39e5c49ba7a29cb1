"""Renders the vertical call video with ffmpeg.

Composition (1080x1920): a title card for the intro, then the call audio
with a waveform animation. The waveform track is synthesized from the
analyzed peaks; an empty waveform falls back to a generated animated wave.
"""

from __future__ import annotations

import math
import os
import subprocess
import sys
from array import array
from typing import Optional

from pydantic import BaseModel, Field

from app.config import config
from app.logging_config import get_logger
from app.video.errors import RenderError

logger = get_logger(__name__)

WIDTH = 1080
HEIGHT = 1920
CRF = 18
PIXEL_FORMAT = "yuv420p"
AUDIO_BITRATE = "192k"
BACKGROUND_COLOR = "0x8B0000"
ENVELOPE_SAMPLE_RATE = 8000


class RenderJob(BaseModel):
    call_id: str
    child_name: str
    audio_path: str
    audio_duration_seconds: float
    waveform: list[float] = Field(default_factory=list)
    points_per_second: int = 100
    fps: int = 60
    intro_seconds: int = 2

    @property
    def total_frames(self) -> int:
        return self.intro_seconds * self.fps + math.ceil(self.audio_duration_seconds * self.fps)

    @property
    def total_seconds(self) -> float:
        return self.total_frames / self.fps


def escape_drawtext(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("'", "’")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


def write_envelope_track(waveform: list[float], points_per_second: int, dest_path: str) -> None:
    """
    Turn peak values into a mono s16le track: one carrier cycle per peak,
    scaled by the peak, so ffmpeg's showwaves draws the recorded loudness.
    """
    per_point = max(2, ENVELOPE_SAMPLE_RATE // max(1, points_per_second))
    carrier = [math.sin(2 * math.pi * k / per_point) for k in range(per_point)]
    samples = array("h")
    for peak in waveform:
        amp = max(0.0, min(1.0, peak)) * 32767 * 0.9
        samples.extend(int(amp * c) for c in carrier)
    if sys.byteorder != "little":
        samples.byteswap()
    with open(dest_path, "wb") as f:
        samples.tofile(f)


class FfmpegVideoRenderer:
    def __init__(self, ffmpeg: str = "ffmpeg", timeout_s: float = 900.0):
        self.ffmpeg = ffmpeg
        self.timeout_s = timeout_s

    @classmethod
    def from_config(cls) -> "FfmpegVideoRenderer":
        return cls(ffmpeg=config.FFMPEG_BINARY, timeout_s=config.RENDER_TIMEOUT_SECONDS)

    def build_command(self, job: RenderJob, output_path: str, envelope_path: Optional[str]) -> list[str]:
        total = f"{job.total_seconds:.3f}"
        delay_ms = job.intro_seconds * 1000
        title = escape_drawtext(f"A Call with Santa for {job.child_name}")

        if envelope_path:
            wave_input = ["-f", "s16le", "-ar", str(ENVELOPE_SAMPLE_RATE), "-ac", "1", "-i", envelope_path]
        else:
            # Synthetic wave: a 220 Hz tone with a slow swelling amplitude.
            wave_input = [
                "-f", "lavfi",
                "-i", f"aevalsrc=0.8*abs(sin(PI*t))*sin(2*PI*220*t):s={ENVELOPE_SAMPLE_RATE}:d={total}",
            ]

        filter_graph = ";".join([
            f"[1:a]adelay={delay_ms}:all=1,apad,atrim=0:{total}[a]",
            f"[2:a]adelay={delay_ms}:all=1,apad,atrim=0:{total},"
            f"showwaves=s={WIDTH - 120}x480:mode=cline:rate={job.fps}:colors=white[wave]",
            f"[0:v]drawtext=text='{title}':fontcolor=white:fontsize=72:x=(w-text_w)/2:y=h*0.18[bg]",
            "[bg][wave]overlay=x=(W-w)/2:y=(H-h)/2[v]",
        ])

        return [
            self.ffmpeg, "-y", "-v", "error",
            "-f", "lavfi", "-i", f"color=c={BACKGROUND_COLOR}:s={WIDTH}x{HEIGHT}:r={job.fps}:d={total}",
            "-i", job.audio_path,
            *wave_input,
            "-filter_complex", filter_graph,
            "-map", "[v]", "-map", "[a]",
            "-c:v", "libx264", "-crf", str(CRF), "-pix_fmt", PIXEL_FORMAT, "-r", str(job.fps),
            "-c:a", "aac", "-b:a", AUDIO_BITRATE,
            "-frames:v", str(job.total_frames),
            output_path,
        ]

    def render(self, job: RenderJob, output_path: str) -> str:
        """Render `job` to `output_path`. Raises RenderError."""
        envelope_path = None
        if job.waveform:
            envelope_path = f"{output_path}.envelope.pcm"
            write_envelope_track(job.waveform, job.points_per_second, envelope_path)

        cmd = self.build_command(job, output_path, envelope_path)
        logger.info(
            "video_render_started",
            call_id=job.call_id,
            total_frames=job.total_frames,
            synthetic_waveform=envelope_path is None,
        )
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout_s, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RenderError(f"ffmpeg render failed: {e}") from e
        finally:
            if envelope_path and os.path.exists(envelope_path):
                os.remove(envelope_path)

        if proc.returncode != 0:
            raise RenderError(f"ffmpeg render exited with {proc.returncode}: {proc.stderr.decode(errors='replace')[-500:]}")
        if not os.path.exists(output_path):
            raise RenderError("ffmpeg produced no output file")

        logger.info("video_render_finished", call_id=job.call_id, size_bytes=os.path.getsize(output_path))
        return output_path
