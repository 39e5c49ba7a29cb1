"""Audio analysis for the call video: duration and a coarse peak waveform.

Duration comes from ffprobe. The waveform is built from mono 16-bit PCM
decoded by ffmpeg, reduced to one normalized peak per window.
"""

from __future__ import annotations

import subprocess
import sys
from array import array

from pydantic import BaseModel, Field

from app.config import config
from app.logging_config import get_logger
from app.video.errors import RenderError

logger = get_logger(__name__)

PCM_SAMPLE_RATE = 8000


class AudioAnalysis(BaseModel):
    duration_seconds: float
    waveform: list[float] = Field(default_factory=list)  # 0..1 peaks; empty means "animate synthetically"
    sample_rate: int = PCM_SAMPLE_RATE


def fallback_analysis() -> AudioAnalysis:
    """Degraded-mode placeholder used when the recording cannot be analyzed."""
    return AudioAnalysis(duration_seconds=config.VIDEO_FALLBACK_DURATION_SECONDS, waveform=[])


def compute_peaks(samples: array, window: int) -> list[float]:
    """One peak per `window` samples, normalized so the loudest window is 1.0."""
    if window <= 0:
        raise ValueError("window must be positive")
    peaks = []
    for start in range(0, len(samples), window):
        chunk = samples[start:start + window]
        peaks.append(max(abs(s) for s in chunk) if chunk else 0)
    loudest = max(peaks, default=0)
    if loudest == 0:
        return [0.0 for _ in peaks]
    return [round(p / loudest, 4) for p in peaks]


class AudioAnalyzer:
    def __init__(
        self,
        ffprobe: str = "ffprobe",
        ffmpeg: str = "ffmpeg",
        points_per_second: int = 100,
        timeout_s: float = 120.0,
    ):
        self.ffprobe = ffprobe
        self.ffmpeg = ffmpeg
        self.points_per_second = points_per_second
        self.timeout_s = timeout_s

    @classmethod
    def from_config(cls) -> "AudioAnalyzer":
        return cls(
            ffprobe=config.FFPROBE_BINARY,
            ffmpeg=config.FFMPEG_BINARY,
            points_per_second=config.VIDEO_WAVEFORM_POINTS_PER_SECOND,
        )

    def _run(self, cmd: list[str]) -> bytes:
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout_s, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RenderError(f"{cmd[0]} failed: {e}") from e
        if proc.returncode != 0:
            stderr = proc.stderr.decode(errors="replace")[-500:]
            raise RenderError(f"{cmd[0]} exited with {proc.returncode}: {stderr}")
        return proc.stdout

    def probe_duration(self, path: str) -> float:
        out = self._run([
            self.ffprobe, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ])
        try:
            duration = float(out.decode().strip())
        except ValueError as e:
            raise RenderError(f"Unreadable duration from ffprobe: {out[:100]!r}") from e
        if duration <= 0:
            raise RenderError("Audio has no duration")
        return duration

    def waveform(self, path: str) -> list[float]:
        pcm = self._run([
            self.ffmpeg, "-v", "error", "-i", path,
            "-ac", "1", "-ar", str(PCM_SAMPLE_RATE),
            "-f", "s16le", "-",
        ])
        samples = array("h")
        samples.frombytes(pcm[: len(pcm) - len(pcm) % 2])
        if sys.byteorder != "little":
            samples.byteswap()
        return compute_peaks(samples, max(1, PCM_SAMPLE_RATE // self.points_per_second))

    def analyze(self, path: str) -> AudioAnalysis:
        """Raises RenderError if the file cannot be probed or decoded."""
        duration = self.probe_duration(path)
        peaks = self.waveform(path)
        logger.info("audio_analyzed", duration_seconds=duration, waveform_points=len(peaks))
        return AudioAnalysis(duration_seconds=duration, waveform=peaks)
