"""Post-call video rendering.

- audio_analysis.py: duration and peak waveform (ffprobe / ffmpeg)
- renderer.py: the 1080x1920 call video (ffmpeg)
- outro.py: outro concatenation with fallback to the main render
- pipeline.py: the end-to-end render and the pending-video batch
"""

from .errors import RenderError
from .pipeline import VideoRenderPipeline, process_pending_videos

__all__ = ['RenderError', 'VideoRenderPipeline', 'process_pending_videos']
