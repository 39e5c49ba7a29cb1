class RenderError(RuntimeError):
    """An ffmpeg/ffprobe stage of the video pipeline failed."""
