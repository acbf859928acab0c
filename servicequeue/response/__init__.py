from .streaming import LiveStreamer, StreamFormat

__all__ = ["LiveStreamer", "StreamFormat"]
