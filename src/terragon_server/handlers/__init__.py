"""Streaming handlers."""

from terragon_server.handlers.streaming_handler import ProgressStream, StreamAborted

__all__ = ["ProgressStream", "StreamAborted"]
