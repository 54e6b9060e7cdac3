"""Failure types raised by the media pipeline.

Each error carries a short diagnostic ``message`` that is safe to persist on
the video row as ``processing_error``.
"""

MAX_ERROR_LENGTH = 500


class ProcessingError(Exception):
    default_message = "Processing failed"

    def __init__(self, message: str = None):
        self.message = (message or self.default_message)[:MAX_ERROR_LENGTH]
        super().__init__(self.message)


class SourceNotFoundError(ProcessingError):
    default_message = "Source file not found"


class InvalidSourceError(ProcessingError):
    default_message = "Source file is not a readable video"


class TranscodeError(ProcessingError):
    default_message = "Transcoding failed"


class StorageError(ProcessingError):
    default_message = "Object storage operation failed"


class InvalidTransitionError(ProcessingError):
    default_message = "Invalid video status transition"
