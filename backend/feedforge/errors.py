"""Error taxonomy for feed generation and delivery.

Only ``ConfigError``, ``FeedNotFound`` and ``ConcurrentGenerationInProgress``
reach synchronous callers. ``GenerationError`` subclasses are caught by the
pipeline and recorded on the history row; ``DispatchError`` is recorded per
webhook attempt and never propagates.
"""


class FeedForgeError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str = "", code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class FeedNotFound(FeedForgeError):
    code = "feed_not_found"
    status_code = 404


class ArtifactNotFound(FeedForgeError):
    code = "artifact_not_found"
    status_code = 404


class ConfigError(FeedForgeError):
    code = "invalid_config"
    status_code = 400


class ConcurrentGenerationInProgress(FeedForgeError):
    code = "generation_in_progress"
    status_code = 409


class GenerationError(FeedForgeError):
    """Failure inside a pipeline run, after the generation lock is held."""
    code = "generation_failed"


class SourceError(GenerationError):
    code = "source_error"


class SerializationError(GenerationError):
    code = "serialization_error"


class StorageError(GenerationError):
    code = "storage_error"


class GenerationTimeout(GenerationError):
    code = "timeout"


class DispatchError(FeedForgeError):
    code = "dispatch_error"

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.response_status = status_code
