"""Exception taxonomy for the paint core."""


class PaintCoreError(RuntimeError):
    """Base class for engine-level failures surfaced to the front end."""


class InitializationError(PaintCoreError):
    """A model resource failed to load, or the engine is in its failed state."""


class ModelDownloadError(InitializationError):
    """Model files could not be fetched or cached."""


class PreconditionError(PaintCoreError):
    """An operation was invoked before initialization or embedding completed."""


class InferenceError(PaintCoreError):
    """A model ran but produced missing or unusable output."""

    def __init__(self, stage, message):
        self.stage = stage
        super().__init__(f"{stage} failed: {message}")
