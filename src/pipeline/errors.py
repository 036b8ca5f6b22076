"""Fatal pipeline errors.

Only these propagate out of ``DigestPipeline.execute()``. Per-key
collection failures, distribution failures, and notification failures
are absorbed inside the run.
"""


class PipelineError(Exception):
    """A fatal failure in one pipeline phase."""

    def __init__(self, phase: str, message: str):
        self.phase = phase
        super().__init__(message)


class CollectionError(PipelineError):
    """Every attempted SourceKey failed."""

    def __init__(self, message: str):
        super().__init__("collecting", message)


class SynthesisError(PipelineError):
    """The synthesis adapter failed or returned an invalid result."""

    def __init__(self, message: str):
        super().__init__("synthesizing", message)


class PersistenceError(PipelineError):
    """The digest could not be stored."""

    def __init__(self, message: str):
        super().__init__("persisting", message)
