"""Error types for the job lifecycle engine.

Everything inherits from ``ForaError``.  Pipeline errors end a job in FAILED;
they are caught at the worker boundary and never reach a caller.
"""


class ForaError(Exception):
    """Base exception for all service failures."""


class JobValidationError(ForaError):
    """Raised by intake when a submission is rejected before a job exists."""


class PipelineError(ForaError):
    """A download, render or upload step failed for a job."""


class InputResolutionError(PipelineError):
    """The job's source image could not be fetched."""


class RenderError(PipelineError):
    """The renderer could not produce a video."""


class BlobStorageError(PipelineError):
    """An upload to or delete from blob storage failed."""

