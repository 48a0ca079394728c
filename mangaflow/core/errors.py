"""
Exception hierarchy for the layout and rendering core.

Degenerate regions are not errors: the layout engine returns an empty,
``degenerate`` result instead of raising.
"""


class MangaFlowError(Exception):
    """Base class for all errors raised by mangaflow."""


class InvalidStyle(MangaFlowError, ValueError):
    """Malformed layout style (min font above max, negative padding, ...)."""


class MeasurementBackendError(MangaFlowError):
    """The injected text measurement backend or font resolution failed."""


class ImageDecodeError(MangaFlowError):
    """The source raster could not be decoded."""


class StageTimeoutError(MangaFlowError):
    """A pipeline stage exceeded its wall-clock budget."""

    def __init__(self, stage: str, timeout_s: float):
        super().__init__(f"Stage '{stage}' timed out after {timeout_s:.1f}s")
        self.stage = stage
        self.timeout_s = timeout_s


class StageFailedError(MangaFlowError):
    """A pipeline stage kept failing after all retry attempts."""

    def __init__(self, stage: str, attempts: int, last_error: BaseException):
        super().__init__(f"Stage '{stage}' failed after {attempts} attempt(s): {last_error}")
        self.stage = stage
        self.attempts = attempts
        self.last_error = last_error
