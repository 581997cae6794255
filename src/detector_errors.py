from typing import Optional


class DetectorError(Exception):
    """Base class for failures raised by detector adapters and their collaborators."""

    kind = "error"

    def __init__(self, message: str = "", *, family: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.family = family


class PermissionDeniedError(DetectorError):
    """A required OS capability (screen recording, accessibility) is unavailable.

    Fatal to the detector family until the user remediates it.
    """

    kind = "permission"


class TransientExtractionError(DetectorError):
    """Capture or recognition failed for this round only."""

    kind = "transient"


class DetectorTimeoutError(TransientExtractionError):
    kind = "timeout"
