# src/dvo/errors.py
from __future__ import annotations


class DvoError(Exception):
    """Base class for all errors raised by the tracking core."""


class ConfigError(DvoError):
    """Invalid configuration, camera resolution or pyramid setup."""


class DatasetError(DvoError):
    """Missing, unreadable or too small image sequence."""


class ContractViolation(DvoError):
    """A caller broke a precondition of the core (e.g. promoting a frame outside the window)."""


class TrackingError(DvoError):
    """
    Recoverable per-frame tracking failure.

    The aligner never lets these escape: they are stored on the PoseEstimate
    and the caller decides the fallback.
    """

    code = "TRACKING"

    def __init__(self, message: str, *, level: int | None = None, **details):
        super().__init__(message)
        self.level = level
        self.details = details

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "message": str(self), "level": self.level, **self.details}


class TrackingDegenerate(TrackingError):
    """Too few candidates or valid residuals (insufficient texture / overlap)."""

    code = "DEGENERATE"


class TrackingDiverged(TrackingError):
    """Photometric cost kept increasing and could not be damped."""

    code = "DIVERGED"
