"""Exception types raised by rtsim."""

from __future__ import annotations


class RtsimError(Exception):
    """Base exception for all rtsim errors."""


class TrackError(RtsimError):
    """Raised when a track has malformed windows or mismatched shapes."""


class ResamplingError(RtsimError):
    """Raised when read counts cannot be resampled (negative or non-finite)."""


class EvaluationError(RtsimError):
    """Raised when accuracy rates are undefined for the given inputs."""


class BackendError(RtsimError):
    """Raised when the statistical backend fails or returns misaligned output."""

    def __init__(
        self,
        message: str = "",
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class Cancelled(RtsimError):
    """Raised inside stages once their cancellation token has been set."""
