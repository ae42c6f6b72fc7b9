"""
Error taxonomy.

Transient (retried by the walker): HopTimeout, HopConnectionError, 5xx HopHttpError.
Everything else is terminal for the current rule set.
"""
from __future__ import annotations
from typing import Optional


class StreamhopError(Exception):
    stage = "engine"
    retryable = False

    @property
    def kind(self) -> str:
        return type(self).__name__


# ──────────────────────────────
#  Hop failures
# ──────────────────────────────
class HopFailure(StreamhopError):
    stage = "hop"

    def __init__(self, message: str, *, hop_index: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.hop_index = hop_index
        self.url = url


class HopTimeout(HopFailure):
    retryable = True


class HopConnectionError(HopFailure):
    retryable = True


class HopHttpError(HopFailure):
    def __init__(self, status: int, **kwargs):
        super().__init__(f"HTTP {status}", **kwargs)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status >= 500


class NextHopNotFound(HopFailure):
    pass


class FrameNotFound(HopFailure):
    pass


class HopLimitExceeded(HopFailure):
    pass


class DeadlineExceeded(HopFailure):
    pass


# ──────────────────────────────
#  Payload / decode failures
# ──────────────────────────────
class PayloadNotFound(StreamhopError):
    stage = "locate"


class DecodeExhausted(StreamhopError):
    stage = "codec"

    def __init__(self, message: str = "no strategy produced an acceptable URL", *, attempted: int = 0):
        super().__init__(message)
        self.attempted = attempted


class RecurrenceViolation(StreamhopError):
    """Raised offline when a sample does not follow the positional-feedback model."""
    stage = "bootstrap"

    def __init__(self, message: str, *, position: Optional[int] = None):
        super().__init__(message)
        self.position = position
