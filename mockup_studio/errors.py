"""
errors.py - failure taxonomy for Gemini calls and studio operations.

  ContentBlocked          safety / recitation block (prompt or finish reason)
  QuotaExhausted          429 / RESOURCE_EXHAUSTED / quota wording
  NoCredentialsAvailable  the key pool has nothing to hand out
  TransientProviderError  anything else the provider threw
  MalformedResponse       call succeeded but the payload is unusable

Classification prefers the structured google-genai APIError (code/status) and
falls back to substring matching on the message when the provider gives no
structured signal.
"""

from __future__ import annotations

from google.genai import errors as genai_errors

QUOTA_MARKERS   = ("quota", "limit", "429", "exhausted")
BLOCKED_MARKERS = ("safety", "blocked")
BUSY_MARKERS    = ("exhausted", "quota")


class StudioError(Exception):
    """Base class for every error raised by mockup_studio."""


class ContentBlocked(StudioError):
    def __init__(self, reason: str, stage: str = "prompt"):
        self.reason = reason
        self.stage = stage
        verb = "blocked" if stage == "prompt" else "stopped"
        super().__init__(f"Generation {verb}: {reason}")


class QuotaExhausted(StudioError):
    pass


class NoCredentialsAvailable(StudioError):
    def __init__(self, message: str = "No API keys configured or all keys are exhausted."):
        super().__init__(message)


class TransientProviderError(StudioError):
    pass


class MalformedResponse(StudioError):
    pass


class InsufficientCredits(StudioError):
    def __init__(self, needed: int, balance: int):
        self.needed = needed
        self.balance = balance
        super().__init__(f"Insufficient credits: need {needed}, have {balance}")


class AssetLoadError(StudioError):
    pass


def is_quota_error(exc: BaseException) -> bool:
    """True when the failure signals a provider-side rate or usage limit."""
    if isinstance(exc, QuotaExhausted):
        return True
    if isinstance(exc, genai_errors.APIError):
        if exc.code == 429 or (exc.status or "").upper() == "RESOURCE_EXHAUSTED":
            return True
    if getattr(exc, "status", None) == 429 or getattr(exc, "code", None) == 429:
        return True
    msg = str(exc).lower()
    return any(marker in msg for marker in QUOTA_MARKERS)


def translate_error(exc: BaseException) -> StudioError:
    """Map an arbitrary failure onto the taxonomy. StudioErrors pass through."""
    if isinstance(exc, StudioError):
        return exc
    if is_quota_error(exc):
        return QuotaExhausted(str(exc))
    return TransientProviderError(str(exc))


def failure_category(exc: BaseException) -> str:
    """User-facing bucket: 'blocked', 'busy' or 'failed'."""
    if isinstance(exc, ContentBlocked):
        return "blocked"
    if isinstance(exc, (QuotaExhausted, NoCredentialsAvailable)):
        return "busy"
    msg = str(exc).lower()
    if any(marker in msg for marker in BLOCKED_MARKERS):
        return "blocked"
    if any(marker in msg for marker in BUSY_MARKERS):
        return "busy"
    return "failed"
