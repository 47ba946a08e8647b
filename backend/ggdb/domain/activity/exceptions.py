"""Domain-level exceptions for game engagement activity."""

from __future__ import annotations


class ActivityError(Exception):
    """Base class for activity feature errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class GameNotFound(ActivityError):
    reason = "game_not_found"


class ActivityNotFound(ActivityError):
    reason = "activity_not_found"


class ActivityForbidden(ActivityError):
    reason = "forbidden"


class ActivityValidationError(ActivityError):
    reason = "invalid_payload"
