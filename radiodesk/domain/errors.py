class RateLimited(Exception):
    """Backend throttled the request. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(Exception):
    """Transient backend or network failure. Retrying may succeed."""


class PermanentFailure(Exception):
    """Non-retriable failure due to invalid input rejected by the backend."""


class NotFound(Exception):
    """Requested resource was not found."""


class Unauthorized(PermanentFailure):
    """Missing, expired or rejected API token."""


class ScheduleValidationError(ValueError):
    """Schedule input rejected locally, before any persistence call."""


class PlaylistValidationError(ValueError):
    """Playlist input rejected locally, before any persistence call."""


class PlaybackOwnershipError(Exception):
    """A component tried to drive a playback session it does not own."""


class MediaPlaybackError(Exception):
    """The media player failed to load or play the current track."""
