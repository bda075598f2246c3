"""Errors raised while talking to the GitHub API."""

from datetime import datetime, timezone
from typing import Optional


class GitHubAPIError(Exception):
    """A request failed; the current fetch sequence cannot continue."""

    def __init__(
        self, message: str, status: Optional[int] = None, url: Optional[str] = None
    ):
        super().__init__(message)
        self.status = status
        self.url = url


class RateLimitError(GitHubAPIError):
    """The API refused the call until ``reset_at``."""

    def __init__(
        self,
        message: str,
        reset_at: datetime,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, status=status, url=url)
        self.reset_at = reset_at

    def seconds_until_reset(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.reset_at - now).total_seconds())


class TransientAPIError(GitHubAPIError):
    """Network failure, timeout or 5xx answer; worth retrying a few times."""


class NotFoundError(GitHubAPIError):
    pass


class AuthError(GitHubAPIError):
    """Credentials could not be built or exchanged."""
