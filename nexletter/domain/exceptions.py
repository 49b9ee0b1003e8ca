from typing import Optional


class NexletterException(Exception):
    """Base exception for all fetcher-related errors."""
    pass

class ConfigurationError(NexletterException):
    """Raised when credentials or the fetch window cannot be resolved."""
    pass

class GitHubApiError(NexletterException):
    """Raised when the GitHub REST API returns a non-retryable error."""
    def __init__(self, status: int, message: str = "GitHub API request failed."):
        self.status = status
        super().__init__(f"{message} (status {status})")

class RateLimitExceededException(NexletterException):
    """Raised when a configured rate-limit retry cap is exhausted."""
    def __init__(self, retry_after: float, message: str = "GitHub API rate limit exceeded."):
        self.retry_after = retry_after
        super().__init__(f"{message} Retry after: {retry_after}s")

class SlackApiError(NexletterException):
    """Raised when a Slack Web API call answers with ``ok: false``."""
    def __init__(self, error: str, retry_after: Optional[float] = None):
        self.error = error
        self.retry_after = retry_after
        super().__init__(f"Slack API error: {error}")
