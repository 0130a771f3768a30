"""Error taxonomy for scan orchestration.

Job-creation errors (`ValidationError`, `NotFoundOrForbiddenError`, upstream
errors) propagate to the caller. Inside a running job, per-file errors
(`AdapterError`, `ParseError`, `UpstreamFetchError`) are recovered and noted on
the file's result; anything else ends the job as failed.
"""


class ScanError(Exception):
    """Base class for scan orchestration errors."""


class ValidationError(ScanError):
    """Bad or missing request parameters. No job is created."""


class NotFoundOrForbiddenError(ScanError):
    """Unknown or inaccessible repository, pull request or job."""


class AdapterError(ScanError):
    """Analysis provider unavailable (quota, rate limit, missing key)."""


class ParseError(ScanError):
    """Analysis provider returned something that is not the expected JSON."""


class UpstreamFetchError(ScanError):
    """Hosting platform call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamNotFoundError(UpstreamFetchError):
    """Hosting platform returned 404."""


class UpstreamForbiddenError(UpstreamFetchError):
    """Hosting platform refused access."""


class RateLimitedError(UpstreamFetchError):
    """Hosting platform rate limit exhausted."""


class JobFatalError(ScanError):
    """Error escaping the per-file recovery boundary; the job fails."""
