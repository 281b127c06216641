"""Media service exception hierarchy.

Every error that can reach a client carries the HTTP status it maps to and
renders as a small ``{"error": message}`` JSON body.
"""

from typing import Dict, Optional


class MediaError(Exception):
    """Base exception for all media-related errors."""

    status_code = 500
    default_message = "Internal server error"
    has_body = True

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def headers(self) -> Dict[str, str]:
        return {}

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message}


class InvalidIdError(MediaError):
    """Source id failed format validation; never reaches I/O."""

    status_code = 400
    default_message = "Invalid video ID"


class InvalidTokenError(MediaError):
    """File token could not be decoded."""

    status_code = 400
    default_message = "Invalid file token"


class UnauthorizedError(MediaError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(MediaError):
    """Host, origin or path rejected by policy."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(MediaError):
    status_code = 404
    default_message = "Not found"


class TooLargeError(MediaError):
    status_code = 413
    default_message = "Upstream content too large"


class RangeNotSatisfiableError(MediaError):
    """Range header is malformed or outside the file."""

    status_code = 416
    default_message = "Range not satisfiable"
    has_body = False

    def __init__(self, size: Optional[int], message: Optional[str] = None):
        self.size = size
        super().__init__(message)

    @property
    def headers(self) -> Dict[str, str]:
        if self.size is None:
            return {}
        return {"Content-Range": f"bytes */{self.size}"}


class RateLimitedError(MediaError):
    status_code = 429
    default_message = "Too many requests"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class DownloadFailedError(MediaError):
    """All downloader attempts exhausted."""

    status_code = 500
    default_message = "Download failed"


class InternalError(MediaError):
    status_code = 500


class UpstreamUnavailableError(MediaError):
    """All upstream resolution services failed."""

    status_code = 502
    default_message = "Upstream unavailable"


class TooManyRedirectsError(MediaError):
    status_code = 508
    default_message = "Too many redirects"


class DownloaderError(Exception):
    """A single downloader attempt failed. Drives the fallback sequence."""

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)
