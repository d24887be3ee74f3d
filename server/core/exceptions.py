"""Service exception hierarchy."""

from typing import Optional


class CampusError(Exception):
    """Base exception for all service errors."""


class NotFoundError(CampusError):
    """Requested record does not exist or is not visible to the caller."""


class UpstreamError(CampusError):
    """A university or third-party API call failed."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"[{service}] {message}")
