from enum import Enum
from typing import Any


class ScrapeErrorCode(Enum):
    Blocked = "Blocked"
    Transient = "Transient"
    FatalNoRegion = "FatalNoRegion"
    FatalNoResults = "FatalNoResults"
    InvalidInput = "InvalidInput"


class ScrapeError(Exception):
    def __init__(self, message: str, error_code: ScrapeErrorCode, error_data: Any = None):
        super().__init__(message)
        self.error_code = error_code
        self.error_data = error_data

    def __str__(self) -> str:
        return f"{self.args[0]}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.args[0]!r}, error_code={self.error_code}, error_data={self.error_data!r})"


class BlockedError(ScrapeError):
    """The site answered with an anti-bot response (status code or challenge page)."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message, ScrapeErrorCode.Blocked, {"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url


class TransientFetchError(ScrapeError):
    """Timeout, connection failure, unexpected status or malformed payload."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message, ScrapeErrorCode.Transient, {"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url


class FatalScrapeError(ScrapeError):
    """Ends the run with a failed status."""


class InvalidInputError(ScrapeError):
    def __init__(self, message: str, error_data: Any = None):
        super().__init__(message, ScrapeErrorCode.InvalidInput, error_data)
