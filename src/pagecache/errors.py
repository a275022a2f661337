from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_URL = "INVALID_URL"
    HOST_MISMATCH = "HOST_MISMATCH"


class PageCacheError(Exception):
    """Raised by administrative operations for caller-visible rejections.

    The page-serving path never raises this: every failure there degrades to
    an uncached or less-optimized page instead.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
            }
        }
