from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    STORE = "store"
    DATA = "data"
    FEED = "feed"
    NOT_FOUND = "not_found"
    SYSTEM = "system"


class TradebookError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        record_id: Optional[str] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.record_id = record_id
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.record_id:
            parts.append(f"Record: {self.record_id}")
        return " | ".join(parts)


class ValidationError(TradebookError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.VALIDATION)


class StoreError(TradebookError):
    def __init__(self, message: str, record_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.STORE, record_id)


class CorruptRecordError(TradebookError):
    def __init__(self, message: str, record_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.DATA, record_id)


class FeedUnavailableError(TradebookError):
    def __init__(self, message: str = "Feed unavailable") -> None:
        super().__init__(message, ErrorCategory.FEED)


class NotFoundError(TradebookError):
    def __init__(self, message: str, record_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.NOT_FOUND, record_id)
