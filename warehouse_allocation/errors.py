from __future__ import annotations

from typing import Optional


class AllocationError(Exception):
    """Base class for errors raised by the allocation heuristics."""


class ValidationError(AllocationError, ValueError):
    """A request or catalog record is malformed (empty item list, bad quantity, ...)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(AllocationError, LookupError):
    """No storage location satisfies the hard constraints of a putaway request."""

    def __init__(self, message: str, item_id: Optional[str] = None):
        super().__init__(message)
        self.item_id = item_id
