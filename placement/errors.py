"""Error taxonomy for the placement service layer.

``PlacementError`` subclasses are validation-class failures: they are raised
synchronously to the caller and never retried. ``PersistenceError`` covers
infrastructure faults from the data layer and is deliberately not a
``PlacementError``.
"""
from __future__ import annotations

from typing import Any


class PlacementError(Exception):
    """Base class for business rule violations."""

    default_message = "Placement rule violated"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__


class ProfileMissing(PlacementError):
    default_message = "Complete your student profile first"


class ProfileIncomplete(PlacementError):
    default_message = "Complete your profile before applying"


class ProfileAlreadyExists(PlacementError):
    default_message = "Student profile already exists"


class ProfileLocked(PlacementError):
    default_message = "Your profile is locked. Contact your TPO to unlock."


class StudentNotFound(PlacementError):
    default_message = "Student profile not found"


class OpportunityNotFound(PlacementError):
    default_message = "Opportunity not found"


class OpportunityClosed(PlacementError):
    default_message = "This opportunity is no longer accepting applications"


class DeadlinePassed(PlacementError):
    default_message = "Application deadline has passed"


class NotEligible(PlacementError):
    default_message = "You do not meet the eligibility criteria"


class DuplicateApplication(PlacementError):
    default_message = "You have already applied to this opportunity"


class ApplicationNotFound(PlacementError):
    default_message = "Application not found"


class IllegalTransition(PlacementError):
    def __init__(self, current: Any, attempted: Any) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot transition from {_label(current)} to {_label(attempted)}")


class PersistenceError(Exception):
    """Raised when the persistence layer fails."""


class DuplicateRecordError(PersistenceError):
    """A uniqueness constraint rejected the write."""


def _label(value: Any) -> str:
    return getattr(value, "value", value)
