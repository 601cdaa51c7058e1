"""Eligibility evaluation for opportunities.

The evaluator is a pure predicate over a student profile and an optional
criteria record. Both arguments are read by attribute, so ORM rows, pydantic
schemas and plain namespaces all work.
"""
from __future__ import annotations

from typing import Any

MIN_CGPA = "min_cgpa"
ALLOWED_BRANCHES = "allowed_branches"
MAX_ACTIVE_BACKLOGS = "max_active_backlogs"
MIN_TENTH_PERCENTAGE = "min_tenth_percentage"
MIN_TWELFTH_PERCENTAGE = "min_twelfth_percentage"
GRADUATION_YEAR = "graduation_year"


def _below(value: float | None, threshold: float) -> bool:
    return value is None or value < threshold


def failed_dimensions(student: Any, criteria: Any | None) -> list[str]:
    """Return every criteria dimension the student does not satisfy."""

    if criteria is None:
        return []

    failures: list[str] = []

    min_cgpa = getattr(criteria, MIN_CGPA, None)
    if min_cgpa is not None and _below(student.cgpa, min_cgpa):
        failures.append(MIN_CGPA)

    branches = getattr(criteria, ALLOWED_BRANCHES, None)
    if branches and student.branch not in set(branches):
        failures.append(ALLOWED_BRANCHES)

    max_backlogs = getattr(criteria, MAX_ACTIVE_BACKLOGS, None)
    if max_backlogs is not None and (student.active_backlogs or 0) > max_backlogs:
        failures.append(MAX_ACTIVE_BACKLOGS)

    min_tenth = getattr(criteria, MIN_TENTH_PERCENTAGE, None)
    if min_tenth is not None and _below(student.tenth_percentage, min_tenth):
        failures.append(MIN_TENTH_PERCENTAGE)

    min_twelfth = getattr(criteria, MIN_TWELFTH_PERCENTAGE, None)
    if min_twelfth is not None and _below(student.twelfth_percentage, min_twelfth):
        failures.append(MIN_TWELFTH_PERCENTAGE)

    graduation_year = getattr(criteria, GRADUATION_YEAR, None)
    if graduation_year is not None and student.graduation_year != graduation_year:
        failures.append(GRADUATION_YEAR)

    return failures


def is_eligible(student: Any, criteria: Any | None) -> bool:
    """True when ``student`` satisfies every dimension set on ``criteria``."""

    return not failed_dimensions(student, criteria)
