"""Student profile self-service and admin operations."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from placement.errors import (
    DuplicateRecordError,
    ProfileAlreadyExists,
    ProfileLocked,
    ProfileMissing,
    StudentNotFound,
)
from placement.repositories import UnitOfWork
from portal.models import StudentProfile

logger = logging.getLogger(__name__)

REQUIRED_PROFILE_FIELDS = (
    "enrollment_no",
    "course",
    "branch",
    "graduation_year",
    "cgpa",
    "tenth_percentage",
    "twelfth_percentage",
    "resume_url",
)

# Only the lifecycle manager may record a placement.
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "user_id",
        "institution_id",
        "is_profile_complete",
        "is_profile_locked",
        "is_placed",
        "placed_company",
        "placed_role",
        "placed_ctc",
        "placement_type",
    }
)


def is_profile_complete(profile: Any) -> bool:
    return all(getattr(profile, name, None) not in (None, "") for name in REQUIRED_PROFILE_FIELDS)


# Leading number of a free-text CTC such as "12 LPA" or "4.5 LPA".
_CTC_NUMBER = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)")


def parse_ctc(ctc: str | None) -> float:
    """Read the leading number of a CTC string; anything unparseable counts as 0."""
    match = _CTC_NUMBER.match(ctc or "")
    return float(match.group(0)) if match else 0.0


def percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


@dataclass
class BranchStats:
    branch: str
    total: int
    placed: int
    percentage: float


@dataclass
class CompanyStats:
    company: str
    count: int


@dataclass
class PlacementStats:
    total_students: int
    placed_students: int
    placement_percentage: float
    average_ctc: float
    branch_wise: list[BranchStats] = field(default_factory=list)
    company_wise: list[CompanyStats] = field(default_factory=list)


class StudentProfileService:
    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    async def create_profile(self, user_id: str, institution_id: str, data: dict[str, Any]) -> StudentProfile:
        if await self.uow.students.get_by_user(user_id) is not None:
            raise ProfileAlreadyExists()

        profile = StudentProfile(
            user_id=user_id,
            institution_id=institution_id,
            active_backlogs=0,
            is_profile_locked=False,
            is_placed=False,
        )
        self._apply_changes(profile, data)

        try:
            profile = await self.uow.with_transaction(lambda: self.uow.students.add(profile))
        except DuplicateRecordError as exc:
            raise ProfileAlreadyExists() from exc

        logger.info("Student profile %s created for user %s", profile.id, user_id)
        return profile

    async def get_by_user(self, user_id: str) -> StudentProfile:
        profile = await self.uow.students.get_by_user(user_id)
        if profile is None:
            raise ProfileMissing()
        return profile

    async def update_profile(self, user_id: str, data: dict[str, Any]) -> StudentProfile:
        profile = await self.get_by_user(user_id)
        if profile.is_profile_locked:
            raise ProfileLocked()

        async def update() -> StudentProfile:
            self._apply_changes(profile, data)
            return await self.uow.students.save(profile)

        return await self.uow.with_transaction(update)

    async def set_locked(self, student_id: str, locked: bool) -> StudentProfile:
        profile = await self.uow.students.get(student_id)
        if profile is None:
            raise StudentNotFound()

        async def update() -> StudentProfile:
            profile.is_profile_locked = locked
            return await self.uow.students.save(profile)

        profile = await self.uow.with_transaction(update)
        logger.info("Student profile %s %s", student_id, "locked" if locked else "unlocked")
        return profile

    async def placement_stats(self, institution_id: str) -> PlacementStats:
        """Placement summary of an institution's students.

        The average CTC is taken over placed students with a recorded CTC,
        reading the leading number of each value.
        """
        branches = await self.uow.students.count_by_branch(institution_id)
        companies = await self.uow.students.count_by_company(institution_id)
        ctcs = [parse_ctc(ctc) for ctc in await self.uow.students.placed_ctcs(institution_id)]

        total = sum(count for _, count, _ in branches)
        placed = sum(count for _, _, count in branches)
        return PlacementStats(
            total_students=total,
            placed_students=placed,
            placement_percentage=percentage(placed, total),
            average_ctc=round(sum(ctcs) / len(ctcs), 2) if ctcs else 0.0,
            branch_wise=[
                BranchStats(branch=branch, total=count, placed=placed_count, percentage=percentage(placed_count, count))
                for branch, count, placed_count in branches
            ],
            company_wise=[CompanyStats(company=company, count=count) for company, count in companies],
        )

    @staticmethod
    def _apply_changes(profile: StudentProfile, data: dict[str, Any]) -> None:
        for key, value in data.items():
            if key in PROTECTED_FIELDS:
                continue
            setattr(profile, key, value)
        profile.is_profile_complete = is_profile_complete(profile)
