"""Opportunity management and eligibility-driven listings."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from placement.eligibility import is_eligible
from placement.errors import OpportunityNotFound
from placement.lifecycle import Clock
from placement.repositories import UnitOfWork
from portal.models import (
    EligibilityCriteria,
    Opportunity,
    OpportunityStatus,
    OpportunityType,
    RecruitmentRound,
    StudentProfile,
    ensure_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class OpportunityService:
    def __init__(self, uow: UnitOfWork, *, clock: Clock = utc_now) -> None:
        self.uow = uow
        self.clock = clock

    async def create(self, institution_id: str, data: dict[str, Any]) -> Opportunity:
        """Create an opportunity with its criteria and rounds in one transaction."""

        fields = dict(data)
        criteria = fields.pop("eligibility", None)
        rounds = fields.pop("rounds", None) or []

        opportunity = Opportunity(institution_id=institution_id, status=OpportunityStatus.OPEN, **fields)
        # Both relationships are always assigned so callers never trigger a lazy load.
        opportunity.eligibility = None
        if criteria is not None:
            criteria = dict(criteria)
            criteria["allowed_branches"] = list(criteria.get("allowed_branches") or [])
            opportunity.eligibility = EligibilityCriteria(**criteria)
        opportunity.rounds = [
            RecruitmentRound(**round_) for round_ in sorted(rounds, key=lambda item: item["round_order"])
        ]

        opportunity = await self.uow.with_transaction(lambda: self.uow.opportunities.add(opportunity))
        logger.info("Opportunity %s created for %s at %s", opportunity.id, opportunity.role_title, opportunity.company_name)
        return opportunity

    async def get(self, opportunity_id: str) -> Opportunity:
        opportunity = await self.uow.opportunities.get(opportunity_id)
        if opportunity is None:
            raise OpportunityNotFound()
        return opportunity

    async def list(
        self,
        institution_id: str,
        *,
        status: OpportunityStatus | None = None,
        type: OpportunityType | None = None,
    ) -> Sequence[Opportunity]:
        return await self.uow.opportunities.list(institution_id, status=status, type=type)

    async def close(self, opportunity_id: str) -> Opportunity:
        opportunity = await self.get(opportunity_id)

        async def update() -> Opportunity:
            opportunity.status = OpportunityStatus.CLOSED
            return await self.uow.opportunities.save(opportunity)

        opportunity = await self.uow.with_transaction(update)
        logger.info("Opportunity %s closed", opportunity_id)
        return opportunity

    async def eligible_opportunities(self, student_id: str) -> list[Opportunity]:
        """Open opportunities in the student's institution they may still apply to."""

        student = await self.uow.students.get(student_id)
        if student is None:
            return []

        now = self.clock()
        candidates = await self.uow.opportunities.list(student.institution_id, status=OpportunityStatus.OPEN)
        return [
            opportunity
            for opportunity in candidates
            if ensure_utc(opportunity.last_date_to_apply) > now and is_eligible(student, opportunity.eligibility)
        ]

    async def eligible_students(self, opportunity_id: str) -> list[StudentProfile]:
        opportunity = await self.uow.opportunities.get(opportunity_id)
        if opportunity is None:
            return []

        students = await self.uow.students.list_complete(opportunity.institution_id)
        return [student for student in students if is_eligible(student, opportunity.eligibility)]
