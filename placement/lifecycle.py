"""Application lifecycle: applying, status transitions and offers."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol

from placement.eligibility import failed_dimensions
from placement.errors import (
    ApplicationNotFound,
    DeadlinePassed,
    DuplicateApplication,
    DuplicateRecordError,
    IllegalTransition,
    NotEligible,
    OpportunityClosed,
    OpportunityNotFound,
    PlacementError,
    ProfileIncomplete,
    ProfileMissing,
    StudentNotFound,
)
from placement.notifications import NotificationMessage
from placement.repositories import UnitOfWork
from portal.models import (
    Application,
    ApplicationStatus,
    Opportunity,
    OpportunityStatus,
    PlacementType,
    StudentProfile,
    ensure_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.APPLIED: frozenset({ApplicationStatus.SHORTLISTED, ApplicationStatus.REJECTED}),
    ApplicationStatus.SHORTLISTED: frozenset({ApplicationStatus.ROUND1, ApplicationStatus.REJECTED}),
    ApplicationStatus.ROUND1: frozenset(
        {ApplicationStatus.ROUND2, ApplicationStatus.OFFERED, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.ROUND2: frozenset({ApplicationStatus.OFFERED, ApplicationStatus.REJECTED}),
    ApplicationStatus.OFFERED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[ApplicationStatus(current)]


class Notifier(Protocol):
    def enqueue(self, message: NotificationMessage) -> bool: ...


@dataclass(frozen=True)
class OfferDetails:
    ctc: str | None = None
    joining_date: date | None = None
    offer_letter_url: str | None = None


@dataclass(frozen=True)
class BulkFailure:
    application_id: str
    error: str
    detail: str


@dataclass
class BulkUpdateResult:
    updated: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.updated)


class ApplicationLifecycleManager:
    """Owns application creation and the status state machine."""

    def __init__(
        self,
        uow: UnitOfWork,
        *,
        clock: Clock = utc_now,
        notifier: Notifier | None = None,
        default_placement_type: PlacementType = PlacementType.ON_CAMPUS,
    ) -> None:
        self.uow = uow
        self.clock = clock
        self.notifier = notifier
        self.default_placement_type = PlacementType(default_placement_type)

    async def apply(self, user_id: str, opportunity_id: str) -> Application:
        """Create an ``APPLIED`` application for the student owning ``user_id``.

        Preconditions are checked in a fixed order and the first failure is
        raised: profile exists, profile complete, resume uploaded, opportunity
        exists, opportunity open, deadline not passed, student eligible, no
        earlier application for the same opportunity.
        """

        student = await self.uow.students.get_by_user(user_id)
        if student is None:
            raise self._rejected(ProfileMissing(), user_id=user_id)
        if not student.is_profile_complete:
            raise self._rejected(ProfileIncomplete(), user_id=user_id)
        if not student.resume_url:
            raise self._rejected(ProfileIncomplete("Upload your resume before applying"), user_id=user_id)

        opportunity = await self.uow.opportunities.get(opportunity_id)
        if opportunity is None:
            raise self._rejected(OpportunityNotFound(), opportunity_id=opportunity_id)
        if opportunity.status != OpportunityStatus.OPEN:
            raise self._rejected(OpportunityClosed(), opportunity_id=opportunity_id)
        if self.clock() >= ensure_utc(opportunity.last_date_to_apply):
            raise self._rejected(DeadlinePassed(), opportunity_id=opportunity_id)

        failures = failed_dimensions(student, opportunity.eligibility)
        if failures:
            error = NotEligible(f"{NotEligible.default_message} ({', '.join(failures)})")
            raise self._rejected(error, user_id=user_id, opportunity_id=opportunity_id)

        if await self.uow.applications.get_by_pair(student.id, opportunity.id) is not None:
            raise self._rejected(DuplicateApplication(), user_id=user_id, opportunity_id=opportunity_id)

        async def create() -> Application:
            application = Application(
                student_id=student.id,
                opportunity_id=opportunity.id,
                status=ApplicationStatus.APPLIED,
                current_round=None,
            )
            application.opportunity = opportunity
            return await self.uow.applications.add(application)

        try:
            application = await self.uow.with_transaction(create)
        except DuplicateRecordError as exc:
            # Lost the race against a concurrent apply for the same pair.
            raise self._rejected(DuplicateApplication(), user_id=user_id, opportunity_id=opportunity_id) from exc

        logger.info("Application %s created for student %s on %s", application.id, student.id, opportunity.id)
        self._notify(
            user_id,
            "Application submitted",
            f"You applied for {opportunity.role_title} at {opportunity.company_name}",
            "APPLICATION",
        )
        return application

    async def update_status(
        self,
        application_id: str,
        status: ApplicationStatus | str,
        current_round: int | None = None,
        *,
        offer: OfferDetails | None = None,
    ) -> Application:
        target = ApplicationStatus(status)
        application = await self.uow.applications.get(application_id)
        if application is None:
            raise self._rejected(ApplicationNotFound(), application_id=application_id)

        current = ApplicationStatus(application.status)
        if not can_transition(current, target):
            raise self._rejected(IllegalTransition(current, target), application_id=application_id)

        opportunity = await self.uow.opportunities.get(application.opportunity_id)
        if opportunity is None:
            raise self._rejected(OpportunityNotFound(), opportunity_id=application.opportunity_id)
        student = await self.uow.students.get(application.student_id)
        if student is None:
            raise self._rejected(StudentNotFound(), student_id=application.student_id)

        async def transition() -> Application:
            # A concurrent writer may have moved the row since it was read.
            if not await self.uow.applications.set_status_if(application.id, current, target):
                actual = await self.uow.applications.get_status(application.id)
                raise self._rejected(
                    IllegalTransition(actual or current, target), application_id=application_id
                )
            application.status = target
            if current_round is not None:
                application.current_round = current_round
            application.opportunity = opportunity
            if target is ApplicationStatus.OFFERED:
                self._record_placement(application, student, opportunity, offer or OfferDetails())
                await self.uow.students.save(student)
            return await self.uow.applications.save(application)

        application = await self.uow.with_transaction(transition)
        logger.info("Application %s moved from %s to %s", application.id, current.value, target.value)

        if target is ApplicationStatus.OFFERED:
            logger.info("Placement recorded for student %s at %s", student.id, opportunity.company_name)
            self._notify(
                student.user_id,
                "Congratulations! Offer received",
                f"You have received an offer for {opportunity.role_title} at {opportunity.company_name}",
                "OFFER",
            )
        else:
            self._notify(
                student.user_id,
                "Application status updated",
                f"Your application for {opportunity.role_title} at {opportunity.company_name} is now {target.value}",
                "STATUS_UPDATE",
            )
        return application

    async def create_offer(
        self,
        application_id: str,
        ctc: str | None = None,
        joining_date: date | None = None,
        offer_letter_url: str | None = None,
    ) -> Application:
        offer = OfferDetails(ctc=ctc, joining_date=joining_date, offer_letter_url=offer_letter_url)
        return await self.update_status(application_id, ApplicationStatus.OFFERED, offer=offer)

    async def bulk_update_status(
        self, application_ids: Iterable[str], status: ApplicationStatus | str
    ) -> BulkUpdateResult:
        """Move each application to ``status`` independently.

        Every row is checked against the transition table and committed on
        its own; rule violations are reported per item instead of aborting
        the batch. Persistence failures still propagate.
        """

        target = ApplicationStatus(status)
        result = BulkUpdateResult()
        for application_id in dict.fromkeys(application_ids):
            try:
                await self.update_status(application_id, target)
            except PlacementError as exc:
                result.failed.append(BulkFailure(application_id=application_id, error=exc.kind, detail=exc.message))
            else:
                result.updated.append(application_id)

        logger.info(
            "Bulk status update to %s: %d updated, %d failed", target.value, result.count, len(result.failed)
        )
        return result

    async def applications_for_user(self, user_id: str) -> Sequence[Application]:
        student = await self.uow.students.get_by_user(user_id)
        if student is None:
            return []
        return await self.uow.applications.list_for_student(student.id)

    async def applications_for_opportunity(
        self, opportunity_id: str, status: ApplicationStatus | None = None
    ) -> Sequence[Application]:
        if await self.uow.opportunities.get(opportunity_id) is None:
            raise OpportunityNotFound()
        return await self.uow.applications.list_for_opportunity(opportunity_id, status=status)

    def _record_placement(
        self,
        application: Application,
        student: StudentProfile,
        opportunity: Opportunity,
        offer: OfferDetails,
    ) -> None:
        ctc = offer.ctc or opportunity.ctc
        application.offer_ctc = ctc
        application.joining_date = offer.joining_date
        application.offer_letter_url = offer.offer_letter_url

        student.is_placed = True
        student.placed_company = opportunity.company_name
        student.placed_role = opportunity.role_title
        student.placed_ctc = ctc
        student.placement_type = self.default_placement_type

    def _notify(self, user_id: str, title: str, message: str, type_: str) -> None:
        if self.notifier is None:
            return
        self.notifier.enqueue(NotificationMessage(user_id=user_id, title=title, message=message, type=type_))

    @staticmethod
    def _rejected(error: PlacementError, **context: str) -> PlacementError:
        details = " ".join(f"{key}={value}" for key, value in context.items())
        logger.info("Rejected with %s: %s %s", error.kind, error.message, details)
        return error
