import asyncio
import itertools
from datetime import date, timedelta

import pytest

from placement.errors import (
    ApplicationNotFound,
    DeadlinePassed,
    DuplicateApplication,
    IllegalTransition,
    NotEligible,
    OpportunityClosed,
    OpportunityNotFound,
    PersistenceError,
    ProfileIncomplete,
    ProfileMissing,
)
from placement.lifecycle import ALLOWED_TRANSITIONS, can_transition
from portal.models import ApplicationStatus, OpportunityStatus, PlacementType
from tests.fakes import NOW, seed_application, seed_opportunity, seed_student

CS_IT_CRITERIA = {"min_cgpa": 7.0, "allowed_branches": ["CS", "IT"]}

LEGAL_PAIRS = [(source, target) for source, targets in ALLOWED_TRANSITIONS.items() for target in targets]
ILLEGAL_PAIRS = [
    (source, target)
    for source, target in itertools.product(ApplicationStatus, repeat=2)
    if target not in ALLOWED_TRANSITIONS[source]
]


async def test_eligible_student_applies(uow, manager, notifier):
    student = seed_student(uow, cgpa=8.0, active_backlogs=0, branch="CS")
    opportunity = seed_opportunity(uow, criteria=CS_IT_CRITERIA)

    application = await manager.apply(student.user_id, opportunity.id)

    assert application.status is ApplicationStatus.APPLIED
    assert application.current_round is None
    assert application.student_id == student.id
    assert application.opportunity.company_name == "Acme Analytics"
    assert application.opportunity.role_title == "Software Engineer"
    assert uow.applications.rows == {application.id: application}
    assert notifier.qsize() == 1


async def test_apply_after_deadline_fails(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow, criteria=CS_IT_CRITERIA, last_date_to_apply=NOW - timedelta(days=1))

    with pytest.raises(DeadlinePassed):
        await manager.apply(student.user_id, opportunity.id)
    assert uow.applications.rows == {}


async def test_deadline_is_exclusive(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow, last_date_to_apply=NOW)

    with pytest.raises(DeadlinePassed):
        await manager.apply(student.user_id, opportunity.id)


async def test_naive_deadline_is_read_as_utc(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow, last_date_to_apply=(NOW + timedelta(hours=1)).replace(tzinfo=None))

    application = await manager.apply(student.user_id, opportunity.id)
    assert application.status is ApplicationStatus.APPLIED


async def test_apply_without_profile(uow, manager):
    opportunity = seed_opportunity(uow)

    with pytest.raises(ProfileMissing):
        await manager.apply("user-without-profile", opportunity.id)


async def test_incomplete_profile_is_rejected(uow, manager):
    student = seed_student(uow, is_profile_complete=False)
    opportunity = seed_opportunity(uow)

    with pytest.raises(ProfileIncomplete):
        await manager.apply(student.user_id, opportunity.id)


async def test_missing_resume_is_rejected(uow, manager):
    student = seed_student(uow, resume_url=None)
    opportunity = seed_opportunity(uow)

    with pytest.raises(ProfileIncomplete, match="resume"):
        await manager.apply(student.user_id, opportunity.id)


async def test_unknown_opportunity(uow, manager):
    student = seed_student(uow)

    with pytest.raises(OpportunityNotFound):
        await manager.apply(student.user_id, "missing")


async def test_closed_opportunity(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow, status=OpportunityStatus.CLOSED)

    with pytest.raises(OpportunityClosed):
        await manager.apply(student.user_id, opportunity.id)


async def test_ineligible_student_names_failing_dimension(uow, manager):
    student = seed_student(uow, branch="Mechanical")
    opportunity = seed_opportunity(uow, criteria=CS_IT_CRITERIA)

    with pytest.raises(NotEligible, match="allowed_branches"):
        await manager.apply(student.user_id, opportunity.id)


async def test_first_failing_precondition_wins(uow, manager):
    student = seed_student(uow, is_profile_complete=False, branch="Mechanical")
    opportunity = seed_opportunity(
        uow,
        criteria=CS_IT_CRITERIA,
        status=OpportunityStatus.CLOSED,
        last_date_to_apply=NOW - timedelta(days=3),
    )

    with pytest.raises(ProfileIncomplete):
        await manager.apply(student.user_id, opportunity.id)

    student.is_profile_complete = True
    with pytest.raises(OpportunityClosed):
        await manager.apply(student.user_id, opportunity.id)

    opportunity.status = OpportunityStatus.OPEN
    with pytest.raises(DeadlinePassed):
        await manager.apply(student.user_id, opportunity.id)

    opportunity.last_date_to_apply = NOW + timedelta(days=3)
    with pytest.raises(NotEligible):
        await manager.apply(student.user_id, opportunity.id)


async def test_second_application_is_duplicate(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow)
    await manager.apply(student.user_id, opportunity.id)

    with pytest.raises(DuplicateApplication):
        await manager.apply(student.user_id, opportunity.id)
    assert len(uow.applications.rows) == 1


async def test_concurrent_applies_create_one_row(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow)

    results = await asyncio.gather(
        manager.apply(student.user_id, opportunity.id),
        manager.apply(student.user_id, opportunity.id),
        return_exceptions=True,
    )

    successes = [result for result in results if not isinstance(result, BaseException)]
    failures = [result for result in results if isinstance(result, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], DuplicateApplication)
    assert len(uow.applications.rows) == 1
    assert uow.rollbacks == 1


@pytest.mark.parametrize("source,target", LEGAL_PAIRS)
async def test_legal_transitions(uow, manager, source, target):
    application = seed_application(uow, seed_student(uow), seed_opportunity(uow), status=source)

    updated = await manager.update_status(application.id, target)

    assert updated.status is target
    assert can_transition(source, target)


@pytest.mark.parametrize("source,target", ILLEGAL_PAIRS)
async def test_illegal_transitions_leave_record_untouched(uow, manager, source, target):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=source)

    with pytest.raises(IllegalTransition) as excinfo:
        await manager.update_status(application.id, target, current_round=2)

    assert excinfo.value.current is source
    assert excinfo.value.attempted is target
    assert application.status is source
    assert application.current_round is None
    assert student.is_placed is False
    assert uow.commits == 0


async def test_applied_cannot_jump_to_round2(uow, manager):
    application = seed_application(uow, seed_student(uow), seed_opportunity(uow))

    with pytest.raises(IllegalTransition, match="Cannot transition from APPLIED to ROUND2"):
        await manager.update_status(application.id, "ROUND2")


async def test_offer_records_placement(uow, manager, notifier):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow)
    application = seed_application(uow, student, opportunity, status=ApplicationStatus.ROUND1)

    updated = await manager.update_status(application.id, ApplicationStatus.OFFERED)

    assert updated.status is ApplicationStatus.OFFERED
    profile = await uow.students.get(student.id)
    assert profile.is_placed is True
    assert profile.placed_company == opportunity.company_name
    assert profile.placed_role == opportunity.role_title
    assert profile.placed_ctc == "12 LPA"
    assert profile.placement_type is PlacementType.ON_CAMPUS
    message = await notifier.get()
    assert message.user_id == student.user_id
    assert message.type == "OFFER"


async def test_second_offer_fails_without_reapplying_side_effect(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.ROUND2)
    await manager.update_status(application.id, ApplicationStatus.OFFERED)
    student.placed_company = "Marker"

    with pytest.raises(IllegalTransition):
        await manager.update_status(application.id, ApplicationStatus.OFFERED)

    assert student.placed_company == "Marker"
    assert uow.commits == 1


async def test_concurrent_offers_place_the_student_once(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.ROUND1)

    results = await asyncio.gather(
        manager.create_offer(application.id, ctc="10 LPA"),
        manager.create_offer(application.id, ctc="99 LPA"),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], IllegalTransition)
    assert str(failures[0]) == "Cannot transition from OFFERED to OFFERED"
    assert application.status is ApplicationStatus.OFFERED
    assert student.placed_ctc == application.offer_ctc == "10 LPA"
    assert uow.commits == 1
    assert uow.rollbacks == 1


async def test_failed_profile_write_rolls_back_status(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.ROUND1)
    uow.students.fail_on_save = True

    with pytest.raises(PersistenceError):
        await manager.update_status(application.id, ApplicationStatus.OFFERED)

    assert application.status is ApplicationStatus.ROUND1
    assert application.offer_ctc is None
    assert student.is_placed is False
    assert student.placed_company is None
    assert uow.rollbacks == 1


async def test_failed_application_write_rolls_back_profile(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.ROUND2)
    uow.applications.fail_on_save = True

    with pytest.raises(PersistenceError):
        await manager.update_status(application.id, ApplicationStatus.OFFERED)

    assert student.is_placed is False
    assert application.status is ApplicationStatus.ROUND2


async def test_current_round_is_recorded(uow, manager):
    application = seed_application(
        uow, seed_student(uow), seed_opportunity(uow), status=ApplicationStatus.SHORTLISTED
    )

    updated = await manager.update_status(application.id, ApplicationStatus.ROUND1, current_round=1)

    assert updated.current_round == 1


async def test_unknown_application(manager):
    with pytest.raises(ApplicationNotFound):
        await manager.update_status("missing", ApplicationStatus.SHORTLISTED)


async def test_create_offer_overrides_ctc(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.ROUND1)

    updated = await manager.create_offer(
        application.id,
        ctc="18 LPA",
        joining_date=date(2026, 7, 1),
        offer_letter_url="https://files.example.edu/offers/asha.pdf",
    )

    assert updated.status is ApplicationStatus.OFFERED
    assert updated.offer_ctc == "18 LPA"
    assert updated.joining_date == date(2026, 7, 1)
    assert updated.offer_letter_url.endswith("asha.pdf")
    assert student.placed_ctc == "18 LPA"
    assert student.is_placed is True


async def test_create_offer_respects_state_machine(uow, manager):
    student = seed_student(uow)
    application = seed_application(uow, student, seed_opportunity(uow), status=ApplicationStatus.SHORTLISTED)

    with pytest.raises(IllegalTransition):
        await manager.create_offer(application.id, ctc="20 LPA")
    assert student.is_placed is False


async def test_bulk_update_reports_per_item_failures(uow, manager):
    opportunity = seed_opportunity(uow)
    applied = seed_application(uow, seed_student(uow), opportunity)
    also_applied = seed_application(uow, seed_student(uow), opportunity)
    rejected = seed_application(uow, seed_student(uow), opportunity, status=ApplicationStatus.REJECTED)

    result = await manager.bulk_update_status(
        [applied.id, rejected.id, "missing", also_applied.id, applied.id],
        ApplicationStatus.SHORTLISTED,
    )

    assert result.count == 2
    assert result.updated == [applied.id, also_applied.id]
    assert [(failure.application_id, failure.error) for failure in result.failed] == [
        (rejected.id, "IllegalTransition"),
        ("missing", "ApplicationNotFound"),
    ]
    assert rejected.status is ApplicationStatus.REJECTED
    assert applied.status is ApplicationStatus.SHORTLISTED


async def test_bulk_offer_records_each_placement(uow, manager):
    opportunity = seed_opportunity(uow)
    first, second = seed_student(uow), seed_student(uow)
    seed_application(uow, first, opportunity, status=ApplicationStatus.ROUND2)
    seed_application(uow, second, opportunity, status=ApplicationStatus.ROUND1)

    result = await manager.bulk_update_status(list(uow.applications.rows), ApplicationStatus.OFFERED)

    assert result.count == 2
    assert first.is_placed and second.is_placed


async def test_applications_for_user(uow, manager):
    student = seed_student(uow)
    opportunity = seed_opportunity(uow)
    await manager.apply(student.user_id, opportunity.id)

    assert len(await manager.applications_for_user(student.user_id)) == 1
    assert await manager.applications_for_user("nobody") == []


async def test_applications_for_opportunity_filters_status(uow, manager):
    opportunity = seed_opportunity(uow)
    seed_application(uow, seed_student(uow), opportunity)
    seed_application(uow, seed_student(uow), opportunity, status=ApplicationStatus.REJECTED)

    rejected = await manager.applications_for_opportunity(opportunity.id, status=ApplicationStatus.REJECTED)

    assert [application.status for application in rejected] == [ApplicationStatus.REJECTED]
    with pytest.raises(OpportunityNotFound):
        await manager.applications_for_opportunity("missing")
