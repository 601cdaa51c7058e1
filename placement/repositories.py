"""Repositories and unit of work over the SQLAlchemy session.

Services depend on the protocols below rather than on a session so the
lifecycle rules can be exercised against in-memory fakes.
"""
from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar

from sqlalchemy import Select, case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from placement.errors import DuplicateRecordError, PersistenceError
from portal.models import (
    Application,
    ApplicationStatus,
    Notification,
    Opportunity,
    OpportunityStatus,
    OpportunityType,
    StudentProfile,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StudentProfileRepository(Protocol):
    async def get(self, student_id: str) -> StudentProfile | None: ...

    async def get_by_user(self, user_id: str) -> StudentProfile | None: ...

    async def list_complete(self, institution_id: str) -> Sequence[StudentProfile]: ...

    async def add(self, profile: StudentProfile) -> StudentProfile: ...

    async def save(self, profile: StudentProfile) -> StudentProfile: ...

    async def count_by_branch(self, institution_id: str) -> Sequence[tuple[str, int, int]]:
        """``(branch, total, placed)`` per branch of the institution."""
        ...

    async def count_by_company(self, institution_id: str) -> Sequence[tuple[str, int]]:
        """``(company, placed)`` for placed students with a recorded company."""
        ...

    async def placed_ctcs(self, institution_id: str) -> Sequence[str]: ...


class OpportunityRepository(Protocol):
    async def get(self, opportunity_id: str) -> Opportunity | None: ...

    async def list(
        self,
        institution_id: str,
        *,
        status: OpportunityStatus | None = None,
        type: OpportunityType | None = None,
    ) -> Sequence[Opportunity]: ...

    async def add(self, opportunity: Opportunity) -> Opportunity: ...

    async def save(self, opportunity: Opportunity) -> Opportunity: ...


class ApplicationRepository(Protocol):
    async def get(self, application_id: str) -> Application | None: ...

    async def get_by_pair(self, student_id: str, opportunity_id: str) -> Application | None: ...

    async def list_for_student(self, student_id: str) -> Sequence[Application]: ...

    async def list_for_opportunity(
        self, opportunity_id: str, *, status: ApplicationStatus | None = None
    ) -> Sequence[Application]: ...

    async def add(self, application: Application) -> Application: ...

    async def save(self, application: Application) -> Application: ...

    async def set_status_if(
        self, application_id: str, expected: ApplicationStatus, target: ApplicationStatus
    ) -> bool:
        """Move the stored status from ``expected`` to ``target``; False if it no longer matches."""
        ...

    async def get_status(self, application_id: str) -> ApplicationStatus | None: ...


class NotificationRepository(Protocol):
    async def add(self, notification: Notification) -> Notification: ...


class UnitOfWork(Protocol):
    students: StudentProfileRepository
    opportunities: OpportunityRepository
    applications: ApplicationRepository

    async def with_transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` atomically: commit on success, roll back on any error."""
        ...


UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate key" in message or "duplicate entry" in message


def translate_errors(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Surface driver failures as ``PersistenceError``.

    Only unique-key violations become ``DuplicateRecordError``; NOT NULL,
    foreign key and check failures stay plain ``PersistenceError``.
    """

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await method(*args, **kwargs)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateRecordError(str(exc.orig)) from exc
            raise PersistenceError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    return wrapper


class _SqlRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _persist(self, instance: T) -> T:
        self.session.add(instance)
        await self.session.flush()
        return instance


class SqlStudentProfileRepository(_SqlRepository):
    @translate_errors
    async def get(self, student_id: str) -> StudentProfile | None:
        return await self.session.get(StudentProfile, student_id)

    @translate_errors
    async def get_by_user(self, user_id: str) -> StudentProfile | None:
        result = await self.session.execute(select(StudentProfile).where(StudentProfile.user_id == user_id))
        return result.scalar_one_or_none()

    @translate_errors
    async def list_complete(self, institution_id: str) -> Sequence[StudentProfile]:
        stmt = (
            select(StudentProfile)
            .where(StudentProfile.institution_id == institution_id, StudentProfile.is_profile_complete.is_(True))
            .order_by(StudentProfile.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    @translate_errors
    async def add(self, profile: StudentProfile) -> StudentProfile:
        return await self._persist(profile)

    @translate_errors
    async def save(self, profile: StudentProfile) -> StudentProfile:
        return await self._persist(profile)

    @translate_errors
    async def count_by_branch(self, institution_id: str) -> Sequence[tuple[str, int, int]]:
        placed = func.sum(case((StudentProfile.is_placed.is_(True), 1), else_=0))
        stmt = (
            select(StudentProfile.branch, func.count(StudentProfile.id), placed)
            .where(StudentProfile.institution_id == institution_id)
            .group_by(StudentProfile.branch)
            .order_by(StudentProfile.branch)
        )
        result = await self.session.execute(stmt)
        return [(branch, total, int(placed_count or 0)) for branch, total, placed_count in result.all()]

    @translate_errors
    async def count_by_company(self, institution_id: str) -> Sequence[tuple[str, int]]:
        stmt = (
            select(StudentProfile.placed_company, func.count(StudentProfile.id))
            .where(
                StudentProfile.institution_id == institution_id,
                StudentProfile.is_placed.is_(True),
                StudentProfile.placed_company.is_not(None),
            )
            .group_by(StudentProfile.placed_company)
            .order_by(func.count(StudentProfile.id).desc(), StudentProfile.placed_company)
        )
        result = await self.session.execute(stmt)
        return [(company, count) for company, count in result.all()]

    @translate_errors
    async def placed_ctcs(self, institution_id: str) -> Sequence[str]:
        stmt = select(StudentProfile.placed_ctc).where(
            StudentProfile.institution_id == institution_id,
            StudentProfile.is_placed.is_(True),
            StudentProfile.placed_ctc.is_not(None),
        )
        result = await self.session.scalars(stmt)
        return result.all()


class SqlOpportunityRepository(_SqlRepository):
    @staticmethod
    def _with_details() -> Select[tuple[Opportunity]]:
        return (
            select(Opportunity)
            .options(selectinload(Opportunity.eligibility), selectinload(Opportunity.rounds))
        )

    @translate_errors
    async def get(self, opportunity_id: str) -> Opportunity | None:
        result = await self.session.execute(self._with_details().where(Opportunity.id == opportunity_id))
        return result.scalar_one_or_none()

    @translate_errors
    async def list(
        self,
        institution_id: str,
        *,
        status: OpportunityStatus | None = None,
        type: OpportunityType | None = None,
    ) -> Sequence[Opportunity]:
        stmt = self._with_details().where(Opportunity.institution_id == institution_id)
        if status is not None:
            stmt = stmt.where(Opportunity.status == status)
        if type is not None:
            stmt = stmt.where(Opportunity.type == type)
        result = await self.session.execute(stmt.order_by(Opportunity.created_at.desc()))
        return result.scalars().all()

    @translate_errors
    async def add(self, opportunity: Opportunity) -> Opportunity:
        return await self._persist(opportunity)

    @translate_errors
    async def save(self, opportunity: Opportunity) -> Opportunity:
        return await self._persist(opportunity)


class SqlApplicationRepository(_SqlRepository):
    @staticmethod
    def _with_opportunity() -> Select[tuple[Application]]:
        return select(Application).options(selectinload(Application.opportunity))

    @translate_errors
    async def get(self, application_id: str) -> Application | None:
        result = await self.session.execute(self._with_opportunity().where(Application.id == application_id))
        return result.scalar_one_or_none()

    @translate_errors
    async def get_by_pair(self, student_id: str, opportunity_id: str) -> Application | None:
        stmt = self._with_opportunity().where(
            Application.student_id == student_id, Application.opportunity_id == opportunity_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @translate_errors
    async def list_for_student(self, student_id: str) -> Sequence[Application]:
        stmt = (
            self._with_opportunity()
            .where(Application.student_id == student_id)
            .order_by(Application.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    @translate_errors
    async def list_for_opportunity(
        self, opportunity_id: str, *, status: ApplicationStatus | None = None
    ) -> Sequence[Application]:
        stmt = self._with_opportunity().where(Application.opportunity_id == opportunity_id)
        if status is not None:
            stmt = stmt.where(Application.status == status)
        result = await self.session.execute(stmt.order_by(Application.created_at.desc()))
        return result.scalars().all()

    @translate_errors
    async def add(self, application: Application) -> Application:
        return await self._persist(application)

    @translate_errors
    async def save(self, application: Application) -> Application:
        return await self._persist(application)

    @translate_errors
    async def set_status_if(
        self, application_id: str, expected: ApplicationStatus, target: ApplicationStatus
    ) -> bool:
        stmt = (
            update(Application)
            .where(Application.id == application_id, Application.status == expected)
            .values(status=target, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    @translate_errors
    async def get_status(self, application_id: str) -> ApplicationStatus | None:
        return await self.session.scalar(select(Application.status).where(Application.id == application_id))


class SqlNotificationRepository(_SqlRepository):
    @translate_errors
    async def add(self, notification: Notification) -> Notification:
        return await self._persist(notification)


class SqlAlchemyUnitOfWork:
    """Unit of work bound to one ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.students = SqlStudentProfileRepository(session)
        self.opportunities = SqlOpportunityRepository(session)
        self.applications = SqlApplicationRepository(session)

    async def with_transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await fn()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Transaction rolled back after database error")
            raise PersistenceError(str(exc)) from exc
        except BaseException:
            await self.session.rollback()
            raise
        return result
