"""FastAPI dependency helpers."""
from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from placement import ApplicationLifecycleManager, OpportunityService, SqlAlchemyUnitOfWork, StudentProfileService
from placement.notifications import NotificationQueue
from portal.config import Settings, get_settings
from portal.database import get_session
from portal.models import PlacementType


async def db_session() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def settings_provider() -> Settings:
    return get_settings()


def notification_queue(request: Request) -> NotificationQueue:
    return request.app.state.notification_queue


def unit_of_work(session: AsyncSession = Depends(db_session)) -> SqlAlchemyUnitOfWork:
    return SqlAlchemyUnitOfWork(session)


def lifecycle_manager(
    uow: SqlAlchemyUnitOfWork = Depends(unit_of_work),
    settings: Settings = Depends(settings_provider),
    queue: NotificationQueue = Depends(notification_queue),
) -> ApplicationLifecycleManager:
    return ApplicationLifecycleManager(
        uow,
        notifier=queue,
        default_placement_type=PlacementType(settings.default_placement_type),
    )


def opportunity_service(uow: SqlAlchemyUnitOfWork = Depends(unit_of_work)) -> OpportunityService:
    return OpportunityService(uow)


def student_service(uow: SqlAlchemyUnitOfWork = Depends(unit_of_work)) -> StudentProfileService:
    return StudentProfileService(uow)
