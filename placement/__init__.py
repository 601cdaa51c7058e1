"""Service layer for eligibility, applications and placements."""

from .lifecycle import ApplicationLifecycleManager
from .opportunities import OpportunityService
from .repositories import SqlAlchemyUnitOfWork
from .students import StudentProfileService

__all__ = ["ApplicationLifecycleManager", "OpportunityService", "SqlAlchemyUnitOfWork", "StudentProfileService"]
