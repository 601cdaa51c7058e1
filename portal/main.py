"""FastAPI entrypoint wiring services together."""
from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from placement import ApplicationLifecycleManager, OpportunityService, StudentProfileService
from placement.errors import (
    ApplicationNotFound,
    DuplicateApplication,
    OpportunityNotFound,
    PersistenceError,
    PlacementError,
    ProfileAlreadyExists,
    ProfileLocked,
    ProfileMissing,
    StudentNotFound,
)
from placement.notifications import NotificationQueue, NotificationWorker
from portal.config import Settings, get_settings
from portal.database import AsyncSessionLocal, init_models
from portal.dependencies import (
    lifecycle_manager,
    opportunity_service,
    settings_provider,
    student_service,
)
from portal.log_config import configure_logging
from portal.models import ApplicationStatus, OpportunityStatus, OpportunityType
from portal.schemas import (
    ApplicationRead,
    ApplyRequest,
    BulkFailureRead,
    BulkStatusResult,
    BulkStatusUpdate,
    OfferCreate,
    OpportunityCreate,
    OpportunityRead,
    PlacementStatsRead,
    StatusUpdate,
    StudentProfileCreate,
    StudentProfileRead,
    StudentProfileUpdate,
)

logger = logging.getLogger(__name__)

NOT_FOUND_ERRORS = (ApplicationNotFound, OpportunityNotFound, ProfileMissing, StudentNotFound)
CONFLICT_ERRORS = (DuplicateApplication, ProfileAlreadyExists)


def status_code_for(exc: PlacementError) -> int:
    if isinstance(exc, NOT_FOUND_ERRORS):
        return 404
    if isinstance(exc, CONFLICT_ERRORS):
        return 409
    if isinstance(exc, ProfileLocked):
        return 403
    return 400


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Placement Portal", version="0.1.0")
    app.state.notification_queue = NotificationQueue(maxsize=settings.notification_queue_size)
    worker = NotificationWorker(app.state.notification_queue, AsyncSessionLocal)

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - framework hook
        await init_models()
        worker.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - framework hook
        await worker.stop()

    @app.exception_handler(PlacementError)
    async def _placement_error(request: Request, exc: PlacementError) -> JSONResponse:
        return JSONResponse(status_code=status_code_for(exc), content={"error": exc.kind, "detail": exc.message})

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503, content={"error": "PersistenceError", "detail": "Storage temporarily unavailable"}
        )

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.post("/users/{user_id}/profile", response_model=StudentProfileRead, status_code=201)
    async def create_profile(
        user_id: str,
        payload: StudentProfileCreate,
        service: StudentProfileService = Depends(student_service),
    ) -> StudentProfileRead:
        data = payload.model_dump(exclude={"institution_id"})
        profile = await service.create_profile(user_id, payload.institution_id, data)
        return StudentProfileRead.model_validate(profile)

    @app.get("/users/{user_id}/profile", response_model=StudentProfileRead)
    async def get_profile(
        user_id: str,
        service: StudentProfileService = Depends(student_service),
    ) -> StudentProfileRead:
        return StudentProfileRead.model_validate(await service.get_by_user(user_id))

    @app.patch("/users/{user_id}/profile", response_model=StudentProfileRead)
    async def update_profile(
        user_id: str,
        payload: StudentProfileUpdate,
        service: StudentProfileService = Depends(student_service),
    ) -> StudentProfileRead:
        profile = await service.update_profile(user_id, payload.model_dump(exclude_unset=True))
        return StudentProfileRead.model_validate(profile)

    @app.post("/students/{student_id}/lock", response_model=StudentProfileRead)
    async def lock_profile(
        student_id: str,
        service: StudentProfileService = Depends(student_service),
    ) -> StudentProfileRead:
        return StudentProfileRead.model_validate(await service.set_locked(student_id, True))

    @app.post("/students/{student_id}/unlock", response_model=StudentProfileRead)
    async def unlock_profile(
        student_id: str,
        service: StudentProfileService = Depends(student_service),
    ) -> StudentProfileRead:
        return StudentProfileRead.model_validate(await service.set_locked(student_id, False))

    @app.get("/students/{student_id}/eligible-opportunities", response_model=list[OpportunityRead])
    async def eligible_opportunities(
        student_id: str,
        service: OpportunityService = Depends(opportunity_service),
    ) -> list[OpportunityRead]:
        opportunities = await service.eligible_opportunities(student_id)
        return [OpportunityRead.model_validate(opportunity) for opportunity in opportunities]

    @app.post("/institutions/{institution_id}/opportunities", response_model=OpportunityRead, status_code=201)
    async def create_opportunity(
        institution_id: str,
        payload: OpportunityCreate,
        service: OpportunityService = Depends(opportunity_service),
    ) -> OpportunityRead:
        opportunity = await service.create(institution_id, payload.model_dump())
        return OpportunityRead.model_validate(opportunity)

    @app.get("/institutions/{institution_id}/opportunities", response_model=list[OpportunityRead])
    async def list_opportunities(
        institution_id: str,
        status: OpportunityStatus | None = None,
        type: OpportunityType | None = None,
        service: OpportunityService = Depends(opportunity_service),
    ) -> list[OpportunityRead]:
        opportunities = await service.list(institution_id, status=status, type=type)
        return [OpportunityRead.model_validate(opportunity) for opportunity in opportunities]

    @app.get("/institutions/{institution_id}/placement-stats", response_model=PlacementStatsRead)
    async def placement_stats(
        institution_id: str,
        service: StudentProfileService = Depends(student_service),
    ) -> PlacementStatsRead:
        return PlacementStatsRead.model_validate(await service.placement_stats(institution_id))

    @app.get("/opportunities/{opportunity_id}", response_model=OpportunityRead)
    async def get_opportunity(
        opportunity_id: str,
        service: OpportunityService = Depends(opportunity_service),
    ) -> OpportunityRead:
        return OpportunityRead.model_validate(await service.get(opportunity_id))

    @app.post("/opportunities/{opportunity_id}/close", response_model=OpportunityRead)
    async def close_opportunity(
        opportunity_id: str,
        service: OpportunityService = Depends(opportunity_service),
    ) -> OpportunityRead:
        return OpportunityRead.model_validate(await service.close(opportunity_id))

    @app.get("/opportunities/{opportunity_id}/eligible-students", response_model=list[StudentProfileRead])
    async def eligible_students(
        opportunity_id: str,
        service: OpportunityService = Depends(opportunity_service),
    ) -> list[StudentProfileRead]:
        students = await service.eligible_students(opportunity_id)
        return [StudentProfileRead.model_validate(student) for student in students]

    @app.get("/opportunities/{opportunity_id}/applications", response_model=list[ApplicationRead])
    async def opportunity_applications(
        opportunity_id: str,
        status: ApplicationStatus | None = None,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
    ) -> list[ApplicationRead]:
        applications = await manager.applications_for_opportunity(opportunity_id, status=status)
        return [ApplicationRead.model_validate(application) for application in applications]

    @app.post("/users/{user_id}/applications", response_model=ApplicationRead, status_code=201)
    async def apply(
        user_id: str,
        payload: ApplyRequest,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
    ) -> ApplicationRead:
        application = await manager.apply(user_id, payload.opportunity_id)
        return ApplicationRead.model_validate(application)

    @app.get("/users/{user_id}/applications", response_model=list[ApplicationRead])
    async def my_applications(
        user_id: str,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
    ) -> list[ApplicationRead]:
        applications = await manager.applications_for_user(user_id)
        return [ApplicationRead.model_validate(application) for application in applications]

    @app.patch("/applications/{application_id}/status", response_model=ApplicationRead)
    async def update_status(
        application_id: str,
        payload: StatusUpdate,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
    ) -> ApplicationRead:
        application = await manager.update_status(application_id, payload.status, payload.current_round)
        return ApplicationRead.model_validate(application)

    @app.post("/applications/bulk-status", response_model=BulkStatusResult)
    async def bulk_update_status(
        payload: BulkStatusUpdate,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
        settings: Settings = Depends(settings_provider),
    ) -> BulkStatusResult:
        if len(payload.application_ids) > settings.bulk_update_max_items:
            raise HTTPException(
                status_code=422,
                detail=f"At most {settings.bulk_update_max_items} applications can be updated at once",
            )
        result = await manager.bulk_update_status(payload.application_ids, payload.status)
        return BulkStatusResult(
            count=result.count,
            updated=result.updated,
            failed=[
                BulkFailureRead(application_id=failure.application_id, error=failure.error, detail=failure.detail)
                for failure in result.failed
            ],
        )

    @app.post("/applications/offer", response_model=ApplicationRead)
    async def create_offer(
        payload: OfferCreate,
        manager: ApplicationLifecycleManager = Depends(lifecycle_manager),
    ) -> ApplicationRead:
        application = await manager.create_offer(
            payload.application_id,
            ctc=payload.ctc,
            joining_date=payload.joining_date,
            offer_letter_url=payload.offer_letter_url,
        )
        return ApplicationRead.model_validate(application)

    return app


app = create_app()
