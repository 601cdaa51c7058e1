"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portal.models import (
    ApplicationStatus,
    OpportunityStatus,
    OpportunityType,
    PlacementType,
    RoundType,
)


class StudentProfileBase(BaseModel):
    full_name: str | None = None
    enrollment_no: str | None = None
    course: str | None = None
    cgpa: float | None = Field(default=None, ge=0, le=10)
    active_backlogs: int = Field(default=0, ge=0)
    tenth_percentage: float | None = Field(default=None, ge=0, le=100)
    twelfth_percentage: float | None = Field(default=None, ge=0, le=100)
    resume_url: str | None = None


class StudentProfileCreate(StudentProfileBase):
    institution_id: str
    branch: str
    graduation_year: int


class StudentProfileUpdate(BaseModel):
    full_name: str | None = None
    enrollment_no: str | None = None
    course: str | None = None
    branch: str | None = None
    graduation_year: int | None = None
    cgpa: float | None = Field(default=None, ge=0, le=10)
    active_backlogs: int | None = Field(default=None, ge=0)
    tenth_percentage: float | None = Field(default=None, ge=0, le=100)
    twelfth_percentage: float | None = Field(default=None, ge=0, le=100)
    resume_url: str | None = None

    @field_validator("branch", "graduation_year", "active_backlogs")
    @classmethod
    def _not_null(cls, value):
        # These columns are NOT NULL; omit the field to leave it unchanged.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class StudentProfileRead(StudentProfileBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    institution_id: str
    branch: str
    graduation_year: int
    is_profile_complete: bool
    is_profile_locked: bool
    is_placed: bool
    placed_company: str | None = None
    placed_role: str | None = None
    placed_ctc: str | None = None
    placement_type: PlacementType | None = None


class EligibilityCriteriaSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min_cgpa: float | None = Field(default=None, ge=0)
    allowed_branches: list[str] | None = Field(default_factory=list)
    max_active_backlogs: int | None = Field(default=None, ge=0)
    min_tenth_percentage: float | None = Field(default=None, ge=0)
    min_twelfth_percentage: float | None = Field(default=None, ge=0)
    graduation_year: int | None = None


class RecruitmentRoundSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    round_name: str
    round_type: RoundType
    round_order: int = Field(..., ge=1)


class OpportunityCreate(BaseModel):
    company_name: str
    role_title: str
    type: OpportunityType = OpportunityType.FULLTIME
    location: str | None = None
    ctc: str | None = None
    description: str | None = None
    last_date_to_apply: datetime
    eligibility: EligibilityCriteriaSchema | None = None
    rounds: list[RecruitmentRoundSchema] = Field(default_factory=list)


class OpportunitySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_name: str
    role_title: str
    type: OpportunityType


class OpportunityRead(OpportunitySummary):
    id: str
    institution_id: str
    location: str | None = None
    ctc: str | None = None
    description: str | None = None
    status: OpportunityStatus
    last_date_to_apply: datetime
    eligibility: EligibilityCriteriaSchema | None = None
    rounds: list[RecruitmentRoundSchema] = Field(default_factory=list)


class ApplyRequest(BaseModel):
    opportunity_id: str


class StatusUpdate(BaseModel):
    status: ApplicationStatus
    current_round: int | None = Field(default=None, ge=1)


class BulkStatusUpdate(BaseModel):
    application_ids: list[str] = Field(..., min_length=1)
    status: ApplicationStatus


class BulkFailureRead(BaseModel):
    application_id: str
    error: str
    detail: str


class BulkStatusResult(BaseModel):
    count: int
    updated: list[str]
    failed: list[BulkFailureRead]


class OfferCreate(BaseModel):
    application_id: str
    ctc: str | None = None
    joining_date: date | None = None
    offer_letter_url: str | None = None


class ApplicationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    opportunity_id: str
    status: ApplicationStatus
    current_round: int | None = None
    offer_ctc: str | None = None
    joining_date: date | None = None
    offer_letter_url: str | None = None
    created_at: datetime | None = None
    opportunity: OpportunitySummary | None = None


class ErrorResponse(BaseModel):
    error: str
    detail: str


class BranchStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    branch: str
    total: int
    placed: int
    percentage: float


class CompanyStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company: str
    count: int


class PlacementStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_students: int
    placed_students: int
    placement_percentage: float
    average_ctc: float
    branch_wise: list[BranchStatsRead]
    company_wise: list[CompanyStatsRead]
