"""Database models for the placement portal."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; stored values are always UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ApplicationStatus(str, enum.Enum):
    APPLIED = "APPLIED"
    SHORTLISTED = "SHORTLISTED"
    ROUND1 = "ROUND1"
    ROUND2 = "ROUND2"
    OFFERED = "OFFERED"
    REJECTED = "REJECTED"


class OpportunityStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class OpportunityType(str, enum.Enum):
    FULLTIME = "FULLTIME"
    INTERNSHIP = "INTERNSHIP"


class RoundType(str, enum.Enum):
    APTITUDE = "APTITUDE"
    CODING = "CODING"
    TECHNICAL = "TECHNICAL"
    GROUP_DISCUSSION = "GROUP_DISCUSSION"
    HR = "HR"


class PlacementType(str, enum.Enum):
    ON_CAMPUS = "ON_CAMPUS"
    OFF_CAMPUS = "OFF_CAMPUS"
    PPO = "PPO"


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(enum_cls, native_enum=False, length=30, validate_strings=True)


class StudentProfile(Base):
    __tablename__ = "student_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    institution_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(200))
    enrollment_no: Mapped[str | None] = mapped_column(String(60))
    course: Mapped[str | None] = mapped_column(String(120))
    branch: Mapped[str] = mapped_column(String(120), nullable=False)
    graduation_year: Mapped[int] = mapped_column(Integer, nullable=False)
    cgpa: Mapped[float | None] = mapped_column(Float)
    active_backlogs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tenth_percentage: Mapped[float | None] = mapped_column(Float)
    twelfth_percentage: Mapped[float | None] = mapped_column(Float)
    resume_url: Mapped[str | None] = mapped_column(String(500))
    is_profile_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_profile_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Written only by the application lifecycle manager.
    is_placed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    placed_company: Mapped[str | None] = mapped_column(String(200))
    placed_role: Mapped[str | None] = mapped_column(String(200))
    placed_ctc: Mapped[str | None] = mapped_column(String(60))
    placement_type: Mapped[PlacementType | None] = mapped_column(_enum(PlacementType))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class Opportunity(Base):
    __tablename__ = "opportunities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    institution_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role_title: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[OpportunityType] = mapped_column(_enum(OpportunityType), default=OpportunityType.FULLTIME)
    location: Mapped[str | None] = mapped_column(String(200))
    ctc: Mapped[str | None] = mapped_column(String(60))
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[OpportunityStatus] = mapped_column(
        _enum(OpportunityStatus), default=OpportunityStatus.OPEN, nullable=False
    )
    last_date_to_apply: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    eligibility: Mapped[EligibilityCriteria | None] = relationship(
        "EligibilityCriteria", back_populates="opportunity", uselist=False, cascade="all, delete-orphan"
    )
    rounds: Mapped[list[RecruitmentRound]] = relationship(
        "RecruitmentRound",
        back_populates="opportunity",
        order_by="RecruitmentRound.round_order",
        cascade="all, delete-orphan",
    )


class EligibilityCriteria(Base):
    __tablename__ = "eligibility_criteria"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    opportunity_id: Mapped[str] = mapped_column(
        ForeignKey("opportunities.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    min_cgpa: Mapped[float | None] = mapped_column(Float)
    allowed_branches: Mapped[list[str] | None] = mapped_column(JSON, default=list)
    max_active_backlogs: Mapped[int | None] = mapped_column(Integer)
    min_tenth_percentage: Mapped[float | None] = mapped_column(Float)
    min_twelfth_percentage: Mapped[float | None] = mapped_column(Float)
    graduation_year: Mapped[int | None] = mapped_column(Integer)

    opportunity: Mapped[Opportunity] = relationship("Opportunity", back_populates="eligibility")


class RecruitmentRound(Base):
    __tablename__ = "recruitment_rounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    opportunity_id: Mapped[str] = mapped_column(ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=False)
    round_name: Mapped[str] = mapped_column(String(120))
    round_type: Mapped[RoundType] = mapped_column(_enum(RoundType))
    round_order: Mapped[int] = mapped_column(Integer, nullable=False)

    opportunity: Mapped[Opportunity] = relationship("Opportunity", back_populates="rounds")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("student_id", "opportunity_id", name="uq_application_student_opportunity"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(ForeignKey("student_profiles.id"), index=True, nullable=False)
    opportunity_id: Mapped[str] = mapped_column(ForeignKey("opportunities.id"), index=True, nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        _enum(ApplicationStatus), default=ApplicationStatus.APPLIED, nullable=False
    )
    current_round: Mapped[int | None] = mapped_column(Integer)
    offer_ctc: Mapped[str | None] = mapped_column(String(60))
    joining_date: Mapped[date | None] = mapped_column(Date)
    offer_letter_url: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    opportunity: Mapped[Opportunity] = relationship("Opportunity")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(40))
    link_url: Mapped[str | None] = mapped_column(String(500))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
