from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from mentor.utils import json_ids, json_parse

# Ordered program stages a mentee moves through.
PROGRAM_STAGES = (
    "ONBOARDING", "MINING", "OFFER", "CREATIVES", "TRAFFIC", "OPTIMIZATION", "SCALING",
)
ONBOARDING_STAGE = PROGRAM_STAGES[0]


def next_stage(stage: str) -> str:
    """Stage following *stage*; the last stage maps to itself."""
    idx = PROGRAM_STAGES.index(stage)
    return PROGRAM_STAGES[min(idx + 1, len(PROGRAM_STAGES) - 1)]


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    role: Mapped[str] = mapped_column(String(20), default="mentee")  # mentor | mentee
    fcm_tokens_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    @property
    def fcm_tokens(self) -> list[str]:
        return [t for t in json_parse(self.fcm_tokens_json, []) if t]


class Mentee(Base):
    __tablename__ = "mentees"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    linked_lead_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    linked_deal_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    whatsapp: Mapped[str] = mapped_column(String(50), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    plan: Mapped[str] = mapped_column(String(30), default="3 meses")
    start_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    current_stage: Mapped[str] = mapped_column(String(30), default=ONBOARDING_STAGE)
    stage_progress: Mapped[int] = mapped_column(Integer, default=0)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=0)
    fcm_tokens_json: Mapped[str] = mapped_column(Text, default="[]")
    last_update_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    badges: Mapped[list[MenteeBadge]] = relationship(
        "MenteeBadge", back_populates="mentee", cascade="all, delete-orphan",
    )

    @property
    def fcm_tokens(self) -> list[str]:
        return [t for t in json_parse(self.fcm_tokens_json, []) if t]


class MenteeBadge(Base):
    """One unlocked badge; the composite key makes unlocking a set union."""
    __tablename__ = "mentee_badges"

    mentee_id: Mapped[str] = mapped_column(String(80), ForeignKey("mentees.id"), primary_key=True)
    badge_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    mentee: Mapped[Mentee] = relationship("Mentee", back_populates="badges")


class OnboardingStep(Base):
    __tablename__ = "onboarding_steps"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    order: Mapped[int] = mapped_column("step_order", Integer, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)  # VIDEO | PDF | LINK | FORM | ACTION
    content_url: Mapped[str] = mapped_column(String(500), default="")
    estimated_minutes: Mapped[int] = mapped_column(Integer, default=0)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    xp_reward: Mapped[int] = mapped_column(Integer, default=0)
    action_label: Mapped[str] = mapped_column(String(100), default="")
    form_fields_json: Mapped[str] = mapped_column(Text, default="[]")

    @property
    def form_fields(self) -> list[dict]:
        return json_parse(self.form_fields_json, [])


class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"

    mentee_id: Mapped[str] = mapped_column(String(80), ForeignKey("mentees.id"), primary_key=True)
    completed_step_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    skipped_step_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    step_data_json: Mapped[str] = mapped_column(Text, default="{}")
    xp_earned: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def completed_step_ids(self) -> set[str]:
        return json_ids(self.completed_step_ids_json)

    @property
    def skipped_step_ids(self) -> set[str]:
        return json_ids(self.skipped_step_ids_json)

    @property
    def step_data(self) -> dict:
        return json_parse(self.step_data_json, {})


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    lead_id: Mapped[str] = mapped_column(String(64), default="")
    offer_name: Mapped[str] = mapped_column(String(200), default="")
    pitch_amount: Mapped[float] = mapped_column(Float, nullable=False)
    payment_preference: Mapped[str] = mapped_column(String(20), default="UNKNOWN")  # PIX | CARD | UNKNOWN
    stage: Mapped[str] = mapped_column(String(20), default="OPEN")
    heat: Mapped[str] = mapped_column(String(10), default="WARM")  # COLD | WARM | HOT
    lead_name: Mapped[str] = mapped_column(String(300), default="")
    lead_whatsapp: Mapped[str] = mapped_column(String(50), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    source: Mapped[str] = mapped_column(String(100), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class Offer(Base):
    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mentee_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    url: Mapped[str] = mapped_column(String(500), default="")
    status: Mapped[str] = mapped_column(String(20), default="CANDIDATE")  # CANDIDATE | TESTING | DISCARDED | WINNER
    last_validation_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    daily_stats: Mapped[list[OfferDailyStat]] = relationship(
        "OfferDailyStat", back_populates="offer", cascade="all, delete-orphan",
        order_by="OfferDailyStat.date",
    )


class OfferDailyStat(Base):
    """One measurement per (offer, calendar date)."""
    __tablename__ = "offer_daily_stats"

    offer_id: Mapped[str] = mapped_column(String(64), ForeignKey("offers.id"), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), primary_key=True)  # ISO YYYY-MM-DD
    spend: Mapped[float] = mapped_column(Float, default=0.0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    profit: Mapped[float] = mapped_column(Float, default=0.0)
    roi: Mapped[float] = mapped_column(Float, default=0.0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    offer: Mapped[Offer] = relationship("Offer", back_populates="daily_stats")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_role: Mapped[str] = mapped_column(String(20), default="mentor")  # mentor | mentee
    owner_id: Mapped[str] = mapped_column(String(80), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(10), default="MEDIUM")
    status: Mapped[str] = mapped_column(String(20), default="TODO")  # TODO | DOING | DONE | CANCELED | OVERDUE


class WarmingChip(Base):
    __tablename__ = "warming_chips"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), default="")
    status: Mapped[str] = mapped_column(String(20), default="WARMING")  # WARMING | READY | BANNED | COOLING
    current_day: Mapped[int] = mapped_column(Integer, default=0)
    completion_notified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
