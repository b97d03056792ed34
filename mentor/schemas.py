"""Pydantic request/response schemas for the mentor API."""
from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field, field_validator


class MenteeOut(BaseModel):
    id: str
    name: str
    email: str
    whatsapp: str
    plan: str
    linked_deal_id: str | None = None
    current_stage: str
    stage_progress: int
    blocked: bool
    active: bool
    xp: int
    level: int
    next_level_xp: int
    level_progress: int
    badges: list[str] = []
    start_at: str | None = None


class XpAward(BaseModel):
    amount: int = Field(ge=0)


class XpOut(BaseModel):
    new_xp: int
    new_level: int
    leveled_up: bool


class BadgeUnlock(BaseModel):
    badge_id: str


class BadgeOut(BaseModel):
    badge_id: str
    unlocked: bool
    badges: list[str]


class OnboardingStepOut(BaseModel):
    id: str
    order: int
    title: str
    content_type: str
    is_required: bool
    xp_reward: int
    status: str


class OnboardingOut(BaseModel):
    mentee_id: str
    steps: list[OnboardingStepOut]
    next_step_id: str | None = None
    completion_percent: int
    xp_earned: int
    total_xp: int
    step_data: dict[str, Any] = {}
    completed_at: str | None = None


class StepCompletion(BaseModel):
    form_data: dict[str, Any] | None = None


class StepCompletionOut(BaseModel):
    step_id: str
    xp_awarded: int
    stage_advanced: bool
    new_stage: str | None = None
    badges_unlocked: list[str] = []
    onboarding: OnboardingOut


class DealStageUpdate(BaseModel):
    stage: str
    email: str | None = None

    @field_validator("stage")
    @classmethod
    def stage_upper(cls, v: str) -> str:
        return v.strip().upper()


class DealStageOut(BaseModel):
    deal_id: str
    from_stage: str
    to_stage: str
    mentee_id: str | None = None
    mentee_created: bool = False


class DailyMeasurement(BaseModel):
    date: dt.date | None = None
    spend: float = Field(ge=0)
    revenue: float = Field(ge=0)


class DailyStatOut(BaseModel):
    date: str
    spend: float
    revenue: float
    profit: float
    roi: float


class OfferStatsOut(BaseModel):
    offer_id: str
    daily_stats: list[DailyStatOut]
    total_spend: float
    total_revenue: float
    total_profit: float
    total_roi: float
    days: int
    last_validation_at: str | None = None


class LevelOut(BaseModel):
    xp: int
    level: int
    xp_floor: int
    xp_ceiling: int
    progress_percent: int
