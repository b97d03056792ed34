"""Onboarding checklist: step status derivation, completion and skipping.

Step status is never stored. It is recomputed from the ordered catalog and
the mentee's completed/skipped sets on every call:

- ``DONE``     : the step was completed.
- ``SKIPPED``  : the step was skipped and not completed.
- ``LOCKED``   : some earlier required step is not completed. Skipping a
  required step does not unlock anything after it; only completion does.
- ``AVAILABLE``: everything else.

Completing every catalog step (required and optional alike) while the mentee
is in the onboarding stage advances the mentee to the next program stage.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mentor.errors import InvalidTransition, MissingRequiredField, UnknownEntity
from mentor.gamification import XpResult, add_xp, unlock_badge
from mentor.models import ONBOARDING_STAGE, Mentee, OnboardingProgress, OnboardingStep, next_stage
from mentor.utils import dump_ids, utcnow

log = logging.getLogger(__name__)


class StepStatus(StrEnum):
    LOCKED = "LOCKED"
    AVAILABLE = "AVAILABLE"
    DONE = "DONE"
    SKIPPED = "SKIPPED"


class ContentType(StrEnum):
    VIDEO = "VIDEO"
    PDF = "PDF"
    LINK = "LINK"
    FORM = "FORM"
    ACTION = "ACTION"


class StepLike(Protocol):
    id: str
    order: int
    is_required: bool


# ---------------------------------------------------------------------------
# Default catalog (seeded by db.seed_onboarding_steps)
# ---------------------------------------------------------------------------

DEFAULT_STEPS: list[dict[str, Any]] = [
    {
        "id": "ob1", "order": 1, "title": "Boas-vindas à Mentoria",
        "description": "Assista ao vídeo de boas-vindas e conheça a metodologia",
        "content_type": ContentType.VIDEO, "content_url": "https://youtube.com/watch?v=example",
        "estimated_minutes": 10, "is_required": True, "xp_reward": 50,
    },
    {
        "id": "ob2", "order": 2, "title": "Preencha seu Diagnóstico",
        "description": "Responda as perguntas para personalizar sua jornada",
        "content_type": ContentType.FORM, "estimated_minutes": 15, "is_required": True,
        "xp_reward": 100, "action_label": "Preencher diagnóstico",
        "form_fields_json": json.dumps([
            {"name": "experience", "label": "Qual sua experiência com tráfego pago?", "type": "select",
             "options": ["Nenhuma", "Básico", "Intermediário", "Avançado"], "required": True},
            {"name": "goal", "label": "Qual seu objetivo principal?", "type": "textarea", "required": True},
            {"name": "available_hours", "label": "Quantas horas por semana você tem disponível?",
             "type": "select", "options": ["Menos de 5h", "5-10h", "10-20h", "Mais de 20h"], "required": True},
            {"name": "budget", "label": "Qual seu orçamento mensal para tráfego?", "type": "select",
             "options": ["Até R$500", "R$500-2000", "R$2000-5000", "Acima de R$5000"], "required": True},
        ], ensure_ascii=False),
    },
    {
        "id": "ob3", "order": 3, "title": "Configure o WhatsApp",
        "description": "Adicione o número do mentor para receber updates",
        "content_type": ContentType.ACTION, "estimated_minutes": 2, "is_required": True,
        "xp_reward": 25, "action_label": "Adicionar contato",
    },
    {
        "id": "ob4", "order": 4, "title": "Agende sua Call de Onboarding",
        "description": "Escolha o melhor horário para nossa primeira call",
        "content_type": ContentType.ACTION, "estimated_minutes": 3, "is_required": True,
        "xp_reward": 50, "action_label": "Agendar call",
    },
    {
        "id": "ob5", "order": 5, "title": "Explore a Plataforma",
        "description": "Faça o tour interativo e conheça as funcionalidades",
        "content_type": ContentType.ACTION, "estimated_minutes": 5, "is_required": False,
        "xp_reward": 75, "action_label": "Iniciar tour",
    },
]

# Badges tied to specific default steps.
STEP_BADGES = {"ob2": "diagnosed", "ob4": "first_call", "ob5": "explorer"}

EARLY_BIRD_WINDOW = timedelta(hours=24)


# ---------------------------------------------------------------------------
# Status derivation (pure)
# ---------------------------------------------------------------------------


def ordered(steps: Iterable[StepLike]) -> list[StepLike]:
    return sorted(steps, key=lambda s: s.order)


def step_statuses(
    steps: Iterable[StepLike], completed: set[str], skipped: set[str],
) -> dict[str, StepStatus]:
    statuses: dict[str, StepStatus] = {}
    gate_open = True
    for step in ordered(steps):
        if step.id in completed:
            statuses[step.id] = StepStatus.DONE
        elif step.id in skipped:
            statuses[step.id] = StepStatus.SKIPPED
        elif not gate_open:
            statuses[step.id] = StepStatus.LOCKED
        else:
            statuses[step.id] = StepStatus.AVAILABLE
        if step.is_required and step.id not in completed:
            gate_open = False
    return statuses


def step_status(
    step_id: str, steps: Iterable[StepLike], completed: set[str], skipped: set[str],
) -> StepStatus:
    statuses = step_statuses(steps, completed, skipped)
    if step_id not in statuses:
        raise UnknownEntity("Onboarding step", step_id)
    return statuses[step_id]


def next_step(steps: Iterable[StepLike], completed: set[str], skipped: set[str]) -> StepLike | None:
    """First step in order that is neither completed nor skipped."""
    done = completed | skipped
    return next((s for s in ordered(steps) if s.id not in done), None)


def completion_percent(steps: Iterable[StepLike], completed: set[str]) -> int:
    """Share of required steps completed, rounded to a whole percent."""
    required = [s for s in steps if s.is_required]
    if not required:
        return 100
    return round(sum(1 for s in required if s.id in completed) / len(required) * 100)


# ---------------------------------------------------------------------------
# Content-type handlers
# ---------------------------------------------------------------------------


def _accept_any(step: OnboardingStep, form_data: dict | None) -> dict | None:
    return form_data or None


def _validate_form(step: OnboardingStep, form_data: dict | None) -> dict | None:
    answers = form_data or {}
    for f in step.form_fields:
        if f.get("required") and answers.get(f.get("name")) in (None, "", [], False):
            raise MissingRequiredField(f["name"], f"Form field '{f['name']}' is required")
    return answers or None


_HANDLERS: dict[ContentType, Callable[[OnboardingStep, dict | None], dict | None]] = {
    ContentType.VIDEO: _accept_any,
    ContentType.PDF: _accept_any,
    ContentType.LINK: _accept_any,
    ContentType.FORM: _validate_form,
    ContentType.ACTION: _accept_any,
}

_missing = set(ContentType) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No completion handler for content types: {sorted(_missing)}")


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------


@dataclass
class CompletionResult:
    step_id: str
    xp_awarded: int
    xp: XpResult | None = None
    stage_advanced: bool = False
    new_stage: str | None = None
    badges_unlocked: list[str] = field(default_factory=list)


def get_catalog(session: Session) -> list[OnboardingStep]:
    return list(session.execute(select(OnboardingStep).order_by(OnboardingStep.order)).scalars().all())


def get_or_create_progress(session: Session, mentee_id: str) -> OnboardingProgress:
    """Load the mentee's progress record, creating it on first access (caller must commit)."""
    progress = session.get(OnboardingProgress, mentee_id)
    if progress is not None:
        return progress
    if session.get(Mentee, mentee_id) is None:
        raise UnknownEntity("Mentee", mentee_id)
    now = utcnow()
    try:
        with session.begin_nested():
            progress = OnboardingProgress(
                mentee_id=mentee_id, started_at=now, last_activity_at=now,
            )
            session.add(progress)
    except IntegrityError:
        progress = session.get(OnboardingProgress, mentee_id)
        if progress is None:
            raise
    return progress


def _find_step(catalog: list[OnboardingStep], step_id: str) -> OnboardingStep:
    for step in catalog:
        if step.id == step_id:
            return step
    raise UnknownEntity("Onboarding step", step_id)


def complete_step(
    session: Session, mentee_id: str, step_id: str, form_data: dict | None = None,
) -> CompletionResult:
    """Mark a step done, award its XP and advance the stage when the checklist is finished.

    Raises ``InvalidTransition`` for locked or already completed steps and
    ``MissingRequiredField`` when a form step lacks a required answer.
    Caller must commit.
    """
    catalog = get_catalog(session)
    step = _find_step(catalog, step_id)
    progress = get_or_create_progress(session, mentee_id)
    completed, skipped = progress.completed_step_ids, progress.skipped_step_ids

    status = step_status(step_id, catalog, completed, skipped)
    if status == StepStatus.LOCKED:
        raise InvalidTransition(f"Step {step_id} is locked until earlier required steps are completed")
    if status == StepStatus.DONE:
        raise InvalidTransition(f"Step {step_id} is already completed")

    captured = _HANDLERS[ContentType(step.content_type)](step, form_data)

    now = utcnow()
    completed.add(step_id)
    progress.completed_step_ids_json = dump_ids(completed)
    if captured:
        step_data = progress.step_data
        step_data[step_id] = captured
        progress.step_data_json = json.dumps(step_data, ensure_ascii=False)
    progress.xp_earned = (progress.xp_earned or 0) + step.xp_reward
    progress.last_activity_at = now
    session.flush()

    result = CompletionResult(step_id=step_id, xp_awarded=step.xp_reward)
    if step.xp_reward:
        result.xp = add_xp(session, mentee_id, step.xp_reward)
    badge = STEP_BADGES.get(step_id)
    if badge and unlock_badge(session, mentee_id, badge):
        result.badges_unlocked.append(badge)

    mentee = session.get(Mentee, mentee_id)
    all_ids = {s.id for s in catalog}
    if mentee is not None and mentee.current_stage == ONBOARDING_STAGE and all_ids <= completed:
        mentee.current_stage = next_stage(ONBOARDING_STAGE)
        mentee.stage_progress = 0
        progress.completed_at = now
        result.stage_advanced = True
        result.new_stage = mentee.current_stage
        log.info("Mentee %s finished onboarding, advanced to %s", mentee_id, mentee.current_stage)
        if unlock_badge(session, mentee_id, "onboarding_complete"):
            result.badges_unlocked.append("onboarding_complete")
        if progress.started_at and now - progress.started_at <= EARLY_BIRD_WINDOW:
            if unlock_badge(session, mentee_id, "early_bird"):
                result.badges_unlocked.append("early_bird")
        session.flush()
    return result


def skip_step(session: Session, mentee_id: str, step_id: str) -> StepStatus:
    """Skip an optional, available step (caller must commit).

    Required steps cannot be skipped: a skipped required step would lock
    every later step for good.
    """
    catalog = get_catalog(session)
    step = _find_step(catalog, step_id)
    progress = get_or_create_progress(session, mentee_id)
    completed, skipped = progress.completed_step_ids, progress.skipped_step_ids

    status = step_status(step_id, catalog, completed, skipped)
    if status in (StepStatus.LOCKED, StepStatus.DONE):
        raise InvalidTransition(f"Step {step_id} is {status.value.lower()} and cannot be skipped")
    if step.is_required:
        raise InvalidTransition(f"Step {step_id} is required and cannot be skipped")
    if status == StepStatus.SKIPPED:
        return status

    skipped.add(step_id)
    progress.skipped_step_ids_json = dump_ids(skipped)
    progress.last_activity_at = utcnow()
    session.flush()
    return StepStatus.SKIPPED
