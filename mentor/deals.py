"""Sales pipeline transitions and conversion of paid deals into mentees."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mentor.errors import DuplicateClientError, InvalidTransition, MissingRequiredField, UnknownEntity
from mentor.gamification import XpResult, add_xp, unlock_badge
from mentor.models import ONBOARDING_STAGE, Deal, Mentee
from mentor.utils import utcnow

log = logging.getLogger(__name__)

SIX_MONTH_PLAN = "6 meses"
DEFAULT_PLAN = "3 meses"
START_BADGE = "start"


class DealStage(StrEnum):
    OPEN = "OPEN"
    PITCH_SENT = "PITCH_SENT"
    PAYMENT_SENT = "PAYMENT_SENT"
    PAID = "PAID"
    LOST = "LOST"


_PIPELINE = (DealStage.OPEN, DealStage.PITCH_SENT, DealStage.PAYMENT_SENT, DealStage.PAID)
TERMINAL_STAGES = frozenset({DealStage.PAID, DealStage.LOST})


def allowed_transitions(stage: DealStage) -> set[DealStage]:
    """Forward moves along the pipeline, plus LOST from any stage before PAID."""
    if stage in TERMINAL_STAGES:
        return set()
    idx = _PIPELINE.index(stage)
    return set(_PIPELINE[idx + 1:]) | {DealStage.LOST}


@dataclass
class ConversionResult:
    mentee_id: str
    created: bool
    xp: XpResult | None = None
    badges_unlocked: list[str] = field(default_factory=list)


@dataclass
class StageChange:
    deal_id: str
    from_stage: DealStage
    to_stage: DealStage
    conversion: ConversionResult | None = None


def plan_for_offer(offer_name: str | None) -> str:
    return SIX_MONTH_PLAN if SIX_MONTH_PLAN in (offer_name or "").lower() else DEFAULT_PLAN


def mentee_id_for_deal(deal_id: str) -> str:
    """Deterministic mentee key for a deal, so creation is insert-if-absent."""
    return f"deal-{deal_id}"


def _linked_mentee(session: Session, deal_id: str) -> Mentee | None:
    return session.execute(
        select(Mentee).where(Mentee.linked_deal_id == deal_id)
    ).scalars().first()


def ensure_client_exists(session: Session, deal: Deal, signing_bonus_xp: int | None = None) -> ConversionResult:
    """Return the mentee for *deal*, creating it if none exists (caller must commit).

    At most one mentee exists per deal: the new record is keyed by
    :func:`mentee_id_for_deal` and ``linked_deal_id`` is unique, so a racing
    duplicate insert fails and the existing record is returned instead. Only
    the call that creates the record awards the signing bonus and start badge.
    """
    existing = _linked_mentee(session, deal.id)
    if existing is not None:
        return ConversionResult(mentee_id=existing.id, created=False)

    if signing_bonus_xp is None:
        from mentor.config import get_settings
        signing_bonus_xp = get_settings().signing_bonus_xp

    key = mentee_id_for_deal(deal.id)
    now = utcnow()
    try:
        with session.begin_nested():
            session.add(Mentee(
                id=key,
                linked_lead_id=deal.lead_id or None,
                linked_deal_id=deal.id,
                name=deal.lead_name or "Sem nome",
                whatsapp=deal.lead_whatsapp or "",
                email=deal.email or "",
                plan=plan_for_offer(deal.offer_name),
                start_at=now,
                current_stage=ONBOARDING_STAGE,
                stage_progress=0,
                blocked=False,
                active=True,
                xp=0,
                level=0,
                created_at=now,
                updated_at=now,
            ))
    except IntegrityError:
        existing = _linked_mentee(session, deal.id)
        if existing is not None:
            log.info("Deal %s already converted by a concurrent call (mentee %s)", deal.id, existing.id)
            return ConversionResult(mentee_id=existing.id, created=False)
        raise DuplicateClientError(
            f"Mentee id {key!r} is taken by a record not linked to deal {deal.id!r}"
        ) from None

    log.info("Converted deal %s into mentee %s (%s)", deal.id, key, plan_for_offer(deal.offer_name))
    result = ConversionResult(mentee_id=key, created=True)
    result.xp = add_xp(session, key, signing_bonus_xp)
    if unlock_badge(session, key, START_BADGE):
        result.badges_unlocked.append(START_BADGE)
    return result


def move_deal(session: Session, deal_id: str, stage: str, email: str | None = None) -> StageChange:
    """Move a deal to *stage*; reaching PAID converts it into a mentee (caller must commit).

    PAID requires an email on the deal. Without one the move is refused with
    ``MissingRequiredField`` and the deal keeps its current stage.
    """
    deal = session.get(Deal, deal_id)
    if deal is None:
        raise UnknownEntity("Deal", deal_id)
    try:
        target = DealStage(stage)
    except ValueError:
        raise InvalidTransition(f"Unknown deal stage {stage!r}") from None
    current = DealStage(deal.stage)

    if target not in allowed_transitions(current):
        raise InvalidTransition(f"Deal {deal_id} cannot move from {current} to {target}")

    if email is not None and email.strip():
        deal.email = email.strip()
    if target == DealStage.PAID and not (deal.email or "").strip():
        raise MissingRequiredField("email", "An email is required before a deal can be marked PAID")

    deal.stage = target.value
    deal.updated_at = utcnow()
    session.flush()
    change = StageChange(deal_id=deal_id, from_stage=current, to_stage=target)
    if target == DealStage.PAID:
        change.conversion = ensure_client_exists(session, deal)
    log.info("Deal %s moved %s -> %s", deal_id, current, target)
    return change
