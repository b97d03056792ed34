"""Experience and badge writes against mentee records."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mentor.errors import UnknownEntity
from mentor.leveling import level
from mentor.models import Mentee, MenteeBadge, Offer, OfferDailyStat
from mentor.utils import utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    icon: str
    label: str
    description: str


BADGES: dict[str, BadgeDefinition] = {b.id: b for b in (
    BadgeDefinition("start", "🚀", "Start", "Entrou para a mentoria"),
    BadgeDefinition("miner", "⛏️", "Minerador", "Cadastrou 50 ofertas"),
    BadgeDefinition("first_sale", "💰", "Primeira Venda", "Faturou seu primeiro real"),
    BadgeDefinition("10k_club", "🔥", "10k Club", "Faturou mais de R$ 10.000"),
    BadgeDefinition("veteran", "🎓", "Veterano", "Mais de 3 meses de casa"),
    BadgeDefinition("early_bird", "🌅", "Early Bird", "Completou onboarding em menos de 24h"),
    BadgeDefinition("diagnosed", "📋", "Diagnosticado", "Preencheu o formulário de diagnóstico"),
    BadgeDefinition("first_call", "📞", "Primeira Call", "Participou da call de onboarding"),
    BadgeDefinition("explorer", "🧭", "Explorador", "Completou o tour da plataforma"),
    BadgeDefinition("onboarding_complete", "🏆", "Onboarding Completo", "Finalizou todo o onboarding"),
)}

VETERAN_AFTER = timedelta(days=90)
MINER_OFFER_COUNT = 50
TEN_K_REVENUE = 10_000


@dataclass(frozen=True)
class XpResult:
    new_xp: int
    new_level: int
    leveled_up: bool


def add_xp(session: Session, mentee_id: str, amount: int) -> XpResult | None:
    """Atomically add *amount* XP and re-derive the level (caller must commit).

    The increment runs as a single ``UPDATE ... SET xp = xp + :amount`` so
    concurrent awards never overwrite each other. Returns ``None`` when the
    mentee does not exist.
    """
    if amount < 0:
        raise ValueError("XP can only grow; amount must be non-negative")
    now = utcnow()
    new_xp = session.execute(
        update(Mentee)
        .where(Mentee.id == mentee_id)
        .values(xp=Mentee.xp + amount, last_update_at=now)
        .returning(Mentee.xp)
    ).scalar_one_or_none()
    if new_xp is None:
        log.info("add_xp skipped: mentee %s not found", mentee_id)
        return None

    new_level = level(new_xp)
    session.execute(
        update(Mentee).where(Mentee.id == mentee_id).values(level=new_level)
    )
    old_level = level(new_xp - amount)
    if new_level > old_level:
        log.info("Mentee %s reached level %d (%d XP)", mentee_id, new_level, new_xp)
    return XpResult(new_xp=new_xp, new_level=new_level, leveled_up=new_level > old_level)


def unlock_badge(session: Session, mentee_id: str, badge_id: str) -> bool:
    """Add *badge_id* to the mentee's badge set (caller must commit).

    Returns True when the badge was newly unlocked, False when it was already
    held. Safe to repeat and safe under concurrent unlocks.
    """
    if badge_id not in BADGES:
        raise UnknownEntity("Badge", badge_id)
    if session.get(MenteeBadge, (mentee_id, badge_id)) is not None:
        return False
    if session.get(Mentee, mentee_id) is None:
        log.info("unlock_badge skipped: mentee %s not found", mentee_id)
        return False
    try:
        with session.begin_nested():
            session.add(MenteeBadge(mentee_id=mentee_id, badge_id=badge_id, unlocked_at=utcnow()))
    except IntegrityError:
        # Another writer unlocked it first; the set already holds the badge.
        return False
    log.info("Mentee %s unlocked badge %s", mentee_id, badge_id)
    return True


def mentee_badges(session: Session, mentee_id: str) -> list[str]:
    rows = session.execute(
        select(MenteeBadge.badge_id).where(MenteeBadge.mentee_id == mentee_id)
    ).scalars().all()
    return sorted(rows)


def veteran_eligible(mentee: Mentee, now: datetime | None = None) -> bool:
    if mentee.start_at is None:
        return False
    return (now or utcnow()) - mentee.start_at > VETERAN_AFTER


def award_milestone_badges(session: Session, mentee_id: str, now: datetime | None = None) -> list[str]:
    """Unlock tenure, mining and revenue badges the mentee now qualifies for (caller must commit).

    Returns the badges unlocked by this call.
    """
    mentee = session.get(Mentee, mentee_id)
    if mentee is None:
        return []
    offers = session.execute(
        select(func.count()).select_from(Offer).where(Offer.mentee_id == mentee_id)
    ).scalar_one()
    revenue = session.execute(
        select(func.coalesce(func.sum(OfferDailyStat.revenue), 0.0))
        .join(Offer, Offer.id == OfferDailyStat.offer_id)
        .where(Offer.mentee_id == mentee_id)
    ).scalar_one()

    earned = []
    if veteran_eligible(mentee, now):
        earned.append("veteran")
    if offers >= MINER_OFFER_COUNT:
        earned.append("miner")
    if revenue > 0:
        earned.append("first_sale")
    if revenue > TEN_K_REVENUE:
        earned.append("10k_club")
    return [badge for badge in earned if unlock_badge(session, mentee_id, badge)]
