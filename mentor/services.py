"""Serialization helpers shared by the API and the CLI."""
from __future__ import annotations

from dataclasses import asdict

from sqlalchemy.orm import Session

from mentor.deals import StageChange
from mentor.gamification import mentee_badges
from mentor.leveling import level_summary
from mentor.ledger import daily_stats, lifetime_totals
from mentor.models import Mentee, Offer
from mentor.onboarding import (
    completion_percent, get_catalog, get_or_create_progress, next_step, step_statuses,
)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def mentee_summary(session: Session, mentee: Mentee) -> dict:
    summary = level_summary(mentee.xp)
    return {
        "id": mentee.id, "name": mentee.name, "email": mentee.email,
        "whatsapp": mentee.whatsapp, "plan": mentee.plan,
        "linked_deal_id": mentee.linked_deal_id,
        "current_stage": mentee.current_stage, "stage_progress": mentee.stage_progress,
        "blocked": mentee.blocked, "active": mentee.active,
        "xp": summary.xp, "level": summary.level,
        "next_level_xp": summary.xp_ceiling,
        "level_progress": summary.progress_percent,
        "badges": mentee_badges(session, mentee.id),
        "start_at": _iso(mentee.start_at),
    }


def onboarding_view(session: Session, mentee_id: str) -> dict:
    catalog = get_catalog(session)
    progress = get_or_create_progress(session, mentee_id)
    completed, skipped = progress.completed_step_ids, progress.skipped_step_ids
    statuses = step_statuses(catalog, completed, skipped)
    upcoming = next_step(catalog, completed, skipped)
    return {
        "mentee_id": mentee_id,
        "steps": [
            {
                "id": s.id, "order": s.order, "title": s.title, "content_type": s.content_type,
                "is_required": s.is_required, "xp_reward": s.xp_reward,
                "status": statuses[s.id].value,
            }
            for s in catalog
        ],
        "next_step_id": upcoming.id if upcoming else None,
        "completion_percent": completion_percent(catalog, completed),
        "xp_earned": progress.xp_earned,
        "total_xp": sum(s.xp_reward for s in catalog),
        "step_data": progress.step_data,
        "completed_at": _iso(progress.completed_at),
    }


def offer_stats_view(session: Session, offer: Offer) -> dict:
    totals = lifetime_totals(session, offer.id)
    return {
        "offer_id": offer.id,
        "daily_stats": [
            {"date": s.date, "spend": s.spend, "revenue": s.revenue, "profit": s.profit, "roi": s.roi}
            for s in daily_stats(session, offer.id, newest_first=True)
        ],
        **asdict(totals),
        "last_validation_at": _iso(offer.last_validation_at),
    }


def stage_change_view(change: StageChange) -> dict:
    conversion = change.conversion
    return {
        "deal_id": change.deal_id,
        "from_stage": change.from_stage.value,
        "to_stage": change.to_stage.value,
        "mentee_id": conversion.mentee_id if conversion else None,
        "mentee_created": conversion.created if conversion else False,
    }
