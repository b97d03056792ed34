from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mentor import services
from mentor.db import get_session, init_db
from mentor.deals import move_deal
from mentor.errors import MentorError, MissingRequiredField, UnknownEntity
from mentor.gamification import add_xp, mentee_badges, unlock_badge
from mentor.ledger import record_daily_measurement
from mentor.leveling import level_summary
from mentor.models import Mentee, Offer
from mentor.onboarding import complete_step, skip_step
from mentor.schemas import (
    BadgeOut,
    BadgeUnlock,
    DailyMeasurement,
    DealStageOut,
    DealStageUpdate,
    LevelOut,
    MenteeOut,
    OfferStatsOut,
    OnboardingOut,
    StepCompletion,
    StepCompletionOut,
    XpAward,
    XpOut,
)
from mentor.utils import utcnow

log = logging.getLogger(__name__)

PROGRESS_CONFLICT = "Onboarding progress was changed by another request; reload and retry"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Mentor Ledger",
    version="0.1.0",
    description=(
        "Mentee progression and outcome ledger: onboarding checklist, XP and badges, "
        "deal conversion and daily offer metrics. All endpoints return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Mentees", "description": "Mentee records, XP and badges."},
        {"name": "Onboarding", "description": "Onboarding checklist status, completion and skipping."},
        {"name": "Deals", "description": "Sales pipeline transitions and conversion into mentees."},
        {"name": "Offers", "description": "Daily spend/revenue ledger per offer."},
        {"name": "Levels", "description": "XP to level conversion."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_or_404(session: Session, model, entity_id: str, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


def _http_error(exc: MentorError) -> HTTPException:
    if isinstance(exc, UnknownEntity):
        return HTTPException(404, str(exc))
    if isinstance(exc, MissingRequiredField):
        return HTTPException(422, {"message": str(exc), "field": exc.field})
    return HTTPException(409, str(exc))


# ---------------------------------------------------------------------------
# Routes: Levels
# ---------------------------------------------------------------------------


@app.get("/api/level/{xp}", response_model=LevelOut, tags=["Levels"], summary="Level and progress for an XP total")
async def get_level(xp: int):
    return asdict(level_summary(xp))


# ---------------------------------------------------------------------------
# Routes: Mentees
# ---------------------------------------------------------------------------


@app.get("/api/mentees/{mentee_id}", response_model=MenteeOut, tags=["Mentees"], summary="Get a mentee with level and badges")
async def get_mentee(mentee_id: str, session: Session = Depends(db_session)):
    return services.mentee_summary(session, _get_or_404(session, Mentee, mentee_id, "Mentee"))


@app.post("/api/mentees/{mentee_id}/xp", response_model=XpOut, tags=["Mentees"], summary="Award XP to a mentee")
async def award_xp(mentee_id: str, body: XpAward, session: Session = Depends(db_session)):
    result = add_xp(session, mentee_id, body.amount)
    if result is None:
        raise HTTPException(404, "Mentee not found")
    session.commit()
    return asdict(result)


@app.post("/api/mentees/{mentee_id}/badges", response_model=BadgeOut, tags=["Mentees"], summary="Unlock a badge (idempotent)")
async def award_badge(mentee_id: str, body: BadgeUnlock, session: Session = Depends(db_session)):
    _get_or_404(session, Mentee, mentee_id, "Mentee")
    try:
        unlocked = unlock_badge(session, mentee_id, body.badge_id)
    except MentorError as exc:
        raise _http_error(exc) from exc
    session.commit()
    return {"badge_id": body.badge_id, "unlocked": unlocked, "badges": mentee_badges(session, mentee_id)}


# ---------------------------------------------------------------------------
# Routes: Onboarding
# ---------------------------------------------------------------------------


@app.get("/api/mentees/{mentee_id}/onboarding", response_model=OnboardingOut,
         tags=["Onboarding"], summary="Onboarding checklist with derived step status")
async def get_onboarding(mentee_id: str, session: Session = Depends(db_session)):
    _get_or_404(session, Mentee, mentee_id, "Mentee")
    view = services.onboarding_view(session, mentee_id)
    session.commit()
    return view


@app.post("/api/mentees/{mentee_id}/onboarding/{step_id}/complete", response_model=StepCompletionOut,
          tags=["Onboarding"], summary="Complete an onboarding step")
async def complete_onboarding_step(
    mentee_id: str, step_id: str, body: StepCompletion | None = None,
    session: Session = Depends(db_session),
):
    _get_or_404(session, Mentee, mentee_id, "Mentee")
    try:
        result = complete_step(session, mentee_id, step_id, (body or StepCompletion()).form_data)
    except MentorError as exc:
        raise _http_error(exc) from exc
    except StaleDataError as exc:
        raise HTTPException(409, PROGRESS_CONFLICT) from exc
    session.commit()
    return {
        "step_id": result.step_id, "xp_awarded": result.xp_awarded,
        "stage_advanced": result.stage_advanced, "new_stage": result.new_stage,
        "badges_unlocked": result.badges_unlocked,
        "onboarding": services.onboarding_view(session, mentee_id),
    }


@app.post("/api/mentees/{mentee_id}/onboarding/{step_id}/skip", response_model=OnboardingOut,
          tags=["Onboarding"], summary="Skip an optional onboarding step")
async def skip_onboarding_step(mentee_id: str, step_id: str, session: Session = Depends(db_session)):
    _get_or_404(session, Mentee, mentee_id, "Mentee")
    try:
        skip_step(session, mentee_id, step_id)
    except MentorError as exc:
        raise _http_error(exc) from exc
    except StaleDataError as exc:
        raise HTTPException(409, PROGRESS_CONFLICT) from exc
    session.commit()
    return services.onboarding_view(session, mentee_id)


# ---------------------------------------------------------------------------
# Routes: Deals
# ---------------------------------------------------------------------------


@app.post("/api/deals/{deal_id}/stage", response_model=DealStageOut,
          tags=["Deals"], summary="Move a deal through the pipeline; PAID converts it into a mentee")
async def update_deal_stage(deal_id: str, body: DealStageUpdate, session: Session = Depends(db_session)):
    try:
        change = move_deal(session, deal_id, body.stage, email=body.email)
    except MentorError as exc:
        raise _http_error(exc) from exc
    session.commit()
    return services.stage_change_view(change)


# ---------------------------------------------------------------------------
# Routes: Offers
# ---------------------------------------------------------------------------


@app.post("/api/offers/{offer_id}/daily-stats", response_model=OfferStatsOut,
          tags=["Offers"], summary="Record the spend/revenue measurement for one day")
async def record_daily_stats(offer_id: str, body: DailyMeasurement, session: Session = Depends(db_session)):
    offer = _get_or_404(session, Offer, offer_id, "Offer")
    day = body.date or utcnow().date()
    record_daily_measurement(session, offer_id, day, body.spend, body.revenue)
    session.commit()
    return services.offer_stats_view(session, offer)


@app.get("/api/offers/{offer_id}/stats", response_model=OfferStatsOut,
         tags=["Offers"], summary="Daily history and lifetime totals for an offer")
async def get_offer_stats(offer_id: str, session: Session = Depends(db_session)):
    return services.offer_stats_view(session, _get_or_404(session, Offer, offer_id, "Offer"))


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("mentor.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
