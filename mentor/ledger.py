"""Daily spend/revenue ledger per offer.

Each ``(offer, date)`` pair is its own row, so recording a day only touches
that day: a second measurement for the same date replaces the first, and
measurements for other dates are never rewritten. Lifetime totals are always
summed from the rows, never stored.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mentor.errors import UnknownEntity
from mentor.gamification import award_milestone_badges
from mentor.models import Offer, OfferDailyStat
from mentor.utils import iso_day, utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifetimeTotals:
    total_spend: float
    total_revenue: float
    total_profit: float
    total_roi: float
    days: int


def profit_and_roi(spend: float, revenue: float) -> tuple[float, float]:
    profit = revenue - spend
    roi = profit / spend * 100 if spend > 0 else 0.0
    return profit, roi


def _apply(stat: OfferDailyStat, spend: float, revenue: float) -> None:
    stat.spend = spend
    stat.revenue = revenue
    stat.profit, stat.roi = profit_and_roi(spend, revenue)
    stat.recorded_at = utcnow()


def record_daily_measurement(
    session: Session, offer_id: str, day: date | datetime | str, spend: float, revenue: float,
) -> OfferDailyStat:
    """Upsert the measurement for *day*, replacing any earlier one for that date (caller must commit)."""
    if spend < 0 or revenue < 0:
        raise ValueError("spend and revenue must be non-negative")
    offer = session.get(Offer, offer_id)
    if offer is None:
        raise UnknownEntity("Offer", offer_id)
    key = iso_day(day)

    stat = session.get(OfferDailyStat, (offer_id, key))
    if stat is None:
        stat = OfferDailyStat(offer_id=offer_id, date=key)
        _apply(stat, spend, revenue)
        try:
            with session.begin_nested():
                session.add(stat)
        except IntegrityError:
            # A concurrent writer inserted this date first; overwrite its values.
            stat = session.get(OfferDailyStat, (offer_id, key), populate_existing=True)
            if stat is None:
                raise
            _apply(stat, spend, revenue)
    else:
        _apply(stat, spend, revenue)

    offer.last_validation_at = utcnow()
    session.flush()
    if offer.mentee_id:
        award_milestone_badges(session, offer.mentee_id)
    log.info("Offer %s %s: spend=%.2f revenue=%.2f roi=%.1f%%", offer_id, key, spend, revenue, stat.roi)
    return stat


def daily_stats(session: Session, offer_id: str, newest_first: bool = False) -> list[OfferDailyStat]:
    order = OfferDailyStat.date.desc() if newest_first else OfferDailyStat.date
    return list(session.execute(
        select(OfferDailyStat).where(OfferDailyStat.offer_id == offer_id).order_by(order)
    ).scalars().all())


def lifetime_totals(session: Session, offer_id: str) -> LifetimeTotals:
    spend, revenue, days = session.execute(
        select(
            func.coalesce(func.sum(OfferDailyStat.spend), 0.0),
            func.coalesce(func.sum(OfferDailyStat.revenue), 0.0),
            func.count(),
        ).where(OfferDailyStat.offer_id == offer_id)
    ).one()
    profit, roi = profit_and_roi(float(spend), float(revenue))
    return LifetimeTotals(
        total_spend=float(spend), total_revenue=float(revenue),
        total_profit=profit, total_roi=roi, days=int(days),
    )
