from __future__ import annotations

from datetime import date, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mentor.errors import UnknownEntity
from mentor.ledger import daily_stats, lifetime_totals, profit_and_roi, record_daily_measurement
from mentor.models import Offer, OfferDailyStat


@pytest.fixture()
def offer(session: Session) -> Offer:
    o = Offer(id="of1", mentee_id="m1", name="Suplemento X", status="TESTING")
    session.add(o)
    session.flush()
    return o


def _rows_for(session: Session, offer_id: str, day: str) -> int:
    return session.execute(
        select(func.count()).select_from(OfferDailyStat)
        .where(OfferDailyStat.offer_id == offer_id, OfferDailyStat.date == day)
    ).scalar_one()


class TestProfitAndRoi:
    def test_positive_roi(self):
        assert profit_and_roi(100.0, 250.0) == (150.0, 150.0)

    def test_loss(self):
        profit, roi = profit_and_roi(200.0, 50.0)
        assert profit == -150.0
        assert roi == -75.0

    def test_zero_spend_has_zero_roi(self):
        assert profit_and_roi(0.0, 80.0) == (80.0, 0.0)


class TestRecordDailyMeasurement:
    def test_second_measurement_replaces_first(self, session: Session, offer: Offer):
        record_daily_measurement(session, offer.id, "2026-03-01", 100.0, 150.0)
        stat = record_daily_measurement(session, offer.id, "2026-03-01", 120.0, 300.0)

        assert _rows_for(session, offer.id, "2026-03-01") == 1
        assert stat.spend == 120.0
        assert stat.revenue == 300.0
        assert stat.profit == 180.0
        assert stat.roi == 150.0

    def test_totals_use_latest_value_per_date(self, session: Session, offer: Offer):
        record_daily_measurement(session, offer.id, date(2026, 3, 1), 100.0, 150.0)
        record_daily_measurement(session, offer.id, date(2026, 3, 2), 50.0, 40.0)
        record_daily_measurement(session, offer.id, date(2026, 3, 1), 120.0, 300.0)

        totals = lifetime_totals(session, offer.id)
        assert totals.days == 2
        assert totals.total_spend == 170.0
        assert totals.total_revenue == 340.0
        assert totals.total_profit == 170.0
        assert totals.total_roi == pytest.approx(100.0)

    def test_other_dates_untouched(self, session: Session, offer: Offer):
        record_daily_measurement(session, offer.id, "2026-03-01", 10.0, 20.0)
        record_daily_measurement(session, offer.id, "2026-03-02", 30.0, 30.0)
        first = session.get(OfferDailyStat, (offer.id, "2026-03-01"))
        assert (first.spend, first.revenue) == (10.0, 20.0)

    def test_date_keys_normalized(self, session: Session, offer: Offer):
        record_daily_measurement(session, offer.id, datetime(2026, 3, 5, 23, 59), 1.0, 2.0)
        record_daily_measurement(session, offer.id, " 2026-03-05 ", 3.0, 4.0)
        assert _rows_for(session, offer.id, "2026-03-05") == 1

    def test_zero_spend_day(self, session: Session, offer: Offer):
        stat = record_daily_measurement(session, offer.id, "2026-03-01", 0.0, 80.0)
        assert stat.roi == 0.0
        assert lifetime_totals(session, offer.id).total_roi == 0.0

    def test_stamps_last_validation(self, session: Session, offer: Offer):
        assert offer.last_validation_at is None
        record_daily_measurement(session, offer.id, "2026-03-01", 1.0, 1.0)
        assert offer.last_validation_at is not None

    def test_unknown_offer(self, session: Session):
        with pytest.raises(UnknownEntity):
            record_daily_measurement(session, "missing", "2026-03-01", 1.0, 1.0)

    def test_negative_values_refused(self, session: Session, offer: Offer):
        with pytest.raises(ValueError):
            record_daily_measurement(session, offer.id, "2026-03-01", -1.0, 1.0)
        assert daily_stats(session, offer.id) == []


class TestHistory:
    def test_empty_offer(self, session: Session, offer: Offer):
        totals = lifetime_totals(session, offer.id)
        assert totals.days == 0
        assert totals.total_spend == 0.0
        assert totals.total_roi == 0.0

    def test_ordering(self, session: Session, offer: Offer):
        for day in ("2026-03-03", "2026-03-01", "2026-03-02"):
            record_daily_measurement(session, offer.id, day, 1.0, 1.0)
        assert [s.date for s in daily_stats(session, offer.id)] == ["2026-03-01", "2026-03-02", "2026-03-03"]
        assert [s.date for s in daily_stats(session, offer.id, newest_first=True)] == [
            "2026-03-03", "2026-03-02", "2026-03-01",
        ]
