"""Monthly cycle lifecycle tests."""
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from business.cycles import CycleManager
from business.errors import NotFound
from database.models import MonthlyCycle


@pytest.fixture
def cycles(temp_db):
    return CycleManager(temp_db)


def _all_cycles(db):
    with db.transaction() as session:
        return session.query(MonthlyCycle).order_by(MonthlyCycle.id).all()


class TestEnsureCurrentCycle:
    """Tests for CycleManager.ensure_current_cycle()."""

    def test_creates_open_cycle(self, temp_db, cycles):
        cycle = cycles.ensure_current_cycle(datetime(2024, 6, 10, 12, 0))
        assert cycle.cycle_year == 2024
        assert cycle.cycle_month == 6
        assert cycle.status == "open"
        assert cycle.started_at == datetime(2024, 6, 1)

    def test_second_call_same_month_reuses_cycle(self, temp_db, cycles):
        first = cycles.ensure_current_cycle(datetime(2024, 6, 1))
        second = cycles.ensure_current_cycle(datetime(2024, 6, 30, 23, 59))
        assert first.id == second.id
        rows = _all_cycles(temp_db)
        assert len(rows) == 1
        assert rows[0].status == "open"

    def test_closes_previous_open_cycles(self, temp_db, cycles, make_cycle):
        may = make_cycle(2024, 5)
        april = make_cycle(2024, 4)
        now = datetime(2024, 6, 2, 8, 0)
        june = cycles.ensure_current_cycle(now)

        by_id = {c.id: c for c in _all_cycles(temp_db)}
        assert by_id[june.id].status == "open"
        for old in (may, april):
            assert by_id[old.id].status == "closed"
            assert by_id[old.id].closed_at == now

    def test_at_most_one_open_cycle(self, temp_db, cycles, make_cycle):
        make_cycle(2024, 5)
        make_cycle(2024, 7)
        cycles.ensure_current_cycle(datetime(2024, 6, 15))
        assert len(temp_db.cycles.list_open()) == 1

    def test_reopens_closed_current_month(self, temp_db, cycles, make_cycle):
        june = make_cycle(2024, 6, status="closed")
        cycle = cycles.ensure_current_cycle(datetime(2024, 6, 15))
        assert cycle.id == june.id
        assert cycle.status == "open"
        assert cycle.closed_at is None

    def test_aware_clock_is_converted_to_utc(self, cycles):
        # 21:30 on May 31st in UTC-3 is already June in UTC
        now = datetime(2024, 5, 31, 21, 30, tzinfo=timezone(timedelta(hours=-3)))
        cycle = cycles.ensure_current_cycle(now)
        assert (cycle.cycle_year, cycle.cycle_month) == (2024, 6)

    def test_retries_once_after_concurrent_creation(self, temp_db, cycles, monkeypatch):
        original = cycles._ensure_open
        calls = {"n": 0}

        def flaky(now, session):
            calls["n"] += 1
            if calls["n"] == 1:
                raise IntegrityError("insert", {}, Exception("duplicate"))
            return original(now, session)

        monkeypatch.setattr(cycles, "_ensure_open", flaky)
        cycle = cycles.ensure_current_cycle(datetime(2024, 6, 15))
        assert calls["n"] == 2
        assert cycle.cycle_month == 6


class TestGetCycleByIdOrCurrent:
    def test_known_id(self, cycles, make_cycle):
        may = make_cycle(2024, 5, status="closed")
        assert cycles.get_cycle_by_id_or_current(str(may.id)).id == may.id

    @pytest.mark.parametrize("cycle_id", [None, "abc", 0, 9999])
    def test_falls_back_to_current(self, cycles, cycle_id):
        cycle = cycles.get_cycle_by_id_or_current(cycle_id, now=datetime(2024, 6, 15))
        assert (cycle.cycle_year, cycle.cycle_month) == (2024, 6)


class TestEnsureCycleForDate:
    def test_creates_cycle_without_closing_others(self, temp_db, cycles, make_cycle):
        june = make_cycle(2024, 6)
        march = cycles.ensure_cycle_for_date("2024-03-17")
        assert (march.cycle_year, march.cycle_month) == (2024, 3)
        assert march.status == "open"
        assert temp_db.cycles.find_by_id(june.id).status == "open"

    def test_reuses_existing_cycle(self, cycles, make_cycle):
        june = make_cycle(2024, 6, status="closed")
        assert cycles.ensure_cycle_for_date("2024-06-30").id == june.id

    @pytest.mark.parametrize("value", ["", "2024-02-30", "30/06/2024", None])
    def test_invalid_date_returns_none(self, cycles, value):
        assert cycles.ensure_cycle_for_date(value) is None

    def test_joins_caller_session(self, temp_db, cycles):
        with temp_db.transaction() as session:
            cycle = cycles.ensure_cycle_for_date(date(2024, 8, 1), session=session)
            assert temp_db.cycles.find_by_month(2024, 8, session=session).id == cycle.id


class TestTouchCycle:
    def test_strict_touch_of_missing_cycle(self, temp_db, cycles):
        with pytest.raises(NotFound):
            with temp_db.transaction() as session:
                cycles.touch_cycle(9999, session)

    def test_best_effort_touch_of_missing_cycle(self, temp_db, cycles):
        with temp_db.transaction() as session:
            assert cycles.touch_cycle(9999, session, best_effort=True) is False

    def test_none_is_a_no_op(self, temp_db, cycles):
        with temp_db.transaction() as session:
            assert cycles.touch_cycle(None, session) is False

    def test_touch_bumps_updated_at(self, temp_db, cycles, june_cycle):
        before = june_cycle.updated_at
        with temp_db.transaction() as session:
            assert cycles.touch_cycle(june_cycle.id, session) is True
        assert temp_db.cycles.find_by_id(june_cycle.id).updated_at >= before


class TestCycleSummary:
    def test_summary_fields(self, june_cycle):
        summary = CycleManager.cycle_summary(june_cycle)
        assert summary["label"] == "06/2024"
        assert summary["startDate"] == "2024-06-01"
        assert summary["endDate"] == "2024-06-30"
        assert summary["status"] == "open"

    def test_leap_february(self, make_cycle):
        assert CycleManager.cycle_summary(make_cycle(2024, 2))["endDate"] == "2024-02-29"

    def test_none(self):
        assert CycleManager.cycle_summary(None) is None

    def test_contains(self, june_cycle):
        assert CycleManager.contains(june_cycle, date(2024, 6, 30))
        assert not CycleManager.contains(june_cycle, date(2024, 7, 1))
