"""Repository tests.

Tests for:
- InfluencerRepository: coupon lookups, get_or_create
- ContentScriptRepository: exists, list_recent
- SkuPointRepository: upsert, find_active, active_rate_map
- CycleRepository / PlanRepository / SaleRepository / CommissionRepository
"""
from datetime import date

import pytest

from database.models import Influencer, InfluencerPlan, SkuPoint


# ============================================================
# Reference data
# ============================================================
class TestInfluencerRepository:
    """Tests for InfluencerRepository."""

    def test_find_by_coupon_ignores_case_and_spaces(self, temp_db, make_influencer):
        influencer = make_influencer("Ana", coupon="Ana10")
        found = temp_db.influencers.find_by_coupon("  aNA10 ")
        assert found is not None
        assert found.id == influencer.id

    def test_find_by_coupon_empty(self, temp_db):
        assert temp_db.influencers.find_by_coupon("") is None
        assert temp_db.influencers.find_by_coupon(None) is None

    def test_map_by_coupons(self, temp_db, make_influencer):
        ana = make_influencer("Ana", coupon="ANA10")
        bia = make_influencer("Bia", coupon="bia20")
        mapping = temp_db.influencers.map_by_coupons(["ana10", "BIA20", "", "XYZ"])
        assert set(mapping) == {"ana10", "bia20"}
        assert mapping["ana10"].id == ana.id
        assert mapping["bia20"].id == bia.id

    def test_coupon_is_trimmed_on_create(self, temp_db, make_influencer):
        influencer = make_influencer("Ana", coupon="  ANA10 ")
        assert influencer.coupon == "ANA10"

    def test_stored_coupon_with_spaces_matches(self, temp_db):
        with temp_db.transaction() as session:
            session.add(Influencer(name="Bia", coupon=" Bia20 "))
        assert temp_db.influencers.find_by_coupon("bia20").name == "Bia"
        assert set(temp_db.influencers.map_by_coupons(["BIA20"])) == {"bia20"}

    def test_non_ascii_coupon_ignores_case(self, temp_db, make_influencer):
        julia = make_influencer("Julia", coupon="JÚLIA")
        make_influencer("Ana", coupon="ANA10")
        assert temp_db.influencers.find_by_coupon("júlia").id == julia.id
        mapping = temp_db.influencers.map_by_coupons(["júlia", "ana10"])
        assert set(mapping) == {"júlia", "ana10"}
        assert mapping["júlia"].id == julia.id

    def test_get_or_create_reuses_coupon(self, temp_db):
        first = temp_db.influencers.get_or_create("Ana", "ANA10", instagram="ana")
        second = temp_db.influencers.get_or_create("Outra", "ana10")
        assert first.id == second.id

    def test_find_by_user_id(self, temp_db, make_influencer):
        influencer = make_influencer(user_id=42)
        assert temp_db.influencers.find_by_user_id(42).id == influencer.id
        assert temp_db.influencers.find_by_user_id(7) is None

    def test_list_by_name(self, temp_db, make_influencer):
        make_influencer("Carla")
        make_influencer("Ana")
        names = [i.name for i in temp_db.influencers.list_by_name()]
        assert names == ["Ana", "Carla"]


class TestContentScriptRepository:
    def test_exists(self, temp_db, make_script):
        script = make_script()
        assert temp_db.scripts.exists(script.id) is True
        assert temp_db.scripts.exists(9999) is False

    def test_list_recent_limit(self, temp_db, make_script):
        for i in range(5):
            make_script(f"Roteiro {i}")
        recent = temp_db.scripts.list_recent(limit=3)
        assert len(recent) == 3
        assert recent[0].title == "Roteiro 4"

    def test_get_or_create_by_title(self, temp_db):
        a = temp_db.scripts.get_or_create("Rotina")
        b = temp_db.scripts.get_or_create("Rotina", "outra descricao")
        assert a.id == b.id


class TestSkuPointRepository:
    def test_upsert_updates_existing(self, temp_db):
        first = temp_db.skus.upsert("HP-01", 5)
        second = temp_db.skus.upsert("HP-01", 8)
        assert first.id == second.id
        assert second.points_per_unit == 8

    def test_find_active_exact_then_case_insensitive(self, temp_db, make_sku):
        make_sku("HP-01", 5)
        assert temp_db.skus.find_active("HP-01").points_per_unit == 5
        assert temp_db.skus.find_active("hp-01").sku == "HP-01"
        assert temp_db.skus.find_active("") is None

    def test_sku_lookup_trims_and_folds(self, temp_db):
        assert temp_db.skus.upsert(" HP-01 ", 5).sku == "HP-01"
        with temp_db.transaction() as session:
            session.add(SkuPoint(sku=" Kit-Ação ", points_per_unit=9, active=True))
        assert temp_db.skus.find_active("hp-01").points_per_unit == 5
        assert temp_db.skus.find_active("KIT-AÇÃO").points_per_unit == 9

    def test_inactive_rates_are_ignored(self, temp_db, make_sku):
        make_sku("OLD", 3, active=False)
        make_sku("NEW", 7)
        assert temp_db.skus.find_active("OLD") is None
        assert temp_db.skus.active_rate_map() == {"new": 7}


# ============================================================
# Program records
# ============================================================
class TestCycleRepository:
    def test_create_and_find_by_month(self, temp_db):
        cycle = temp_db.cycles.create(2024, 6)
        assert cycle.status == "open"
        assert cycle.started_at.day == 1
        assert temp_db.cycles.find_by_month(2024, 6).id == cycle.id
        assert temp_db.cycles.find_by_month(2024, 7) is None

    def test_list_open(self, temp_db, make_cycle):
        make_cycle(2024, 5, status="closed")
        june = make_cycle(2024, 6)
        assert [c.id for c in temp_db.cycles.list_open()] == [june.id]

    def test_touch(self, temp_db, june_cycle):
        before = june_cycle.updated_at
        assert temp_db.cycles.touch(june_cycle.id) is True
        assert temp_db.cycles.find_by_id(june_cycle.id).updated_at >= before
        assert temp_db.cycles.touch(9999) is False

    def test_to_dict(self, june_cycle):
        from database.business_repos import CycleRepository
        row = CycleRepository.to_dict(june_cycle)
        assert row["cycle_year"] == 2024
        assert row["cycle_month"] == 6
        assert row["status"] == "open"
        assert CycleRepository.to_dict(None) is None


class TestPlanRepository:
    """Tests for PlanRepository."""

    def _add_plan(self, db, cycle, influencer, day, script_id=None, status="scheduled"):
        with db.transaction() as session:
            plan = InfluencerPlan(
                cycle_id=cycle.id, influencer_id=influencer.id,
                scheduled_date=day, content_script_id=script_id, status=status,
            )
            session.add(plan)
            session.flush()
            return plan

    def test_list_for_influencer_ordered(self, temp_db, make_influencer, june_cycle):
        ana = make_influencer("Ana")
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 20))
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 5))
        plans = temp_db.plans.list_for_influencer(june_cycle.id, ana.id)
        assert [p.scheduled_date.day for p in plans] == [5, 20]

    def test_list_for_cycle_with_status(self, temp_db, make_influencer, make_script, june_cycle):
        ana = make_influencer("Ana", instagram="ana_insta")
        script = make_script("Rotina")
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 5), script.id)
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 6), status="validated")

        rows = temp_db.plans.list_for_cycle(june_cycle.id)
        assert len(rows) == 2
        assert rows[0]["influencer_name"] == "Ana"
        assert rows[0]["instagram"] == "ana_insta"
        assert rows[0]["script_title"] == "Rotina"
        assert rows[0]["scheduled_date"] == "2024-06-05"

        validated = temp_db.plans.list_for_cycle(june_cycle.id, status="validated")
        assert [r["scheduled_date"] for r in validated] == ["2024-06-06"]

    def test_find_on_date_excludes_id(self, temp_db, make_influencer, june_cycle):
        ana = make_influencer()
        plan = self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 5))
        day = date(2024, 6, 5)
        assert temp_db.plans.find_on_date(june_cycle.id, ana.id, day).id == plan.id
        assert temp_db.plans.find_on_date(june_cycle.id, ana.id, day, exclude_id=plan.id) is None

    def test_delete_by_script(self, temp_db, make_influencer, make_script, june_cycle):
        ana = make_influencer()
        script = make_script()
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 5), script.id)
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 6), script.id)
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 7))
        assert temp_db.plans.delete_by_script(june_cycle.id, ana.id, script.id) == 2
        assert temp_db.plans.count(june_cycle.id, ana.id) == 1

    def test_count_by_status(self, temp_db, make_influencer, june_cycle):
        ana = make_influencer()
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 5), status="validated")
        self._add_plan(temp_db, june_cycle, ana, date(2024, 6, 6))
        assert temp_db.plans.count(june_cycle.id) == 2
        assert temp_db.plans.count(june_cycle.id, ana.id, status="validated") == 1


class TestSaleRepository:
    """Tests for SaleRepository."""

    def _sale(self, influencer, order="#1001", points=10, status="pending", **extra):
        data = {
            "influencer_id": influencer.id,
            "order_number": order,
            "sale_date": date(2024, 6, 5),
            "points": points,
            "commission": 1.0,
            "status": status,
        }
        data.update(extra)
        return data

    def test_create_with_items(self, temp_db, make_influencer):
        ana = make_influencer("Ana", coupon="ANA10")
        sale = temp_db.sales.create(self._sale(ana, items=[
            {"sku": "HP-01", "quantity": 2, "points_per_unit": 5, "points": 10},
            {"sku": "", "quantity": 1},
        ]))
        loaded = temp_db.sales.find_by_id(sale.id)
        assert loaded.points == 10
        assert len(loaded.items) == 1

        row = temp_db.sales.to_dict(loaded)
        assert row["cupom"] == "ANA10"
        assert row["nome"] == "Ana"
        assert row["date"] == "2024-06-05"
        assert row["gross_value"] == 0
        assert row["sku_details"][0]["sku"] == "HP-01"

    def test_existing_order_numbers(self, temp_db, make_influencer):
        ana = make_influencer()
        temp_db.sales.create(self._sale(ana, order="#1"))
        assert temp_db.sales.existing_order_numbers(["#1", "#2", None]) == {"#1"}
        assert temp_db.sales.existing_order_numbers([]) == set()

    def test_replace_items(self, temp_db, make_influencer):
        ana = make_influencer()
        sale = temp_db.sales.create(self._sale(ana, items=[
            {"sku": "A", "quantity": 1, "points_per_unit": 5, "points": 5},
        ]))
        with temp_db.transaction() as session:
            loaded = temp_db.sales.find_by_id(sale.id, session=session)
            temp_db.sales.replace_items(loaded, [
                {"sku": "B", "quantity": 2, "points_per_unit": 3, "points": 6},
                {"sku": "C", "quantity": 1, "points_per_unit": 1, "points": 1},
            ], session)
        skus = [i["sku"] for i in temp_db.sales.to_dict(temp_db.sales.find_by_id(sale.id))["sku_details"]]
        assert skus == ["B", "C"]

    def test_approved_points_by_cycle(self, temp_db, make_influencer, make_cycle):
        ana = make_influencer()
        june = make_cycle(2024, 6)
        july = make_cycle(2024, 7)
        temp_db.sales.create(self._sale(ana, "#1", 10, "approved", cycle_id=june.id))
        temp_db.sales.create(self._sale(ana, "#2", 20, "approved", cycle_id=july.id))
        temp_db.sales.create(self._sale(ana, "#3", 40, "pending", cycle_id=june.id))
        assert temp_db.sales.approved_points(ana.id) == 30
        assert temp_db.sales.approved_points(ana.id, cycle_id=june.id) == 10

    def test_list_by_influencer_newest_first(self, temp_db, make_influencer):
        ana = make_influencer()
        temp_db.sales.create(self._sale(ana, "#1", sale_date=date(2024, 6, 1)))
        temp_db.sales.create(self._sale(ana, "#2", sale_date=date(2024, 6, 9)))
        orders = [s.order_number for s in temp_db.sales.list_by_influencer(ana.id)]
        assert orders == ["#2", "#1"]


class TestCommissionRepository:
    def test_save_is_idempotent(self, temp_db, make_influencer, june_cycle):
        ana = make_influencer()
        first = temp_db.commissions.save(june_cycle.id, ana.id, {"total_points": 10})
        second = temp_db.commissions.save(june_cycle.id, ana.id, {"total_points": 25})
        assert first.id == second.id

        rows = temp_db.commissions.list_by_influencer(ana.id)
        assert len(rows) == 1
        assert rows[0]["total_points"] == 25
