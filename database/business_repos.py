"""Business record repositories - core program data access layer.

Manages the records produced by the monthly program: cycles, content plans,
sales with their SKU items and commission snapshots.

Methods return ORM objects for the engines in ``business/`` and plain dict
projections for reporting. Any method taking ``session`` joins the caller's
transaction.
"""
from typing import Optional, List, Dict, Any, Iterable, Set
from datetime import date, datetime
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    MonthlyCycle, InfluencerPlan, Influencer, ContentScript,
    Sale, SaleSkuPoint, MonthlyCommission, utcnow
)


def _iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _iso_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class CycleRepository(BaseCRUD):
    """Monthly cycle repository.

    Pure data access; the open/close policy lives in ``business.cycles``.
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def find_by_month(self, year: int, month: int,
                      session: Optional[Session] = None
                      ) -> Optional[MonthlyCycle]:
        """Find the cycle of a calendar month."""
        def _query(sess):
            return sess.query(MonthlyCycle).filter(
                MonthlyCycle.cycle_year == year,
                MonthlyCycle.cycle_month == month
            ).first()

        return self._run(_query, session)

    def find_by_id(self, cycle_id: int,
                   session: Optional[Session] = None
                   ) -> Optional[MonthlyCycle]:
        """Find a cycle by id."""
        return self.get_by_id(MonthlyCycle, cycle_id, session=session)

    def list_open(self, session: Optional[Session] = None
                  ) -> List[MonthlyCycle]:
        """Every cycle whose status is open."""
        return self.get_all(MonthlyCycle, filters={"status": "open"}, session=session)

    def create(self, year: int, month: int,
               session: Optional[Session] = None) -> MonthlyCycle:
        """Create an open cycle starting on the first instant of the month.

        Returns:
            The new MonthlyCycle object.
        """
        def _do(sess):
            cycle = MonthlyCycle(
                cycle_year=year,
                cycle_month=month,
                status="open",
                started_at=datetime(year, month, 1),
            )
            sess.add(cycle)
            sess.flush()
            sess.refresh(cycle)
            return cycle

        return self._run(_do, session)

    def touch(self, cycle_id: int,
              session: Optional[Session] = None) -> bool:
        """Bump ``updated_at`` of a cycle.

        Returns:
            False when the cycle does not exist.
        """
        result = self.update_by_id(
            MonthlyCycle, cycle_id, session=session, updated_at=utcnow()
        )
        return result is not None

    @staticmethod
    def to_dict(cycle: Optional[MonthlyCycle]) -> Optional[Dict[str, Any]]:
        if cycle is None:
            return None
        return {
            "id": cycle.id,
            "cycle_year": cycle.cycle_year,
            "cycle_month": cycle.cycle_month,
            "status": cycle.status or "open",
            "started_at": _iso_datetime(cycle.started_at),
            "closed_at": _iso_datetime(cycle.closed_at),
            "created_at": _iso_datetime(cycle.created_at),
            "updated_at": _iso_datetime(cycle.updated_at),
        }


class PlanRepository(BaseCRUD):
    """Influencer plan repository."""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def find_by_id(self, plan_id: int,
                   session: Optional[Session] = None
                   ) -> Optional[InfluencerPlan]:
        """Find a plan by id."""
        return self.get_by_id(InfluencerPlan, plan_id, session=session)

    def list_for_influencer(self, cycle_id: int, influencer_id: int,
                            session: Optional[Session] = None
                            ) -> List[InfluencerPlan]:
        """Plans of one influencer in one cycle, by date then id.

        The content script is eagerly loaded.
        """
        def _query(sess):
            return sess.query(InfluencerPlan).options(
                joinedload(InfluencerPlan.content_script)
            ).filter(
                InfluencerPlan.cycle_id == cycle_id,
                InfluencerPlan.influencer_id == influencer_id
            ).order_by(
                InfluencerPlan.scheduled_date, InfluencerPlan.id
            ).all()

        return self._run(_query, session)

    def list_for_cycle(self, cycle_id: int, status: Optional[str] = None,
                       session: Optional[Session] = None
                       ) -> List[Dict[str, Any]]:
        """Plans of every influencer in a cycle, by date then influencer name.

        Args:
            cycle_id: Cycle id.
            status: Only plans with this status (optional).

        Returns:
            Plan dicts carrying ``influencer_name``, ``instagram`` and
            ``script_title``.
        """
        def _query(sess):
            query = sess.query(InfluencerPlan).join(
                Influencer, InfluencerPlan.influencer_id == Influencer.id
            ).options(
                joinedload(InfluencerPlan.influencer),
                joinedload(InfluencerPlan.content_script)
            ).filter(InfluencerPlan.cycle_id == cycle_id)
            if status:
                query = query.filter(InfluencerPlan.status == status)
            plans = query.order_by(
                InfluencerPlan.scheduled_date, Influencer.name, InfluencerPlan.id
            ).all()
            return [self.to_dict(p, with_influencer=True) for p in plans]

        return self._run(_query, session)

    def find_on_date(self, cycle_id: int, influencer_id: int,
                     scheduled_date: date,
                     exclude_id: Optional[int] = None,
                     session: Optional[Session] = None
                     ) -> Optional[InfluencerPlan]:
        """First plan of an influencer on a date, optionally skipping one id."""
        def _query(sess):
            query = sess.query(InfluencerPlan).filter(
                InfluencerPlan.cycle_id == cycle_id,
                InfluencerPlan.influencer_id == influencer_id,
                InfluencerPlan.scheduled_date == scheduled_date
            )
            if exclude_id is not None:
                query = query.filter(InfluencerPlan.id != exclude_id)
            return query.order_by(InfluencerPlan.id).first()

        return self._run(_query, session)

    def delete_by_script(self, cycle_id: int, influencer_id: int,
                         script_id: int,
                         session: Optional[Session] = None) -> int:
        """Delete every plan of an influencer in a cycle sharing a script.

        Returns:
            Number of deleted rows.
        """
        def _do(sess):
            return sess.query(InfluencerPlan).filter(
                InfluencerPlan.cycle_id == cycle_id,
                InfluencerPlan.influencer_id == influencer_id,
                InfluencerPlan.content_script_id == script_id
            ).delete(synchronize_session="fetch")

        return self._run(_do, session)

    def count(self, cycle_id: int, influencer_id: Optional[int] = None,
              status: Optional[str] = None,
              session: Optional[Session] = None) -> int:
        """Count plans of a cycle, optionally per influencer and status."""
        def _query(sess):
            query = sess.query(func.count(InfluencerPlan.id)).filter(
                InfluencerPlan.cycle_id == cycle_id
            )
            if influencer_id is not None:
                query = query.filter(InfluencerPlan.influencer_id == influencer_id)
            if status:
                query = query.filter(InfluencerPlan.status == status)
            return query.scalar() or 0

        return self._run(_query, session)

    @staticmethod
    def to_dict(plan: Optional[InfluencerPlan],
                with_influencer: bool = False) -> Optional[Dict[str, Any]]:
        if plan is None:
            return None
        script = plan.content_script
        row = {
            "id": plan.id,
            "cycle_id": plan.cycle_id,
            "influencer_id": plan.influencer_id,
            "scheduled_date": _iso_date(plan.scheduled_date),
            "content_script_id": plan.content_script_id,
            "notes": plan.notes,
            "status": plan.status,
            "created_at": _iso_datetime(plan.created_at),
            "updated_at": _iso_datetime(plan.updated_at),
            "script_title": script.title if script else None,
        }
        if with_influencer:
            influencer = plan.influencer
            row["influencer_name"] = influencer.name if influencer else None
            row["instagram"] = influencer.instagram if influencer else None
        return row


class SaleRepository(BaseCRUD):
    """Sale repository.

    Order numbers are globally unique; the engines check them before
    inserting and the unique index backs the check.
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def find_by_id(self, sale_id: int,
                   session: Optional[Session] = None) -> Optional[Sale]:
        """Find a sale by id, with influencer and items loaded."""
        def _query(sess):
            return sess.query(Sale).options(
                joinedload(Sale.influencer), joinedload(Sale.items)
            ).filter(Sale.id == sale_id).first()

        return self._run(_query, session)

    def find_by_order_number(self, order_number: str,
                             session: Optional[Session] = None
                             ) -> Optional[Sale]:
        """Find a sale by its order number."""
        def _query(sess):
            return sess.query(Sale).filter(
                Sale.order_number == order_number
            ).first()

        return self._run(_query, session)

    def existing_order_numbers(self, order_numbers: Iterable[str],
                               session: Optional[Session] = None
                               ) -> Set[str]:
        """Subset of ``order_numbers`` already stored."""
        orders = sorted({o for o in order_numbers if o})
        if not orders:
            return set()

        def _query(sess):
            rows = sess.query(Sale.order_number).filter(
                Sale.order_number.in_(orders)
            ).all()
            return {row[0] for row in rows if row[0]}

        return self._run(_query, session)

    def create(self, sale_data: Dict[str, Any],
               session: Optional[Session] = None) -> Sale:
        """Insert a sale with its SKU items.

        Args:
            sale_data: Sale values:
                - influencer_id: attributed influencer (required)
                - sale_date: date of the sale (required)
                - points: points earned (required)
                - commission: currency value of the points (required)
                - order_number: store order number (optional)
                - cycle_id: cycle of the sale date (optional)
                - status: pending / approved / rejected (default pending)
                - items: list of dicts with sku, quantity,
                  points_per_unit, points (optional)

        Returns:
            The new Sale object.
        """
        def _do(sess):
            sale = Sale(
                influencer_id=sale_data["influencer_id"],
                order_number=sale_data.get("order_number"),
                sale_date=sale_data["sale_date"],
                cycle_id=sale_data.get("cycle_id"),
                gross_value=0,
                discount=0,
                net_value=0,
                commission=sale_data.get("commission", 0),
                points=int(sale_data.get("points") or 0),
                status=sale_data.get("status", "pending"),
            )
            sess.add(sale)
            sess.flush()
            self._add_items(sess, sale, sale_data.get("items") or [])
            sess.flush()
            sess.refresh(sale)
            return sale

        return self._run(_do, session)

    def replace_items(self, sale: Sale, items: List[Dict[str, Any]],
                      session: Session) -> None:
        """Drop the SKU items of a sale and insert ``items`` instead."""
        session.query(SaleSkuPoint).filter(
            SaleSkuPoint.sale_id == sale.id
        ).delete(synchronize_session="fetch")
        session.expire(sale, ["items"])
        self._add_items(session, sale, items)
        session.flush()

    @staticmethod
    def _add_items(sess: Session, sale: Sale,
                   items: List[Dict[str, Any]]) -> None:
        for item in items:
            if not item or not item.get("sku"):
                continue
            sess.add(SaleSkuPoint(
                sale_id=sale.id,
                sku=item["sku"],
                quantity=int(item.get("quantity") or 0),
                points_per_unit=int(item.get("points_per_unit") or 0),
                points=int(item.get("points") or 0),
            ))

    def list_by_influencer(self, influencer_id: int,
                           session: Optional[Session] = None
                           ) -> List[Sale]:
        """Sales of an influencer, newest date first."""
        def _query(sess):
            return sess.query(Sale).options(
                joinedload(Sale.influencer), joinedload(Sale.items)
            ).filter(
                Sale.influencer_id == influencer_id
            ).order_by(Sale.sale_date.desc(), Sale.id.desc()).all()

        return self._run(_query, session)

    def approved_points(self, influencer_id: int,
                        cycle_id: Optional[int] = None,
                        session: Optional[Session] = None) -> int:
        """Sum of points of approved sales, optionally within one cycle."""
        def _query(sess):
            query = sess.query(func.coalesce(func.sum(Sale.points), 0)).filter(
                Sale.influencer_id == influencer_id,
                Sale.status == "approved"
            )
            if cycle_id is not None:
                query = query.filter(Sale.cycle_id == cycle_id)
            return int(query.scalar() or 0)

        return self._run(_query, session)

    @staticmethod
    def to_dict(sale: Optional[Sale]) -> Optional[Dict[str, Any]]:
        if sale is None:
            return None
        influencer = sale.influencer
        return {
            "id": sale.id,
            "influencer_id": sale.influencer_id,
            "cycle_id": sale.cycle_id,
            "order_number": sale.order_number,
            "cupom": influencer.coupon if influencer else None,
            "nome": influencer.name if influencer else None,
            "date": _iso_date(sale.sale_date),
            "gross_value": float(sale.gross_value or 0),
            "discount": float(sale.discount or 0),
            "net_value": float(sale.net_value or 0),
            "commission": float(sale.commission or 0),
            "points": int(sale.points or 0),
            "status": sale.status or "pending",
            "created_at": _iso_datetime(sale.created_at),
            "sku_details": [
                {
                    "id": item.id,
                    "sale_id": item.sale_id,
                    "sku": item.sku,
                    "quantity": item.quantity,
                    "points_per_unit": item.points_per_unit,
                    "points": item.points,
                }
                for item in sale.items
            ],
        }


class CommissionRepository(BaseCRUD):
    """Monthly commission snapshot repository."""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def save(self, cycle_id: int, influencer_id: int,
             commission_data: Dict[str, Any],
             session: Optional[Session] = None) -> MonthlyCommission:
        """Save or update the snapshot of (cycle, influencer) (idempotent).

        Args:
            cycle_id: Settled cycle.
            influencer_id: Settled influencer.
            commission_data: Column values (validated_days, multiplier,
                base_points, total_points, base_commission, ...).

        Returns:
            MonthlyCommission object.
        """
        def _do(sess):
            existing = sess.query(MonthlyCommission).filter(
                MonthlyCommission.cycle_id == cycle_id,
                MonthlyCommission.influencer_id == influencer_id
            ).first()

            if existing:
                for key, value in commission_data.items():
                    if hasattr(existing, key):
                        setattr(existing, key, value)
                sess.flush()
                return existing

            commission = MonthlyCommission(
                cycle_id=cycle_id, influencer_id=influencer_id,
                **commission_data
            )
            sess.add(commission)
            sess.flush()
            sess.refresh(commission)
            return commission

        return self._run(_do, session)

    def list_by_influencer(self, influencer_id: int,
                           session: Optional[Session] = None
                           ) -> List[Dict[str, Any]]:
        """Snapshots of an influencer, newest cycle first."""
        def _query(sess):
            rows = sess.query(MonthlyCommission).filter(
                MonthlyCommission.influencer_id == influencer_id
            ).order_by(
                MonthlyCommission.cycle_id.desc(), MonthlyCommission.id.desc()
            ).all()
            return [self.to_dict(r) for r in rows]

        return self._run(_query, session)

    @staticmethod
    def to_dict(commission: MonthlyCommission) -> Dict[str, Any]:
        return {
            "id": commission.id,
            "cycle_id": commission.cycle_id,
            "influencer_id": commission.influencer_id,
            "validated_days": commission.validated_days or 0,
            "multiplier": float(commission.multiplier or 0),
            "base_points": commission.base_points or 0,
            "total_points": commission.total_points or 0,
            "base_commission": float(commission.base_commission or 0),
            "total_commission": float(commission.total_commission or 0),
            "deliveries_planned": commission.deliveries_planned or 0,
            "deliveries_completed": commission.deliveries_completed or 0,
            "validation_summary": commission.validation_summary,
            "closed_at": _iso_datetime(commission.closed_at),
            "created_at": _iso_datetime(commission.created_at),
        }
