"""Dashboards and commission snapshots.

Read-only views over plans and approved sales, plus the monthly commission
snapshot that freezes an influencer's settlement for a cycle.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from database.models import Influencer, MonthlyCycle, utcnow
from .cycles import CycleManager
from .multiplier import summarize_points
from .points import POINT_VALUE_BRL, points_to_brl


def _today(today: Optional[date]) -> str:
    return (today or utcnow().date()).isoformat()


def _commission_block(base_points: int, validated_days: int) -> Dict[str, Any]:
    summary = summarize_points(base_points, validated_days)
    return {
        "basePoints": summary.base_points,
        "totalPoints": summary.total_points,
        "multiplier": summary.factor,
        "label": summary.label,
        "validatedDays": summary.validated_days,
        "baseValue": points_to_brl(summary.base_points),
        "totalValue": points_to_brl(summary.total_points),
        "pointValue": POINT_VALUE_BRL,
    }


class DashboardService:
    """Influencer and master dashboards.

    Estimated commissions use the approved sales of the cycle shown, so the
    dashboard agrees with the snapshot taken for that cycle.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def influencer_dashboard(self, cycle: MonthlyCycle, influencer: Influencer,
                             today: Optional[date] = None) -> Dict[str, Any]:
        """Everything an influencer sees for a cycle.

        Args:
            cycle: Cycle shown.
            influencer: Viewer.
            today: Clock override for alerts and the next plan.

        Returns:
            Dict with cycle, influencer, plans, progress, commission, alerts,
            suggestions and nextPlan.
        """
        today_iso = _today(today)
        with self.db.transaction() as session:
            plans = [
                self.db.plans.to_dict(p)
                for p in self.db.plans.list_for_influencer(cycle.id, influencer.id, session=session)
            ]
            scripts = self.db.scripts.list_recent(settings.script_suggestion_limit, session=session)
            suggestions = [
                {"id": s.id, "titulo": s.title, "descricao": s.description or ""}
                for s in scripts
            ]
            base_points = self.db.sales.approved_points(
                influencer.id, cycle_id=cycle.id, session=session
            )

        validated_days = sum(1 for p in plans if p["status"] == "validated")
        pending = sum(1 for p in plans if p["status"] == "scheduled")
        commission = _commission_block(base_points, validated_days)
        alerts = [
            {"id": p["id"], "date": p["scheduled_date"], "status": p["status"]}
            for p in plans
            if p["status"] != "validated" and p["scheduled_date"] < today_iso
        ]
        next_plan = next((p for p in plans if p["scheduled_date"] >= today_iso), None)

        return {
            "cycle": CycleManager.cycle_summary(cycle),
            "influencer": {
                "id": influencer.id,
                "nome": influencer.name,
                "instagram": influencer.instagram,
                "commission_rate": float(influencer.commission_rate or 0),
            },
            "plans": plans,
            "progress": {
                "plannedDays": len(plans),
                "validatedDays": validated_days,
                "pendingValidations": pending,
                "multiplier": commission["multiplier"],
                "multiplierLabel": commission["label"],
                "estimatedCommission": commission["totalValue"],
                "estimatedPoints": commission["totalPoints"],
            },
            "commission": commission,
            "alerts": alerts,
            "suggestions": suggestions,
            "nextPlan": next_plan,
        }

    def master_dashboard(self, cycle: MonthlyCycle,
                         today: Optional[date] = None) -> Dict[str, Any]:
        """Cycle overview for the master validator."""
        today_iso = _today(today)
        with self.db.transaction() as session:
            plans = self.db.plans.list_for_cycle(cycle.id, session=session)
            influencers = self.db.influencers.list_by_name(session=session)

        pending = [p for p in plans if p["status"] == "scheduled"]
        summary = []
        for influencer in influencers:
            own = [p for p in plans if p["influencer_id"] == influencer.id]
            summary.append({
                "id": influencer.id,
                "nome": influencer.name or "",
                "instagram": influencer.instagram,
                "planned": len(own),
                "validated": sum(1 for p in own if p["status"] == "validated"),
            })
        alerts = [
            p for p in plans
            if p["status"] != "validated" and p["scheduled_date"] < today_iso
        ]

        return {
            "cycle": CycleManager.cycle_summary(cycle),
            "plans": plans,
            "pendingValidations": pending,
            "influencers": summary,
            "stats": {
                "totalInfluencers": len(summary),
                "plannedPosts": len(plans),
                "validatedPosts": sum(item["validated"] for item in summary),
                "pendingValidations": len(pending),
                "alerts": len(alerts),
            },
        }

    def snapshot_monthly_commission(self, cycle: MonthlyCycle, influencer: Influencer,
                                    now: Optional[datetime] = None) -> Dict[str, Any]:
        """Store (or refresh) the commission of an influencer for a cycle.

        Idempotent: one row per (cycle, influencer), overwritten on re-run.
        """
        with self.db.transaction() as session:
            planned = self.db.plans.count(cycle.id, influencer.id, session=session)
            validated = self.db.plans.count(
                cycle.id, influencer.id, status="validated", session=session
            )
            base_points = self.db.sales.approved_points(
                influencer.id, cycle_id=cycle.id, session=session
            )
            summary = summarize_points(base_points, validated)
            record = self.db.commissions.save(cycle.id, influencer.id, {
                "validated_days": validated,
                "multiplier": summary.factor,
                "base_points": summary.base_points,
                "total_points": summary.total_points,
                "base_commission": points_to_brl(summary.base_points),
                "total_commission": points_to_brl(summary.total_points),
                "deliveries_planned": planned,
                "deliveries_completed": validated,
                "validation_summary": summary.label,
                "closed_at": now or utcnow(),
            }, session=session)
            result = self.db.commissions.to_dict(record)

        logger.info(
            f"Commission snapshot for influencer {influencer.id} in cycle {cycle.id}: "
            f"{summary.total_points} points"
        )
        return result

    def list_monthly_commissions(self, influencer: Influencer) -> List[Dict[str, Any]]:
        """Commission snapshots of an influencer, newest cycle first."""
        return self.db.commissions.list_by_influencer(influencer.id)
