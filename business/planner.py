"""Plan reconciliation.

An influencer's content plan for a cycle is edited as a batch: the client
sends the days it wants (each optionally naming a plan id, a content script
and notes) plus lists of plans and scripts to remove. The batch is merged
into the stored plans:

1. explicit plan-id removals, then script removals;
2. per entry, in date order:
   - an entry naming an existing plan updates that plan;
   - a bare date reuses a free plan on the same date, or creates one;
   - a scripted entry re-dates a free plan of that script unless it asks
     to ``append``, otherwise a new plan is created.

A plan is "free" until an entry of the batch has claimed it, created it or
removed it. Everything runs in one transaction.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from loguru import logger
from sqlalchemy.orm import Session

from database import DatabaseManager
from database.models import InfluencerPlan, MonthlyCycle, Influencer, utcnow
from .cycles import CycleManager
from .errors import AccessDenied, Conflict, NotFound, ValidationFailed
from .parsing import is_iso_date, parse_iso_date, to_positive_int
from .schemas import PlanMutationRequest

# Sentinel: keep the plan's current script
KEEP = object()


@dataclass
class NormalizedEntry:
    """A usable entry: a date inside the cycle and a resolved script."""
    scheduled_date: date
    plan_id: Optional[int] = None
    script_id: Optional[int] = None
    notes: Optional[str] = None
    append: bool = False


@dataclass
class NormalizedPlanPayload:
    entries: List[NormalizedEntry] = field(default_factory=list)
    removed_script_ids: List[int] = field(default_factory=list)
    removed_plan_ids: List[int] = field(default_factory=list)


@dataclass
class PlanOutcome:
    """What a reconciliation changed."""
    touched: bool = False
    created: int = 0
    updated: int = 0
    deleted: int = 0


class PlanWorkingSet:
    """Plans of one (cycle, influencer) held for the length of a transaction.

    Keeps an id index and a per-script index (each group most recently
    updated first, ties by higher id) in step with the changes made so far,
    and remembers which plans the batch has claimed or removed.
    """

    def __init__(self, plans: Iterable[InfluencerPlan]) -> None:
        self.plans: Dict[int, InfluencerPlan] = {}
        self.by_script: Dict[Optional[int], List[InfluencerPlan]] = {}
        self.claimed: Set[int] = set()
        self.removed: Set[int] = set()

        for plan in plans:
            self.plans[plan.id] = plan
            self.by_script.setdefault(plan.content_script_id, []).append(plan)
        for group in self.by_script.values():
            group.sort(key=lambda p: (p.updated_at or datetime.min, p.id), reverse=True)

    def get(self, plan_id: Optional[int]) -> Optional[InfluencerPlan]:
        return self.plans.get(plan_id) if plan_id is not None else None

    def is_free(self, plan: InfluencerPlan) -> bool:
        return plan.id not in self.claimed and plan.id not in self.removed

    def detach(self, plan: InfluencerPlan) -> None:
        """Take the plan out of its script group."""
        key = plan.content_script_id
        group = [p for p in self.by_script.get(key, []) if p.id != plan.id]
        if group:
            self.by_script[key] = group
        else:
            self.by_script.pop(key, None)

    def attach(self, plan: InfluencerPlan) -> None:
        """Index the plan, at the front of its script group."""
        self.plans[plan.id] = plan
        self.by_script.setdefault(plan.content_script_id, []).insert(0, plan)

    def discard(self, plan: InfluencerPlan) -> None:
        self.detach(plan)
        self.plans.pop(plan.id, None)
        self.removed.add(plan.id)

    def discard_script(self, script_id: int) -> None:
        for plan in self.by_script.pop(script_id, []):
            self.plans.pop(plan.id, None)
            self.removed.add(plan.id)

    def claim(self, plan: InfluencerPlan) -> None:
        self.claimed.add(plan.id)

    def free_on_date(self, day: date) -> Optional[InfluencerPlan]:
        for plan in self.plans.values():
            if plan.scheduled_date == day and self.is_free(plan):
                return plan
        return None

    def free_for_script(self, script_id: int) -> Optional[InfluencerPlan]:
        for plan in self.by_script.get(script_id, []):
            if self.is_free(plan):
                return plan
        return None


class PlanPlanner:
    """Content plan operations for influencers and the master validator.

    Attributes:
        db: Database facade.
        cycles: Cycle manager used to touch cycles.
    """

    def __init__(self, db: DatabaseManager,
                 cycles: Optional[CycleManager] = None) -> None:
        self.db = db
        self.cycles = cycles or CycleManager(db)

    # ================================================================
    # Batch reconciliation
    # ================================================================

    def reconcile_plans(self, cycle: MonthlyCycle, influencer: Influencer,
                        payload: Union[PlanMutationRequest, Dict[str, Any], None]
                        ) -> PlanOutcome:
        """Merge a batch of proposed days into the stored plans.

        Args:
            cycle: Cycle the plans belong to.
            influencer: Owner of the plans.
            payload: Request body (any accepted alias) or a parsed request.

        Returns:
            Counts of created, updated and deleted plans.

        Raises:
            ValidationFailed: Nothing to schedule or remove, or no entry had
                a usable date.
        """
        if cycle is None:
            raise NotFound("Ciclo mensal nao encontrado.")
        request = (
            payload if isinstance(payload, PlanMutationRequest)
            else PlanMutationRequest.model_validate(payload or {})
        )

        with self.db.transaction() as session:
            working_set = self.load_working_set(cycle.id, influencer.id, session)
            normalized = self.normalize_entries(request, cycle, working_set, session)
            outcome = self.apply_mutations(cycle, influencer, normalized, working_set, session)

        logger.info(
            f"Plans of influencer {influencer.id} in cycle {cycle.id}: "
            f"{outcome.created} created, {outcome.updated} updated, "
            f"{outcome.deleted} deleted"
        )
        return outcome

    def load_working_set(self, cycle_id: int, influencer_id: int,
                         session: Session) -> PlanWorkingSet:
        return PlanWorkingSet(
            self.db.plans.list_for_influencer(cycle_id, influencer_id, session=session)
        )

    def normalize_entries(self, request: PlanMutationRequest, cycle: MonthlyCycle,
                          working_set: PlanWorkingSet,
                          session: Session) -> NormalizedPlanPayload:
        """Keep the usable entries of a request, deduplicated and sorted by date.

        Entries with a malformed date or a date outside the cycle are dropped
        without error. Unknown scripts are ignored; an entry naming an
        existing plan then keeps that plan's script. Entries naming the same
        plan keep the first; entries without a plan id keep the first per
        (script, date).

        Raises:
            ValidationFailed: No entry and no removal at all, or no usable
                entry and no removal.
        """
        if not request.entries and not request.has_removals:
            raise ValidationFailed("Informe ao menos um dia para agendar.")

        script_exists: Dict[int, bool] = {}
        seen_plan_ids: Set[int] = set()
        seen_pairs: Set[tuple] = set()
        entries: List[NormalizedEntry] = []

        for raw in request.entries:
            day = parse_iso_date(raw.date)
            if day is None or not CycleManager.contains(cycle, day):
                continue

            if raw.id is not None:
                if raw.id in seen_plan_ids:
                    continue
                seen_plan_ids.add(raw.id)

            script_id = None
            if raw.script_id is not None:
                if raw.script_id not in script_exists:
                    script_exists[raw.script_id] = self.db.scripts.exists(
                        raw.script_id, session=session
                    )
                if script_exists[raw.script_id]:
                    script_id = raw.script_id

            if script_id is None and raw.id is not None:
                existing = working_set.get(raw.id)
                if existing is not None and existing.content_script_id:
                    script_id = existing.content_script_id

            pair = (script_id, day)
            if raw.id is None and pair in seen_pairs:
                continue
            seen_pairs.add(pair)

            entries.append(NormalizedEntry(
                scheduled_date=day,
                plan_id=raw.id,
                script_id=script_id,
                notes=raw.notes,
                append=raw.append,
            ))

        if not entries and not request.has_removals:
            raise ValidationFailed("Nao foi possivel identificar dias validos para o agendamento.")

        entries.sort(key=lambda e: e.scheduled_date)
        return NormalizedPlanPayload(
            entries=entries,
            removed_script_ids=list(request.removed_script_ids),
            removed_plan_ids=list(request.removed_plan_ids),
        )

    def apply_mutations(self, cycle: MonthlyCycle, influencer: Influencer,
                        payload: NormalizedPlanPayload,
                        working_set: PlanWorkingSet,
                        session: Session) -> PlanOutcome:
        """Apply normalized entries and removals to the working set and storage."""
        outcome = PlanOutcome()
        now = utcnow()

        for plan_id in payload.removed_plan_ids:
            plan = working_set.get(plan_id)
            if plan is not None:
                session.delete(plan)
                working_set.discard(plan)
                outcome.deleted += 1
        # Requested ids that matched nothing still block later matches
        working_set.removed.update(payload.removed_plan_ids)
        session.flush()

        for script_id in payload.removed_script_ids:
            outcome.deleted += self.db.plans.delete_by_script(
                cycle.id, influencer.id, script_id, session=session
            )
            working_set.discard_script(script_id)

        for entry in payload.entries:
            if entry.plan_id is not None:
                plan = working_set.get(entry.plan_id)
                if plan is None or not working_set.is_free(plan):
                    continue
                script_id = (
                    entry.script_id if entry.script_id is not None
                    else plan.content_script_id
                )
                self._update_in_place(plan, entry, script_id, working_set, now)
                outcome.updated += 1
                continue

            if entry.script_id is None:
                plan = working_set.free_on_date(entry.scheduled_date)
                if plan is not None:
                    self._update_in_place(plan, entry, None, working_set, now)
                    outcome.updated += 1
                    continue
            elif not entry.append:
                plan = working_set.free_for_script(entry.script_id)
                if plan is not None:
                    self._update_in_place(plan, entry, entry.script_id, working_set, now)
                    outcome.updated += 1
                    continue

            plan = InfluencerPlan(
                cycle_id=cycle.id,
                influencer_id=influencer.id,
                scheduled_date=entry.scheduled_date,
                content_script_id=entry.script_id,
                notes=entry.notes,
                status="scheduled",
                created_at=now,
                updated_at=now,
            )
            session.add(plan)
            session.flush()
            working_set.attach(plan)
            working_set.claim(plan)
            outcome.created += 1

        session.flush()
        outcome.touched = bool(outcome.created or outcome.updated or outcome.deleted)
        if outcome.touched:
            self.cycles.touch_cycle(cycle.id, session)
        return outcome

    @staticmethod
    def _update_in_place(plan: InfluencerPlan, entry: NormalizedEntry,
                         script_id: Optional[int], working_set: PlanWorkingSet,
                         now: datetime) -> None:
        # Unchanged date and script keep the status (a validated day stays validated)
        changed = (
            plan.scheduled_date != entry.scheduled_date
            or plan.content_script_id != script_id
        )
        working_set.detach(plan)
        plan.scheduled_date = entry.scheduled_date
        plan.content_script_id = script_id
        plan.notes = entry.notes
        if changed:
            plan.status = "scheduled"
        plan.updated_at = now
        working_set.attach(plan)
        working_set.claim(plan)

    # ================================================================
    # Single plan operations
    # ================================================================

    def list_plans(self, cycle: MonthlyCycle,
                   influencer: Influencer) -> List[Dict[str, Any]]:
        """Plans of the influencer in the cycle, by date then id."""
        with self.db.transaction() as session:
            plans = self.db.plans.list_for_influencer(cycle.id, influencer.id, session=session)
            return [self.db.plans.to_dict(p) for p in plans]

    def update_single_plan(self, plan_id: Any, cycle: MonthlyCycle,
                           influencer: Influencer,
                           next_date: Optional[str] = None,
                           next_script_id: Any = KEEP,
                           notes: Optional[str] = None) -> Dict[str, Any]:
        """Edit one plan of the influencer.

        The plan always goes back to ``scheduled``.

        Args:
            plan_id: Plan to edit.
            cycle: Cycle the plan must belong to.
            influencer: Influencer the plan must belong to.
            next_date: New ``YYYY-MM-DD`` date inside the cycle (optional).
            next_script_id: New script id; None or ``""`` clears it, KEEP
                leaves it.
            notes: New notes; None keeps the current ones.

        Returns:
            The updated plan as a dict.

        Raises:
            NotFound: Unknown plan or script.
            AccessDenied: The plan belongs to another cycle or influencer.
            ValidationFailed: Malformed date or script id, or a date outside
                the cycle.
            Conflict: Another plan of the influencer is on that date.
        """
        numeric_id = to_positive_int(plan_id)
        with self.db.transaction() as session:
            plan = self.db.plans.find_by_id(numeric_id, session=session) if numeric_id else None
            if plan is None:
                raise NotFound("Agendamento nao encontrado.")
            if plan.cycle_id != cycle.id or plan.influencer_id != influencer.id:
                raise AccessDenied("Acesso negado.")

            scheduled_date = plan.scheduled_date
            if next_date:
                day = parse_iso_date(next_date) if is_iso_date(next_date) else None
                if day is None:
                    raise ValidationFailed("Informe uma data valida (YYYY-MM-DD).")
                if not CycleManager.contains(cycle, day):
                    raise ValidationFailed("Data precisa estar no mesmo ciclo mensal.")
                duplicate = self.db.plans.find_on_date(
                    cycle.id, influencer.id, day, exclude_id=plan.id, session=session
                )
                if duplicate is not None:
                    raise Conflict("Ja existe um agendamento para esta data.")
                scheduled_date = day

            script_id = plan.content_script_id
            if next_script_id is not KEEP:
                if next_script_id is None or next_script_id == "":
                    script_id = None
                else:
                    script_id = to_positive_int(next_script_id)
                    if script_id is None:
                        raise ValidationFailed("Identificador de roteiro invalido.")
                    if not self.db.scripts.exists(script_id, session=session):
                        raise NotFound("Roteiro nao encontrado.")

            plan.scheduled_date = scheduled_date
            plan.content_script_id = script_id
            if notes is not None:
                plan.notes = notes
            plan.status = "scheduled"
            plan.updated_at = utcnow()
            session.flush()
            self.cycles.touch_cycle(cycle.id, session)

            session.refresh(plan)
            logger.info(f"Plan {plan.id} rescheduled to {scheduled_date.isoformat()}")
            return self.db.plans.to_dict(plan)

    def approve_plan(self, plan_id: Any) -> Dict[str, Any]:
        """Mark a plan as validated by the master.

        Raises:
            NotFound: Unknown plan.
            Conflict: The plan is already validated.
        """
        return self._set_validation(plan_id, "validated")

    def reject_plan(self, plan_id: Any) -> Dict[str, Any]:
        """Send a plan back to ``scheduled``.

        Raises:
            NotFound: Unknown plan.
        """
        return self._set_validation(plan_id, "scheduled")

    def _set_validation(self, plan_id: Any, status: str) -> Dict[str, Any]:
        numeric_id = to_positive_int(plan_id)
        with self.db.transaction() as session:
            plan = self.db.plans.find_by_id(numeric_id, session=session) if numeric_id else None
            if plan is None:
                raise NotFound("Agendamento nao encontrado.")
            if status == "validated" and plan.status == "validated":
                raise Conflict("Este dia ja foi validado.")

            plan.status = status
            plan.updated_at = utcnow()
            session.flush()
            self.cycles.touch_cycle(plan.cycle_id, session)
            logger.info(f"Plan {plan.id} set to {status}")
            return self.db.plans.to_dict(plan, with_influencer=True)
