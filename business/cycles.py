"""Monthly cycle lifecycle.

One cycle exists per calendar month. Ensuring the current cycle closes every
other open cycle, so at most one cycle is open at a time; cycles created for
back-dated sales leave the open cycle alone.
"""
import calendar
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import DatabaseManager
from database.models import MonthlyCycle, utcnow
from .errors import NotFound
from .parsing import parse_iso_date, to_positive_int


def _as_utc_naive(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


class CycleManager:
    """Open, close and look up monthly cycles.

    Attributes:
        db: Database facade.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def ensure_current_cycle(self, now: Optional[datetime] = None) -> MonthlyCycle:
        """Return the open cycle of the current UTC month, creating it if needed.

        Inside one transaction: every open cycle of another month is closed,
        the current month's cycle is created when missing and reopened when
        closed. A concurrent creator of the same month trips the unique
        constraint; the transaction is then retried once and finds its row.

        Args:
            now: Clock override (UTC; naive values are taken as UTC).
        """
        now = _as_utc_naive(now)
        try:
            with self.db.transaction() as session:
                return self._ensure_open(now, session)
        except IntegrityError:
            logger.warning(
                f"Concurrent creation of cycle {now.month:02d}/{now.year}, retrying"
            )
        with self.db.transaction() as session:
            return self._ensure_open(now, session)

    def _ensure_open(self, now: datetime, session: Session) -> MonthlyCycle:
        cycles = self.db.cycles
        year, month = now.year, now.month
        cycle = cycles.find_by_month(year, month, session=session)

        for open_cycle in cycles.list_open(session=session):
            if open_cycle.cycle_year == year and open_cycle.cycle_month == month:
                cycle = open_cycle
                continue
            open_cycle.status = "closed"
            open_cycle.closed_at = open_cycle.closed_at or now
            open_cycle.updated_at = now
            logger.info(
                f"Closed cycle {open_cycle.cycle_month:02d}/{open_cycle.cycle_year} "
                f"(id={open_cycle.id})"
            )

        if cycle is None:
            cycle = cycles.create(year, month, session=session)
            logger.info(f"Opened cycle {month:02d}/{year} (id={cycle.id})")
        elif cycle.status != "open":
            cycle.status = "open"
            cycle.closed_at = None
            cycle.updated_at = now
            logger.info(f"Reopened cycle {month:02d}/{year} (id={cycle.id})")

        session.flush()
        return cycle

    def get_cycle_by_id_or_current(self, cycle_id: Any = None,
                                   now: Optional[datetime] = None) -> MonthlyCycle:
        """Cycle with ``cycle_id``, or the current one when it is invalid or unknown."""
        numeric_id = to_positive_int(cycle_id)
        if numeric_id is not None:
            cycle = self.db.cycles.find_by_id(numeric_id)
            if cycle is not None:
                return cycle
        return self.ensure_current_cycle(now)

    def ensure_cycle_for_date(self, value: Any,
                              session: Optional[Session] = None
                              ) -> Optional[MonthlyCycle]:
        """Find or create the cycle of the month of ``value`` (``YYYY-MM-DD``).

        Other cycles are not touched. A new cycle starts open.

        Returns:
            The cycle, or None when ``value`` is not a valid date.
        """
        day = parse_iso_date(value)
        if day is None:
            return None
        if session is None:
            with self.db.transaction() as own_session:
                return self._find_or_create(day, own_session)
        return self._find_or_create(day, session)

    def _find_or_create(self, day: date, session: Session) -> MonthlyCycle:
        cycles = self.db.cycles
        cycle = cycles.find_by_month(day.year, day.month, session=session)
        if cycle is not None:
            return cycle
        try:
            with session.begin_nested():
                cycle = cycles.create(day.year, day.month, session=session)
            logger.info(f"Created cycle {day.month:02d}/{day.year} for a dated record")
        except IntegrityError:
            logger.warning(f"Cycle {day.month:02d}/{day.year} created concurrently")
            cycle = cycles.find_by_month(day.year, day.month, session=session)
        return cycle

    def touch_cycle(self, cycle_id: Optional[int], session: Session,
                    best_effort: bool = False) -> bool:
        """Bump the cycle's ``updated_at``.

        Args:
            cycle_id: Cycle to touch; None is a no-op.
            session: Open transaction.
            best_effort: Swallow a missing cycle or a storage error instead of
                failing the caller's transaction.

        Raises:
            NotFound: The cycle does not exist and ``best_effort`` is False.
        """
        if not cycle_id:
            return False
        if not best_effort:
            if not self.db.cycles.touch(cycle_id, session=session):
                raise NotFound("Ciclo mensal nao encontrado.")
            return True

        try:
            with session.begin_nested():
                touched = self.db.cycles.touch(cycle_id, session=session)
        except SQLAlchemyError as e:
            logger.debug(f"Skipping touch of cycle {cycle_id}: {e}")
            return False
        if not touched:
            logger.debug(f"Skipping touch of cycle {cycle_id}: not found")
        return touched

    @staticmethod
    def cycle_summary(cycle: Optional[MonthlyCycle]) -> Optional[Dict[str, Any]]:
        """Display block of a cycle: label ``MM/YYYY`` and first and last day."""
        if cycle is None:
            return None
        year, month = cycle.cycle_year, cycle.cycle_month
        last_day = calendar.monthrange(year, month)[1]
        start = cycle.started_at.date() if cycle.started_at else date(year, month, 1)
        return {
            "id": cycle.id,
            "year": year,
            "month": month,
            "status": cycle.status or "open",
            "label": f"{month:02d}/{year}",
            "startDate": start.isoformat(),
            "endDate": date(year, month, last_day).isoformat(),
        }

    @staticmethod
    def contains(cycle: MonthlyCycle, day: date) -> bool:
        """Whether ``day`` falls in the cycle's calendar month."""
        return day.year == cycle.cycle_year and day.month == cycle.cycle_month
