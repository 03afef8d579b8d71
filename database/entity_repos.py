"""Entity repositories - reference data access layer.

Manages the reference entities the planning and sales engines consume
(influencers, content scripts, SKU point rates). Their full CRUD belongs to
the admin layer; only lookups and the small create helpers used by seeding
live here.
"""
from typing import Dict, Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Influencer, ContentScript, SkuPoint


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _folded(column):
    return func.lower(func.trim(column))


def _scan_folded(query, attr: str, keys: Iterable[str]) -> list:
    """Rows whose ``attr`` folds to one of ``keys``, compared in Python.

    SQLite's lower() only folds ASCII, so non-ASCII keys are matched here.
    """
    wanted = set(keys)
    return [
        row for row in query
        if getattr(row, attr) and getattr(row, attr).strip().lower() in wanted
    ]


class InfluencerRepository(BaseCRUD):
    """Influencer repository.

    Coupons are matched case-insensitively after trimming.
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, name: str, coupon: Optional[str] = None,
               instagram: Optional[str] = None,
               email: Optional[str] = None,
               commission_rate: float = 0,
               user_id: Optional[int] = None,
               session: Optional[Session] = None) -> Influencer:
        """Create an influencer.

        Args:
            name: Display name.
            coupon: Sales coupon (optional).
            instagram: Instagram handle (optional).
            email: Contact e-mail (optional).
            commission_rate: Legacy commission rate.
            user_id: Owning login account id (optional).

        Returns:
            The new Influencer object.
        """
        def _do(sess):
            influencer = Influencer(
                name=name, coupon=_clean(coupon), instagram=instagram,
                email=email, commission_rate=commission_rate,
                user_id=user_id
            )
            sess.add(influencer)
            sess.flush()
            sess.refresh(influencer)
            return influencer

        return self._run(_do, session)

    def get_or_create(self, name: str, coupon: str,
                      session: Optional[Session] = None,
                      **fields) -> Influencer:
        """Get an influencer by coupon or create it.

        Returns:
            Influencer object.
        """
        def _do(sess):
            influencer = self.find_by_coupon(coupon, session=sess)
            if influencer is None:
                influencer = self.create(name, coupon=coupon, session=sess, **fields)
            return influencer

        return self._run(_do, session)

    def find_by_id(self, influencer_id: int,
                   session: Optional[Session] = None) -> Optional[Influencer]:
        """Look an influencer up by id."""
        return self.get_by_id(Influencer, influencer_id, session=session)

    def find_by_user_id(self, user_id: int,
                        session: Optional[Session] = None
                        ) -> Optional[Influencer]:
        """Look an influencer up by the id of its login account."""
        def _query(sess):
            return sess.query(Influencer).filter(
                Influencer.user_id == user_id
            ).first()

        return self._run(_query, session)

    def find_by_coupon(self, coupon: Optional[str],
                       session: Optional[Session] = None
                       ) -> Optional[Influencer]:
        """Look an influencer up by coupon (case-insensitive exact match).

        Returns:
            Influencer object, or None for an empty or unknown coupon.
        """
        key = (coupon or "").strip().lower()
        if not key:
            return None

        def _query(sess):
            if key.isascii():
                return sess.query(Influencer).filter(
                    _folded(Influencer.coupon) == key
                ).order_by(Influencer.id).first()
            matches = _scan_folded(
                sess.query(Influencer).filter(Influencer.coupon.isnot(None))
                .order_by(Influencer.id),
                "coupon", [key]
            )
            return matches[0] if matches else None

        return self._run(_query, session)

    def map_by_coupons(self, coupons: Iterable[str],
                       session: Optional[Session] = None
                       ) -> Dict[str, Influencer]:
        """Resolve many coupons at once.

        Args:
            coupons: Coupons as typed by the user.

        Returns:
            Mapping of lower-cased coupon to Influencer.
        """
        keys = sorted({c.strip().lower() for c in coupons if c and c.strip()})
        if not keys:
            return {}

        ascii_keys = [k for k in keys if k.isascii()]
        other_keys = [k for k in keys if not k.isascii()]

        def _query(sess):
            influencers = []
            if ascii_keys:
                influencers += sess.query(Influencer).filter(
                    _folded(Influencer.coupon).in_(ascii_keys)
                ).all()
            if other_keys:
                influencers += _scan_folded(
                    sess.query(Influencer).filter(Influencer.coupon.isnot(None)),
                    "coupon", other_keys
                )
            return {
                i.coupon.strip().lower(): i for i in influencers if i.coupon
            }

        return self._run(_query, session)

    def list_by_name(self, session: Optional[Session] = None
                     ) -> List[Influencer]:
        """List every influencer ordered by name."""
        def _query(sess):
            return sess.query(Influencer).order_by(
                Influencer.name, Influencer.id
            ).all()

        return self._run(_query, session)


class ContentScriptRepository(BaseCRUD):
    """Content script ("roteiro") repository."""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, title: str, description: Optional[str] = None,
               session: Optional[Session] = None) -> ContentScript:
        """Create a content script.

        Returns:
            The new ContentScript object.
        """
        def _do(sess):
            script = ContentScript(title=title, description=description)
            sess.add(script)
            sess.flush()
            sess.refresh(script)
            return script

        return self._run(_do, session)

    def get_or_create(self, title: str, description: Optional[str] = None,
                      session: Optional[Session] = None) -> ContentScript:
        """Get a content script by title or create it."""
        def _do(sess):
            script = sess.query(ContentScript).filter(
                ContentScript.title == title
            ).first()
            if script is None:
                script = self.create(title, description, session=sess)
            return script

        return self._run(_do, session)

    def exists(self, script_id: int,
               session: Optional[Session] = None) -> bool:
        """Whether a content script with this id exists."""
        return self.get_by_id(ContentScript, script_id, session=session) is not None

    def list_recent(self, limit: int = 15,
                    session: Optional[Session] = None
                    ) -> List[ContentScript]:
        """Most recently created scripts first.

        Args:
            limit: Maximum number of scripts.
        """
        def _query(sess):
            return sess.query(ContentScript).order_by(
                ContentScript.created_at.desc(), ContentScript.id.desc()
            ).limit(limit).all()

        return self._run(_query, session)


class SkuPointRepository(BaseCRUD):
    """SKU point rate repository.

    Read-only reference table for the sales engine; only active rates count.
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def upsert(self, sku: str, points_per_unit: int, active: bool = True,
               session: Optional[Session] = None) -> SkuPoint:
        """Create a rate or update the existing one for the same SKU.

        Returns:
            SkuPoint object.
        """
        sku = _clean(sku)

        def _do(sess):
            record = sess.query(SkuPoint).filter(SkuPoint.sku == sku).first()
            if record is None:
                record = SkuPoint(sku=sku)
                sess.add(record)
            record.points_per_unit = points_per_unit
            record.active = active
            sess.flush()
            sess.refresh(record)
            return record

        return self._run(_do, session)

    def find_active(self, sku: Optional[str],
                    session: Optional[Session] = None
                    ) -> Optional[SkuPoint]:
        """Find an active rate, trying an exact match before a case-insensitive one.

        Returns:
            SkuPoint object, or None.
        """
        value = (sku or "").strip()
        if not value:
            return None

        def _query(sess):
            record = sess.query(SkuPoint).filter(
                SkuPoint.sku == value, SkuPoint.active.is_(True)
            ).first()
            if record is not None:
                return record
            key = value.lower()
            active = sess.query(SkuPoint).filter(SkuPoint.active.is_(True))
            if key.isascii():
                return active.filter(_folded(SkuPoint.sku) == key).first()
            matches = _scan_folded(active.order_by(SkuPoint.id), "sku", [key])
            return matches[0] if matches else None

        return self._run(_query, session)

    def active_rate_map(self, session: Optional[Session] = None
                        ) -> Dict[str, int]:
        """All active rates keyed by lower-cased SKU.

        Negative rates are stored as 0.
        """
        def _query(sess):
            rates = {}
            for record in sess.query(SkuPoint).filter(SkuPoint.active.is_(True)):
                key = (record.sku or "").strip().lower()
                if not key:
                    continue
                points = record.points_per_unit or 0
                rates[key] = points if points >= 0 else 0
            return rates

        return self._run(_query, session)
