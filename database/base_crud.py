"""Generic CRUD helpers shared by every repository.

Each method accepts an optional external ``session``. When given, the work
joins the caller's transaction and nothing is committed here; otherwise a
short-lived transaction is opened and committed.
"""
from typing import Any, Dict, List, Optional, Type
from sqlalchemy.orm import Session

from .connection import DatabaseConnection


class BaseCRUD:
    """Base repository.

    Attributes:
        conn: Shared database connection.
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self):
        """Context manager for a self-owned transaction."""
        return self.conn.transaction()

    def _run(self, work, session: Optional[Session] = None):
        """Run ``work(session)`` in the caller's session or a new transaction."""
        if session is not None:
            return work(session)
        with self._get_session() as sess:
            return work(sess)

    def get_by_id(self, model: Type[Any], record_id: int,
                  session: Optional[Session] = None) -> Optional[Any]:
        """Fetch one row by primary key.

        Args:
            model: ORM model class.
            record_id: Primary key value.

        Returns:
            The ORM object, or None.
        """
        return self._run(lambda sess: sess.get(model, record_id), session)

    def get_all(self, model: Type[Any],
                filters: Optional[Dict[str, Any]] = None,
                session: Optional[Session] = None) -> List[Any]:
        """Fetch every row matching equality filters.

        Args:
            model: ORM model class.
            filters: Column name to value mapping (optional).

        Returns:
            List of ORM objects ordered by id.
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.order_by(model.id).all()

        return self._run(_query, session)

    def update_by_id(self, model: Type[Any], record_id: int,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[Any]:
        """Set fields on one row.

        Args:
            model: ORM model class.
            record_id: Primary key value.
            **fields: Column values to assign.

        Returns:
            The updated ORM object, or None when the row does not exist.
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            sess.flush()
            return obj

        return self._run(_do, session)
