"""Database manager - unified facade.

DatabaseManager is the single entry point of the ``database`` package. It
composes every repository and offers two levels of API:

1. **Repository access** (fine-grained):
   ``db.influencers``, ``db.plans``, ``db.sales`` ... return ORM objects and
   accept an external ``session`` so engines can chain them inside one
   transaction.

2. **Convenience methods** (coarse-grained):
   flat helpers such as ``get_sku_rates()`` returning plain values for
   the import parsers.
"""
from typing import Optional, Dict
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    InfluencerRepository, ContentScriptRepository, SkuPointRepository
)
from .business_repos import (
    CycleRepository, PlanRepository, SaleRepository, CommissionRepository
)


class DatabaseManager:
    """Database manager - unified facade.

    Attributes:
        conn: Database connection manager.
        influencers: Influencer repository.
        scripts: Content script repository.
        skus: SKU point rate repository.
        cycles: Monthly cycle repository.
        plans: Influencer plan repository.
        sales: Sale repository.
        commissions: Monthly commission repository.

    Example::

        db = DatabaseManager("sqlite:///data/influencer_ops.db")
        db.create_tables()

        # Repository access (ORM objects)
        influencer = db.influencers.find_by_coupon("HIDRA10")

        # Atomic sequence across repositories
        with db.transaction() as session:
            cycle = db.cycles.find_by_month(2024, 6, session=session)
            db.cycles.touch(cycle.id, session=session)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """Initialise the manager.

        Args:
            database_url: Connection URL. None uses ``settings.database_url``.
        """
        # Infrastructure
        self.conn = DatabaseConnection(database_url)

        # Reference data
        self.influencers = InfluencerRepository(self.conn)
        self.scripts = ContentScriptRepository(self.conn)
        self.skus = SkuPointRepository(self.conn)

        # Program records
        self.cycles = CycleRepository(self.conn)
        self.plans = PlanRepository(self.conn)
        self.sales = SaleRepository(self.conn)
        self.commissions = CommissionRepository(self.conn)

    # ================================================================
    # Infrastructure
    # ================================================================

    def create_tables(self) -> None:
        """Create every table (idempotent)."""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """Return a new session."""
        return self.conn.get_session()

    def transaction(self):
        """Context manager for one atomic transaction."""
        return self.conn.transaction()

    @property
    def database_url(self) -> str:
        """Database connection URL."""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy engine."""
        return self.conn.engine

    def close(self) -> None:
        """Close the connection and release resources."""
        self.conn.close()

    # ================================================================
    # Convenience queries
    # ================================================================

    def get_sku_rates(self, session: Optional[Session] = None) -> Dict[str, int]:
        """Active SKU point rates keyed by lower-cased SKU."""
        return self.skus.active_rate_map(session=session)
