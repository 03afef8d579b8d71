"""Shared fixtures.

Every test gets a fresh DatabaseManager bound to a temp-file SQLite
database, plus factories for the reference data the engines read.
"""
import os
import shutil
import tempfile
from datetime import datetime

import pytest

from database import DatabaseManager


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="influencer-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def make_influencer(temp_db):
    """Factory: create an influencer (coupon defaults from the name)."""
    counter = {"n": 0}

    def _make(name=None, coupon=None, **fields):
        counter["n"] += 1
        name = name or f"Influencer {counter['n']}"
        coupon = coupon or f"CUPOM{counter['n']}"
        fields.setdefault("instagram", f"insta_{counter['n']}")
        return temp_db.influencers.create(name, coupon=coupon, **fields)

    return _make


@pytest.fixture
def make_script(temp_db):
    """Factory: create a content script."""
    def _make(title="Roteiro", description=None):
        return temp_db.scripts.create(title, description)

    return _make


@pytest.fixture
def make_sku(temp_db):
    """Factory: create or update an SKU point rate."""
    def _make(sku, points_per_unit, active=True):
        return temp_db.skus.upsert(sku, points_per_unit, active=active)

    return _make


@pytest.fixture
def make_cycle(temp_db):
    """Factory: create a cycle for (year, month) with the given status."""
    def _make(year=2024, month=6, status="open"):
        with temp_db.transaction() as session:
            cycle = temp_db.cycles.create(year, month, session=session)
            if status != "open":
                cycle.status = status
                cycle.closed_at = datetime(year, month, 28)
            session.flush()
            return cycle

    return _make


@pytest.fixture
def june_cycle(make_cycle):
    """Open cycle for June 2024."""
    return make_cycle(2024, 6)
