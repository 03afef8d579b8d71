"""SQLAlchemy ORM models.

This module defines every table of the influencer program:
- Influencers, content scripts and SKU point rates (reference data)
- Monthly cycles and the per-day content plans attached to them
- Imported sales with their SKU line items
- Monthly commission snapshots
"""
from typing import List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    DECIMAL, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, date, timezone

# Declarative base shared by every model
Base = declarative_base()

# Allow the legacy-style annotations used below under SQLAlchemy 2.0
Base.__allow_unmapped__ = True


PLAN_STATUSES = ("scheduled", "posted", "validated", "missed")
SALE_STATUSES = ("pending", "approved", "rejected")
CYCLE_STATUSES = ("open", "closed")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Influencer(Base):
    """Influencer table model.

    Only the fields the planning and sales engines read are modelled here;
    onboarding and contract data live with the external CRUD layer.

    Attributes:
        id: Primary key.
        name: Display name, required.
        instagram: Instagram handle, unique.
        email: Contact e-mail, optional.
        coupon: Discount coupon used to attribute sales, unique,
            matched case-insensitively.
        commission_rate: Legacy percentage commission rate, DECIMAL(5,4).
        user_id: Id of the login account owned by the influencer, optional.
        created_at: Creation time (UTC).
    """
    __tablename__ = "influencers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(150), nullable=False)
    instagram: Optional[str] = Column(String(100), unique=True)
    email: Optional[str] = Column(String(150))
    coupon: Optional[str] = Column(String(50), unique=True)
    commission_rate: float = Column(DECIMAL(5, 4), default=0)
    user_id: Optional[int] = Column(Integer)
    created_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    plans: List["InfluencerPlan"] = relationship("InfluencerPlan", back_populates="influencer")
    sales: List["Sale"] = relationship("Sale", back_populates="influencer")


class ContentScript(Base):
    """Content script ("roteiro") table model.

    Attributes:
        id: Primary key.
        title: Script title, required.
        description: Free text body, optional.
        created_at: Creation time (UTC).
        updated_at: Last update time (UTC).
    """
    __tablename__ = "content_scripts"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    title: str = Column(String(200), nullable=False)
    description: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=utcnow)
    updated_at: datetime = Column(DateTime, default=utcnow, onupdate=utcnow)


class SkuPoint(Base):
    """SKU point rate table model.

    Maps a product SKU to the points earned per unit sold. Only active rows
    are used by the sales engine.

    Attributes:
        id: Primary key.
        sku: Product SKU, unique.
        points_per_unit: Points per unit sold, non-negative integer.
        active: Whether the rate is in use.
        created_at: Creation time (UTC).
    """
    __tablename__ = "sku_points"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    sku: str = Column(String(100), nullable=False, unique=True)
    points_per_unit: int = Column(Integer, nullable=False, default=0)
    active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=utcnow)


class MonthlyCycle(Base):
    """Monthly cycle table model.

    One row per calendar month. At most one cycle is open at a time; the
    (cycle_year, cycle_month) pair is unique so two concurrent creators for
    the same month collide instead of producing twin cycles.

    Attributes:
        id: Primary key.
        cycle_year: Calendar year.
        cycle_month: Calendar month, 1-12.
        status: open / closed.
        started_at: First instant of the month (UTC).
        closed_at: When the cycle was closed, null while open.
        created_at: Creation time (UTC).
        updated_at: Touched whenever plans or sales of the cycle change.
    """
    __tablename__ = "monthly_cycles"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    cycle_year: int = Column(Integer, nullable=False)
    cycle_month: int = Column(Integer, nullable=False)
    status: str = Column(String(20), nullable=False, default="open")  # open / closed
    started_at: datetime = Column(DateTime, nullable=False)
    closed_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=utcnow)
    updated_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    plans: List["InfluencerPlan"] = relationship("InfluencerPlan", back_populates="cycle")

    __table_args__ = (
        UniqueConstraint("cycle_year", "cycle_month", name="uq_monthly_cycle_month"),
    )


class InfluencerPlan(Base):
    """Scheduled content delivery table model.

    One influencer's commitment to post on one date of a cycle. The
    (influencer, date) and (influencer, script) pairs are merge keys for the
    planner, not storage constraints.

    Attributes:
        id: Primary key.
        cycle_id: Owning cycle.
        influencer_id: Owning influencer.
        scheduled_date: Posting date (date only).
        content_script_id: Script to follow, optional.
        notes: Free text, optional.
        status: scheduled / posted / validated / missed.
        created_at: Creation time (UTC).
        updated_at: Last update time (UTC).
    """
    __tablename__ = "influencer_plans"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id: int = Column(Integer, ForeignKey("monthly_cycles.id"), nullable=False)
    influencer_id: int = Column(Integer, ForeignKey("influencers.id"), nullable=False)
    scheduled_date: date = Column(Date, nullable=False)
    content_script_id: Optional[int] = Column(Integer, ForeignKey("content_scripts.id"))
    notes: Optional[str] = Column(Text)
    status: str = Column(String(20), nullable=False, default="scheduled")
    created_at: datetime = Column(DateTime, default=utcnow)
    updated_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    cycle: "MonthlyCycle" = relationship("MonthlyCycle", back_populates="plans")
    influencer: "Influencer" = relationship("Influencer", back_populates="plans")
    content_script: Optional["ContentScript"] = relationship("ContentScript")


class MonthlyCommission(Base):
    """Monthly commission snapshot table model.

    Settlement of one influencer in one cycle. Unique per (cycle, influencer).

    Attributes:
        id: Primary key.
        cycle_id: Settled cycle.
        influencer_id: Settled influencer.
        validated_days: Validated deliveries in the cycle.
        multiplier: Factor from the activation bands, DECIMAL(4,2).
        base_points: Approved sales points before the multiplier.
        total_points: Points after the multiplier.
        base_commission: Currency value of base_points.
        total_commission: Currency value of total_points.
        deliveries_planned: Plans in the cycle.
        deliveries_completed: Alias of validated_days kept for reports.
        validation_summary: Band label.
        closed_at: Snapshot time.
        created_at: Creation time (UTC).
    """
    __tablename__ = "monthly_commissions"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id: int = Column(Integer, ForeignKey("monthly_cycles.id"), nullable=False)
    influencer_id: int = Column(Integer, ForeignKey("influencers.id"), nullable=False)
    validated_days: int = Column(Integer, default=0)
    multiplier: float = Column(DECIMAL(4, 2), default=0)
    base_points: int = Column(Integer, default=0)
    total_points: int = Column(Integer, default=0)
    base_commission: float = Column(DECIMAL(10, 2), default=0)
    total_commission: float = Column(DECIMAL(10, 2), default=0)
    deliveries_planned: int = Column(Integer, default=0)
    deliveries_completed: int = Column(Integer, default=0)
    validation_summary: Optional[str] = Column(Text)
    closed_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("cycle_id", "influencer_id", name="uq_monthly_commission"),
    )


class Sale(Base):
    """Imported sale table model.

    One commercial order attributed to an influencer by coupon.

    Attributes:
        id: Primary key.
        influencer_id: Attributed influencer.
        cycle_id: Cycle of the sale date, optional.
        order_number: Store order number, unique when present.
        sale_date: Sale date.
        gross_value / discount / net_value: Placeholders, zero for point sales.
        commission: Currency value of ``points``, DECIMAL(10,2).
        points: Points earned, non-negative integer.
        status: pending / approved / rejected.
        created_at: Creation time (UTC).
    """
    __tablename__ = "sales"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    influencer_id: int = Column(Integer, ForeignKey("influencers.id"), nullable=False)
    cycle_id: Optional[int] = Column(Integer, ForeignKey("monthly_cycles.id"))
    order_number: Optional[str] = Column(String(100), unique=True)
    sale_date: date = Column(Date, nullable=False)
    gross_value: float = Column(DECIMAL(10, 2), default=0)
    discount: float = Column(DECIMAL(10, 2), default=0)
    net_value: float = Column(DECIMAL(10, 2), default=0)
    commission: float = Column(DECIMAL(10, 2), default=0)
    points: int = Column(Integer, nullable=False, default=0)
    status: str = Column(String(20), nullable=False, default="pending")
    created_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    influencer: "Influencer" = relationship("Influencer", back_populates="sales")
    items: List["SaleSkuPoint"] = relationship(
        "SaleSkuPoint", back_populates="sale",
        cascade="all, delete-orphan", order_by="SaleSkuPoint.id"
    )


class SaleSkuPoint(Base):
    """Sale SKU line item table model.

    Attributes:
        id: Primary key.
        sale_id: Owning sale.
        sku: Product SKU as resolved at import time.
        quantity: Units sold.
        points_per_unit: Rate applied.
        points: quantity x points_per_unit, rounded.
        created_at: Creation time (UTC).
    """
    __tablename__ = "sale_sku_points"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    sale_id: int = Column(Integer, ForeignKey("sales.id"), nullable=False)
    sku: str = Column(String(100), nullable=False)
    quantity: int = Column(Integer, nullable=False, default=0)
    points_per_unit: int = Column(Integer, nullable=False, default=0)
    points: int = Column(Integer, nullable=False, default=0)
    created_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    sale: "Sale" = relationship("Sale", back_populates="items")
