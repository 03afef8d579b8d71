"""Initialise the database"""
import sys
import os

# Add the project root to the import path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from config.business_config import business_config
from loguru import logger


def init_database(db: DatabaseManager = None) -> DatabaseManager:
    """Create the tables and insert the seed data (idempotent)."""
    logger.info("Initializing database...")

    db = db or DatabaseManager()

    logger.info("Creating tables...")
    db.create_tables()

    logger.info("Inserting seed data...")

    # SKU point rates (from business_config)
    for rate in business_config.get_seed_sku_points():
        db.skus.upsert(rate["sku"], rate["points_per_unit"], active=rate.get("active", True))
        logger.info(f"SKU rate: {rate['sku']} = {rate['points_per_unit']} points")

    for influencer in business_config.get_seed_influencers():
        fields = {k: v for k, v in influencer.items() if k not in ("name", "coupon")}
        db.influencers.get_or_create(influencer["name"], influencer["coupon"], **fields)
        logger.info(f"Influencer: {influencer['name']} ({influencer['coupon']})")

    for script in business_config.get_seed_scripts():
        db.scripts.get_or_create(script["title"], script.get("description"))
        logger.info(f"Content script: {script['title']}")

    logger.info("Database initialization completed!")
    return db


if __name__ == "__main__":
    init_database()
