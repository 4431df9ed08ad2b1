# backend/clinic_booking/init_db.py
"""Create every table on the configured database (local and test setups)."""

import logging

from sqlalchemy.engine import Engine

from . import models  # noqa: F401  (registers tables on Base.metadata)
from .database import Base, engine

logger = logging.getLogger(__name__)


def create_tables(bind: Engine = engine) -> None:
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=bind)
    logger.info("Tables created successfully")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    create_tables()
