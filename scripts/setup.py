#!/usr/bin/env python3
"""Setup script for the reservation service."""

import asyncio
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from reservation_service.core.database import async_session_factory  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_ACCOUNT = "demo-account"


def setup_database() -> None:
    """Bring the schema up to the latest migration."""
    logger.info("Running database migrations...")

    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    command.upgrade(alembic_cfg, "head")

    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a pending excursion for the demo account, settled through the ledger."""
    from sqlalchemy import func, select

    from reservation_service.models import Reservation, ReservationStatus
    from reservation_service.schemas.reservation import Holder, PendingIntent
    from reservation_service.services.materializer import build_reservation

    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        try:
            existing = await db.execute(
                select(func.count()).select_from(Reservation).where(Reservation.account_id == DEMO_ACCOUNT)
            )
            if existing.scalar() > 0:
                logger.info("Sample data already exists, skipping...")
                return

            intent = PendingIntent(
                details={
                    "category": "excursion",
                    "date": (date.today() + timedelta(days=30)).isoformat(),
                    "time": "09:00",
                    "time_slot": "morning",
                },
                service_id="glacier-hike",
                party_size=3,
                participants=("alex", "sam", "kai"),
                holder=Holder(account_id=DEMO_ACCOUNT),
                total_amount=30000,
                currency="usd",
            )
            db.add(build_reservation(intent, ReservationStatus.PENDING))
            await db.commit()
            logger.info("Sample data created successfully!")

        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise


def main() -> None:
    """Main setup function."""
    logger.info("Starting reservation service setup...")

    setup_database()
    asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn reservation_service.main:app --reload")


if __name__ == "__main__":
    main()
