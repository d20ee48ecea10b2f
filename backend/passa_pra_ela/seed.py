import logging
import os
import time

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .db import Base, engine
from .models import MARKET_ROW_ID, MarketStatus, Player

logger = logging.getLogger(__name__)

SEED_DEMO_ROSTER = os.environ.get("SEED_DEMO_ROSTER", "false").strip().lower() in {"1", "true", "yes"}
DB_CONNECT_ATTEMPTS = max(1, int(os.environ.get("DB_CONNECT_ATTEMPTS", "30")))

DEMO_ROSTER: list[dict[str, object]] = [
    {"name": "Lorena", "shirt_number": 1, "position": "GOL", "team_name": "Palmeiras"},
    {"name": "Tamires", "shirt_number": 6, "position": "LAT", "team_name": "Corinthians"},
    {"name": "Rafaelle", "shirt_number": 4, "position": "ZAG", "team_name": "Orlando Pride"},
    {"name": "Antônia", "shirt_number": 3, "position": "ZAG", "team_name": "Levante"},
    {"name": "Ary Borges", "shirt_number": 8, "position": "MEI", "team_name": "Racing Louisville"},
    {"name": "Kerolin", "shirt_number": 10, "position": "MEI", "team_name": "North Carolina Courage"},
    {"name": "Gabi Portilho", "shirt_number": 7, "position": "ATA", "team_name": "Corinthians"},
    {"name": "Debinha", "shirt_number": 9, "position": "ATA", "team_name": "Kansas City Current"},
]


def init_db():
    # Wait for the database to accept connections
    for _attempt in range(DB_CONNECT_ATTEMPTS):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except OperationalError:
            time.sleep(1)
    else:
        raise RuntimeError(f"Database not ready after {DB_CONNECT_ATTEMPTS} attempts")

    Base.metadata.create_all(bind=engine)


def ensure_market_row(db: Session) -> MarketStatus:
    market = db.get(MarketStatus, MARKET_ROW_ID)
    if market is None:
        market = MarketStatus(id=MARKET_ROW_ID, status="open", version=0, round_number=1)
        db.add(market)
        db.flush()
        logger.info("Created market status row (open)")
    return market


def seed_demo_roster(db: Session) -> int:
    existing = set(db.execute(select(Player.name)).scalars().all())
    created = 0
    for row in DEMO_ROSTER:
        if row["name"] in existing:
            continue
        db.add(Player(**row))
        created += 1
    return created


def seed(db: Session):
    ensure_market_row(db)
    if SEED_DEMO_ROSTER:
        created = seed_demo_roster(db)
        if created:
            logger.info("Seeded %d demo players", created)
    db.commit()
