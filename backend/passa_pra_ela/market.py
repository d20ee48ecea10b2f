import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidStatus, MarketClosed, SettlementFailed
from .models import MARKET_ROW_ID, MarketStatus, RoundSettlement, User
from .settlement import SettlementSummary, run_round_settlement

logger = logging.getLogger(__name__)

CLOSED_MESSAGE = "Market closed. Lineups are locked."
OPENED_MESSAGE = "Leaderboard updated. Market open for the next round."


class MarketState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


MARKET_STATE_VALUES = frozenset(state.value for state in MarketState)


@dataclass
class MarketTransition:
    previous: MarketState
    current: MarketState
    message: str
    version: int
    round_number: int
    settlement: SettlementSummary | None = None


def parse_market_state(value: object) -> MarketState:
    if isinstance(value, str) and value in MARKET_STATE_VALUES:
        return MarketState(value)
    raise InvalidStatus(value)


def get_market(db: Session, for_update: bool = False, shared: bool = False) -> MarketStatus:
    stmt = select(MarketStatus).where(MarketStatus.id == MARKET_ROW_ID)
    if for_update:
        stmt = stmt.with_for_update()
    elif shared:
        stmt = stmt.with_for_update(read=True)
    market = db.execute(stmt).scalar_one_or_none()
    if market is None:
        raise RuntimeError("market_status row is missing; run init_db() and seed() first")
    return market


def get_market_status(db: Session) -> MarketState:
    return MarketState(get_market(db).status)


def ensure_market_open(db: Session) -> MarketStatus:
    """
    Precondition for lineup writes. Call it inside the same transaction as the write:
    the shared row lock makes a concurrent close wait until the write commits.
    """
    market = get_market(db, shared=True)
    if market.status != MarketState.OPEN.value:
        raise MarketClosed()
    return market


def set_market_status(db: Session, target: object) -> MarketTransition:
    """
    Move the market to `target` and commit.

    Closing only flips the flag. Opening (from either state) settles the round
    first. The whole transition commits or rolls back as one unit; any failure
    is re-raised as SettlementFailed after the rollback.
    """
    state = parse_market_state(target)

    try:
        market = get_market(db, for_update=True)
        previous = MarketState(market.status)
        summary: SettlementSummary | None = None

        if state is MarketState.OPEN:
            summary = run_round_settlement(db)
            db.add(
                RoundSettlement(
                    round_number=market.round_number,
                    users_scored=summary.users_scored,
                    users_skipped=summary.users_skipped,
                    points_awarded=float(summary.points_awarded),
                    players_reset=summary.players_reset,
                )
            )
            market.round_number += 1

        # re-closing a closed market writes nothing
        if state is MarketState.OPEN or previous is not state:
            market.status = state.value
            market.version += 1
            market.updated_at = datetime.utcnow()
        version = market.version
        round_number = market.round_number
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Market transition to '%s' aborted and rolled back", state.value)
        raise SettlementFailed(
            f"Could not set the market to '{state.value}'. No changes were applied; retry the request."
        ) from exc

    logger.info("Market %s -> %s (version %d)", previous.value, state.value, version)
    return MarketTransition(
        previous=previous,
        current=state,
        message=OPENED_MESSAGE if state is MarketState.OPEN else CLOSED_MESSAGE,
        version=version,
        round_number=round_number,
        settlement=summary,
    )


def get_leaderboard(db: Session, limit: int) -> list[tuple[str, float]]:
    """Top `limit` teams by total score; equal scores keep registration order (user id)."""
    rows = db.execute(
        select(User.team_name, User.total_score)
        .order_by(User.total_score.desc(), User.id.asc())
        .limit(max(0, int(limit)))
    ).all()
    return [(str(team_name), float(total_score or 0)) for team_name, total_score in rows]


def list_round_settlements(db: Session, limit: int) -> list[RoundSettlement]:
    return db.execute(
        select(RoundSettlement).order_by(RoundSettlement.round_number.desc(), RoundSettlement.id.desc()).limit(limit)
    ).scalars().all()
