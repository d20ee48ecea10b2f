import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import Player, User
from .scoring import zeroed_stats

logger = logging.getLogger(__name__)


@dataclass
class SettlementSummary:
    users_scored: int
    users_skipped: int
    points_awarded: Decimal
    players_reset: int
    lineups_cleared: int


def lineup_player_ids(lineup: dict | None) -> set[int]:
    """
    Player ids picked in a saved lineup.

    Empty slots are ignored. The result is a set: a player picked in two slots
    is scored once, matching the set-membership sum in `sum_round_scores`.
    Slots holding a player object (`{"id": 7, ...}`) are accepted as well as bare ids.
    """
    if not lineup:
        return set()

    player_ids: set[int] = set()
    for value in lineup.values():
        if isinstance(value, dict):
            value = value.get("id")
        if value is None or isinstance(value, bool):
            continue
        player_ids.add(int(value))
    return player_ids


def lock_all_players(db: Session) -> int:
    return len(db.execute(select(Player.id).with_for_update()).all())


def load_saved_lineups(db: Session) -> list[User]:
    return db.execute(
        select(User).where(User.lineup.is_not(None)).order_by(User.id).with_for_update()
    ).scalars().all()


def sum_round_scores(db: Session, player_ids: set[int]) -> Decimal | None:
    total = db.execute(
        select(func.sum(Player.round_score)).where(Player.id.in_(sorted(player_ids)))
    ).scalar_one()
    if total is None:
        return None
    return Decimal(str(total))


def reset_round_stats(db: Session) -> int:
    result = db.execute(update(Player).values(round_score=0, **zeroed_stats()))
    return int(result.rowcount or 0)


def clear_all_lineups(db: Session) -> int:
    result = db.execute(update(User).values(lineup=None))
    return int(result.rowcount or 0)


def run_round_settlement(db: Session) -> SettlementSummary:
    """
    Credit every saved lineup with the current round scores, then start a fresh round.

    Runs inside the caller's transaction and never commits. Every lineup is
    aggregated before any counter is reset, so all users see pre-reset scores.
    """
    lock_all_players(db)
    users = load_saved_lineups(db)

    users_scored = 0
    users_skipped = 0
    points_awarded = Decimal("0")

    for user in users:
        player_ids = lineup_player_ids(user.lineup)
        if not player_ids:
            users_skipped += 1
            continue

        round_points = sum_round_scores(db, player_ids)
        if not round_points:
            # picks that earned nothing this round: no write
            users_skipped += 1
            continue

        user.total_score = float(Decimal(str(user.total_score or 0)) + round_points)
        users_scored += 1
        points_awarded += round_points

    db.flush()

    players_reset = reset_round_stats(db)
    lineups_cleared = clear_all_lineups(db)

    logger.info(
        "Round settled: %d users credited, %d skipped, %s points, %d players reset",
        users_scored,
        users_skipped,
        points_awarded,
        players_reset,
    )
    return SettlementSummary(
        users_scored=users_scored,
        users_skipped=users_skipped,
        points_awarded=points_awarded,
        players_reset=players_reset,
        lineups_cleared=lineups_cleared,
    )
