from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Player
from .scoring import STAT_FIELDS, round_score


class PlayerNotFound(LookupError):
    def __init__(self, player_id: int):
        super().__init__(f"Player {player_id} not found.")
        self.player_id = player_id


def lock_player(db: Session, player_id: int) -> Player:
    player = db.execute(select(Player).where(Player.id == player_id).with_for_update()).scalar_one_or_none()
    if player is None:
        raise PlayerNotFound(player_id)
    return player


def apply_stat_line(db: Session, player_id: int, counters: dict) -> Decimal:
    """
    Overwrite a player's eight counters and the round score derived from them.

    Both land in the same row update under the player's row lock, so a settlement
    running concurrently sees either the old line or the new one. The caller commits.
    """
    player = lock_player(db, player_id)
    line = {field: int(counters.get(field) or 0) for field in STAT_FIELDS}
    score = round_score(line)
    for field, value in line.items():
        setattr(player, field, value)
    player.round_score = float(score)
    return score
