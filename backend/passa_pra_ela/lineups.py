from sqlalchemy import select
from sqlalchemy.orm import Session

from .market import ensure_market_open
from .models import Player, User

MAX_LINEUP_SLOTS = 15


class InvalidLineup(ValueError):
    pass


def normalize_lineup(raw: dict) -> dict[str, int | None]:
    """
    Reduce a submitted lineup to `slot -> player id | None`.

    The web client posts whole player cards (`{"id": 3, "nome": ...}`) per slot;
    bare ids and nulls are accepted too.
    """
    if len(raw) > MAX_LINEUP_SLOTS:
        raise InvalidLineup(f"A lineup has at most {MAX_LINEUP_SLOTS} slots.")

    normalized: dict[str, int | None] = {}
    for slot, value in raw.items():
        slot_name = str(slot).strip()
        if not slot_name:
            raise InvalidLineup("Slot names must not be empty.")
        if isinstance(value, dict):
            value = value.get("id")
        if value is None:
            normalized[slot_name] = None
            continue
        if isinstance(value, bool):
            raise InvalidLineup(f"Slot '{slot_name}' does not reference a player.")
        try:
            normalized[slot_name] = int(value)
        except (TypeError, ValueError):
            raise InvalidLineup(f"Slot '{slot_name}' does not reference a player.") from None
    return normalized


def save_lineup(db: Session, user_id: int, raw: dict) -> dict[str, int | None]:
    """Store a user's lineup for the current round. Does not commit."""
    lineup = normalize_lineup(raw)

    ensure_market_open(db)

    picked = {player_id for player_id in lineup.values() if player_id is not None}
    if picked:
        found = set(db.execute(select(Player.id).where(Player.id.in_(sorted(picked)))).scalars().all())
        missing = sorted(picked - found)
        if missing:
            raise InvalidLineup(f"Unknown player id(s): {', '.join(str(i) for i in missing)}.")

    user = db.execute(select(User).where(User.id == user_id).with_for_update()).scalar_one()
    user.lineup = lineup
    return lineup
