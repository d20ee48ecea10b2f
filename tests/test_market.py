import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import add_player, add_user
from passa_pra_ela import settlement
from passa_pra_ela.errors import InvalidStatus, MarketClosed, SettlementFailed
from passa_pra_ela.lineups import save_lineup
from passa_pra_ela.market import (
    MarketState,
    ensure_market_open,
    get_leaderboard,
    get_market,
    get_market_status,
    list_round_settlements,
    set_market_status,
)
from passa_pra_ela.models import Player, RoundSettlement, User
from passa_pra_ela.scoring import STAT_FIELDS
from passa_pra_ela.settlement import lineup_player_ids


def snapshot(db) -> dict:
    db.expire_all()
    market = get_market(db)
    return {
        "market": (market.status, market.version, market.round_number),
        "users": [
            (user.id, float(user.total_score), user.lineup)
            for user in db.execute(select(User).order_by(User.id)).scalars().all()
        ],
        "players": [
            tuple([player.id, float(player.round_score)] + [getattr(player, field) for field in STAT_FIELDS])
            for player in db.execute(select(Player).order_by(Player.id)).scalars().all()
        ],
    }


@pytest.fixture
def round_in_progress(db):
    """Player A scores 10, player B scores -3, U picked both plus an empty slot."""
    player_a = add_player(db, "A", goals=1, tackles=2, round_score=10)
    player_b = add_player(db, "B", red_cards=1, tackles=2, round_score=-3)
    bench = add_player(db, "Bench", goals=3, saves=4, round_score=32)
    user = add_user(
        db,
        "u@example.com",
        "Team U",
        total_score=100,
        lineup={"slot1": player_a.id, "slot2": player_b.id, "slot3": None},
    )
    set_market_status(db, "closed")
    return {"a": player_a.id, "b": player_b.id, "bench": bench.id, "user": user.id}


def test_market_starts_open(db):
    assert get_market_status(db) is MarketState.OPEN
    assert get_market(db).round_number == 1


def test_opening_settles_round(db, round_in_progress):
    transition = set_market_status(db, "open")

    assert transition.previous is MarketState.CLOSED
    assert transition.current is MarketState.OPEN
    assert transition.settlement.users_scored == 1
    assert float(transition.settlement.points_awarded) == 7

    db.expire_all()
    user = db.get(User, round_in_progress["user"])
    assert float(user.total_score) == 107
    assert user.lineup is None
    for key in ("a", "b"):
        player = db.get(Player, round_in_progress[key])
        assert float(player.round_score) == 0
        assert all(getattr(player, field) == 0 for field in STAT_FIELDS)
    assert get_market_status(db) is MarketState.OPEN


def test_opening_resets_players_outside_every_lineup(db, round_in_progress):
    set_market_status(db, "open")

    db.expire_all()
    for player in db.execute(select(Player)).scalars().all():
        assert float(player.round_score) == 0
        assert [getattr(player, field) for field in STAT_FIELDS] == [0] * 8


def test_opening_clears_every_lineup(db):
    player = add_player(db, "A", round_score=5)
    add_user(db, "one@example.com", "One", lineup={"slot1": player.id})
    add_user(db, "two@example.com", "Two", lineup={"slot1": None})
    add_user(db, "three@example.com", "Three")

    set_market_status(db, "open")

    db.expire_all()
    assert [user.lineup for user in db.execute(select(User)).scalars().all()] == [None, None, None]


def test_empty_lineups_are_skipped(db):
    player = add_player(db, "A", round_score=12)
    no_lineup = add_user(db, "none@example.com", "No Lineup", total_score=40)
    empty_slots = add_user(db, "empty@example.com", "Empty", total_score=40, lineup={"slot1": None})

    transition = set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, no_lineup.id).total_score) == 40
    assert float(db.get(User, empty_slots.id).total_score) == 40
    assert transition.settlement.users_skipped == 1
    assert transition.settlement.users_scored == 0
    assert float(db.get(Player, player.id).round_score) == 0


def test_duplicate_pick_scores_once(db):
    player = add_player(db, "A", goals=1, round_score=8)
    user = add_user(db, "dup@example.com", "Dup", lineup={"slot1": player.id, "slot2": player.id})

    set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, user.id).total_score) == 8


def test_zero_round_points_leave_total_untouched(db):
    player = add_player(db, "A", round_score=0)
    user = add_user(db, "zero@example.com", "Zero", total_score=15, lineup={"slot1": player.id})

    transition = set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, user.id).total_score) == 15
    assert transition.settlement.users_scored == 0
    assert transition.settlement.users_skipped == 1
    assert transition.settlement.points_awarded == 0


def test_lineup_of_unknown_players_is_skipped(db):
    user = add_user(db, "ghost@example.com", "Ghost", total_score=4, lineup={"slot1": 9999})

    transition = set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, user.id).total_score) == 4
    assert transition.settlement.users_skipped == 1
    assert db.get(User, user.id).lineup is None


def test_settlement_with_no_lineups_still_opens(db):
    add_player(db, "A", goals=2, round_score=16)
    set_market_status(db, "closed")

    transition = set_market_status(db, "open")

    assert transition.settlement.users_scored == 0
    assert transition.settlement.players_reset == 1
    assert get_market_status(db) is MarketState.OPEN


def test_close_is_idempotent(db, round_in_progress):
    first = snapshot(db)
    transition = set_market_status(db, "closed")
    second = snapshot(db)

    assert transition.previous is MarketState.CLOSED
    assert transition.settlement is None
    assert first == second
    assert second["market"][0] == "closed"


def test_close_changes_only_the_flag(db):
    player = add_player(db, "A", goals=1, round_score=8)
    add_user(db, "u@example.com", "U", total_score=3, lineup={"slot1": player.id})
    before = snapshot(db)

    set_market_status(db, "closed")
    after = snapshot(db)

    assert after["users"] == before["users"]
    assert after["players"] == before["players"]
    assert after["market"][0] == "closed"
    assert after["market"][1] == before["market"][1] + 1


def test_reopening_an_open_market_does_not_double_count(db, round_in_progress):
    set_market_status(db, "open")
    set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, round_in_progress["user"]).total_score) == 107


def test_invalid_status_changes_nothing(db, round_in_progress):
    before = snapshot(db)

    for bad in ("foo", "", None, 1, "aberto"):
        with pytest.raises(InvalidStatus):
            set_market_status(db, bad)

    assert snapshot(db) == before


def test_status_must_match_exactly(db):
    for near_miss in (" closed ", "CLOSED", "Open", "OPEN", "closed\n"):
        with pytest.raises(InvalidStatus):
            set_market_status(db, near_miss)

    assert get_market_status(db) is MarketState.OPEN
    assert set_market_status(db, "closed").current is MarketState.CLOSED


def test_failure_mid_aggregation_rolls_back(db, round_in_progress, monkeypatch):
    other = add_user(db, "v@example.com", "Team V", total_score=5, lineup={"slot1": round_in_progress["bench"]})
    before = snapshot(db)

    real_sum = settlement.sum_round_scores
    calls = []

    def flaky_sum(session, player_ids):
        calls.append(player_ids)
        if len(calls) == 2:
            raise OperationalError("SELECT sum(round_score)", {}, Exception("connection lost"))
        return real_sum(session, player_ids)

    monkeypatch.setattr(settlement, "sum_round_scores", flaky_sum)

    with pytest.raises(SettlementFailed):
        set_market_status(db, "open")

    assert len(calls) == 2
    after = snapshot(db)
    assert after == before
    assert after["market"][0] == "closed"
    assert float(db.get(User, other.id).total_score) == 5


def test_failure_after_reset_rolls_back(db, round_in_progress, monkeypatch):
    before = snapshot(db)

    def broken_clear(session):
        raise RuntimeError("disk full")

    monkeypatch.setattr(settlement, "clear_all_lineups", broken_clear)

    with pytest.raises(SettlementFailed) as excinfo:
        set_market_status(db, "open")

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert snapshot(db) == before
    assert db.execute(select(RoundSettlement)).first() is None


def test_failed_opening_can_be_retried(db, round_in_progress, monkeypatch):
    def broken_reset(session):
        raise RuntimeError("boom")

    monkeypatch.setattr(settlement, "reset_round_stats", broken_reset)
    with pytest.raises(SettlementFailed):
        set_market_status(db, "open")

    monkeypatch.undo()
    set_market_status(db, "open")

    db.expire_all()
    assert float(db.get(User, round_in_progress["user"]).total_score) == 107


def test_each_opening_records_a_round(db, round_in_progress):
    set_market_status(db, "open")
    set_market_status(db, "closed")
    set_market_status(db, "open")

    rounds = list_round_settlements(db, limit=10)
    assert [row.round_number for row in rounds] == [2, 1]
    assert float(rounds[1].points_awarded) == 7
    assert rounds[1].users_scored == 1
    assert float(rounds[0].points_awarded) == 0
    assert get_market(db).round_number == 3


def test_leaderboard_orders_by_total_then_registration(db):
    add_user(db, "a@example.com", "Alpha", total_score=10)
    add_user(db, "b@example.com", "Bravo", total_score=30)
    add_user(db, "c@example.com", "Charlie", total_score=10)
    add_user(db, "d@example.com", "Delta", total_score=20)

    assert get_leaderboard(db, 10) == [
        ("Bravo", 30.0),
        ("Delta", 20.0),
        ("Alpha", 10.0),
        ("Charlie", 10.0),
    ]
    assert get_leaderboard(db, 2) == [("Bravo", 30.0), ("Delta", 20.0)]


def test_lineup_player_ids():
    assert lineup_player_ids(None) == set()
    assert lineup_player_ids({}) == set()
    assert lineup_player_ids({"slot1": None}) == set()
    assert lineup_player_ids({"gk": 1, "cb": {"id": 2, "nome": "Rafaelle"}, "st": 1, "bench": None}) == {1, 2}


def test_lineup_save_requires_open_market(db):
    player = add_player(db, "A")
    user = add_user(db, "u@example.com", "U")
    set_market_status(db, "closed")

    with pytest.raises(MarketClosed):
        ensure_market_open(db)
    with pytest.raises(MarketClosed):
        save_lineup(db, user.id, {"slot1": player.id})
    db.rollback()

    db.expire_all()
    assert db.get(User, user.id).lineup is None
