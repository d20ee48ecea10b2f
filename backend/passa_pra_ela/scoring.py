from decimal import Decimal

# points per unit of each counter
STAT_WEIGHTS: dict[str, Decimal] = {
    "goals": Decimal("8"),
    "assists": Decimal("5"),
    "shots_on_target": Decimal("1.5"),
    "tackles": Decimal("1"),
    "saves": Decimal("2"),
    "goals_conceded": Decimal("-2"),
    "yellow_cards": Decimal("-2"),
    "red_cards": Decimal("-5"),
}

STAT_FIELDS: tuple[str, ...] = tuple(STAT_WEIGHTS)


def round_score(stats: dict[str, int]) -> Decimal:
    """
    Fantasy points for one round:
    8*goals + 5*assists + 1.5*shots_on_target + tackles + 2*saves
    - 2*goals_conceded - 2*yellow_cards - 5*red_cards
    """
    total = Decimal("0")
    for field, weight in STAT_WEIGHTS.items():
        total += weight * Decimal(int(stats.get(field, 0)))
    return total


def zeroed_stats() -> dict[str, int]:
    return {field: 0 for field in STAT_FIELDS}
