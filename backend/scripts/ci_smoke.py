import os
import sys
from pathlib import Path


def main() -> int:
    # Make `import passa_pra_ela.*` work when run from the repo root in CI.
    backend_dir = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_dir))

    database_url = os.environ.get("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required for CI smoke test")

    from sqlalchemy import func, select

    from passa_pra_ela.db import SessionLocal
    from passa_pra_ela.market import get_market_status
    from passa_pra_ela.models import MarketStatus, Player
    from passa_pra_ela.seed import init_db, seed

    safe_url = database_url
    if "://" in safe_url and "@" in safe_url:
        scheme, rest = safe_url.split("://", 1)
        creds, host = rest.split("@", 1)
        if ":" in creds:
            user, _pw = creds.split(":", 1)
            safe_url = f"{scheme}://{user}:***@{host}"
    print("CI smoke DATABASE_URL:", safe_url)

    init_db()

    # Seeding must be idempotent: run it twice to cover first boot and restart.
    db = SessionLocal()
    try:
        seed(db)
        seed(db)

        market_rows = int(db.execute(select(func.count()).select_from(MarketStatus)).scalar_one())
        player_count = int(db.execute(select(func.count()).select_from(Player)).scalar_one())
        market_state = get_market_status(db)
    finally:
        db.close()

    if market_rows != 1:
        raise RuntimeError(f"Expected exactly 1 market status row, found {market_rows}")

    print(
        "OK create_all + seed",
        {"market_rows": market_rows, "market_status": market_state.value, "players": player_count},
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
