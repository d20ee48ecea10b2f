import argparse
import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable
from urllib import error, request

STAT_COLUMNS: dict[str, tuple[str, ...]] = {
    "goals": ("goals", "gols"),
    "assists": ("assists", "assistencias"),
    "shots_on_target": ("shots_on_target", "shots", "finalizacoes"),
    "tackles": ("tackles", "desarmes"),
    "saves": ("saves", "defesas"),
    "goals_conceded": ("goals_conceded", "gol_sofrido"),
    "yellow_cards": ("yellow_cards", "cartao_amarelo"),
    "red_cards": ("red_cards", "cartao_vermelho"),
}


@dataclass
class PlayerRef:
    player_id: int
    name: str
    team: str


def normalize(value: str) -> str:
    return " ".join((value or "").strip().lower().split())


def fetch_players(api_base: str) -> list[dict]:
    url = f"{api_base.rstrip('/')}/players"
    with request.urlopen(url) as response:
        return json.loads(response.read().decode("utf-8"))


def put_stats(api_base: str, player_id: int, payload: dict, token: str | None = None) -> dict:
    url = f"{api_base.rstrip('/')}/players/{player_id}/stats"
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers=headers,
        method="PUT",
    )
    with request.urlopen(req) as response:
        return json.loads(response.read().decode("utf-8"))


def detect_column(row: dict, candidates: Iterable[str]) -> str:
    normalized_keys = {normalize(key): key for key in row.keys()}
    for candidate in candidates:
        key = normalized_keys.get(normalize(candidate))
        if key:
            return key
    return ""


def resolve_player(
    name: str,
    team: str,
    by_name_team: dict[tuple[str, str], PlayerRef],
    by_name: dict[str, list[PlayerRef]],
) -> PlayerRef | None:
    key_name = normalize(name)
    key_team = normalize(team)
    if key_name and key_team:
        direct = by_name_team.get((key_name, key_team))
        if direct:
            return direct

    matches = by_name.get(key_name, [])
    if len(matches) == 1:
        return matches[0]

    return None


def parse_counters(row: dict, columns: dict[str, str]) -> dict[str, int]:
    """Missing or blank cells count as zero; the API overwrites all eight counters."""
    counters: dict[str, int] = {}
    for field in STAT_COLUMNS:
        raw = str(row.get(columns[field], "")).strip() if columns[field] else ""
        value = int(raw) if raw else 0
        if value < 0:
            raise ValueError(f"{field} must not be negative")
        counters[field] = value
    return counters


def main() -> int:
    parser = argparse.ArgumentParser(description="Push a round of match stats to PUT /players/{id}/stats")
    parser.add_argument("--file", required=True, help="CSV file path")
    parser.add_argument("--api-base", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--token", default=None, help="Admin bearer token")
    parser.add_argument("--dry-run", action="store_true", help="Validate and print without sending")
    args = parser.parse_args()

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"[error] file not found: {file_path}")
        return 1

    by_name_team: dict[tuple[str, str], PlayerRef] = {}
    by_name: dict[str, list[PlayerRef]] = {}
    for player in fetch_players(args.api_base):
        ref = PlayerRef(
            player_id=int(player["id"]),
            name=str(player["name"]),
            team=str(player.get("team_name") or ""),
        )
        by_name_team[(normalize(ref.name), normalize(ref.team))] = ref
        by_name.setdefault(normalize(ref.name), []).append(ref)

    with file_path.open("r", encoding="utf-8", newline="") as csv_file:
        rows = list(csv.DictReader(csv_file))

    if not rows:
        print("[error] CSV has no rows")
        return 1

    sample = rows[0]
    col_name = detect_column(sample, ["player_name", "name", "player", "nome"])
    col_team = detect_column(sample, ["team", "team_name", "nome_time"])
    stat_columns = {field: detect_column(sample, candidates) for field, candidates in STAT_COLUMNS.items()}

    if not col_name:
        print("[error] CSV must include a player name column")
        return 1

    success = 0
    skipped = 0
    failed = 0

    for idx, row in enumerate(rows, start=2):
        name = str(row.get(col_name, "")).strip()
        team = str(row.get(col_team, "")).strip() if col_team else ""
        if not name:
            skipped += 1
            continue

        try:
            counters = parse_counters(row, stat_columns)
        except ValueError as exc:
            print(f"[row {idx}] invalid stat value: {exc}")
            failed += 1
            continue

        ref = resolve_player(name, team, by_name_team, by_name)
        if not ref:
            team_hint = f" ({team})" if team else ""
            print(f"[row {idx}] no player match for '{name}{team_hint}'")
            failed += 1
            continue

        if args.dry_run:
            print(f"[dry-run] row {idx}: {ref.name} -> {counters}")
            success += 1
            continue

        try:
            result = put_stats(args.api_base, ref.player_id, counters, token=args.token)
            print(f"[row {idx}] {ref.name}: round score {result.get('round_score')}")
            success += 1
        except error.URLError as exc:
            print(f"[row {idx}] update failed for {ref.name}: {exc}")
            failed += 1

    print(
        f"done | updated={success} skipped={skipped} failed={failed}"
        + (" (dry-run)" if args.dry_run else "")
    )

    return 0 if failed == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
