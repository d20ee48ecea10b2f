import logging
import os
import re
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import find_active_session, hash_password, open_session, revoke_session, verify_password
from .db import SessionLocal, get_db
from .errors import InvalidStatus, MarketClosed, SettlementFailed
from .lineups import InvalidLineup, save_lineup
from .market import get_leaderboard, get_market, list_round_settlements, set_market_status
from .models import Player, User, UserSession
from .roster import PlayerNotFound, apply_stat_line
from .schemas import (
    AuthLoginIn,
    AuthLogoutOut,
    AuthRegisterIn,
    AuthSessionOut,
    LeaderboardEntryOut,
    LineupIn,
    LineupOut,
    MarketStatusIn,
    MarketStatusOut,
    MarketTransitionOut,
    PhysicalStatsIn,
    PhysicalStatsOut,
    PlayerBatchCreateOut,
    PlayerCreateIn,
    PlayerOut,
    RoundSettlementOut,
    SettlementSummaryOut,
    StatLineIn,
    StatUpdateOut,
    UserOut,
)
from .seed import init_db, seed

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Passa pra Ela API")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "ALLOWED_ORIGINS", "https://passa-pra-ela-oficial.vercel.app,http://localhost:3000"
    ).split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

VALID_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LEADERBOARD_DEFAULT_LIMIT = int(os.environ.get("LEADERBOARD_DEFAULT_LIMIT", "10"))
ADMIN_EMAILS = {
    email.strip().lower()
    for email in os.environ.get("ADMIN_EMAILS", "admin@passapraela.com").split(",")
    if email.strip()
}


@dataclass
class AuthContext:
    user: User
    session: UserSession


@app.on_event("startup")
def on_startup():
    init_db()
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


@app.get("/")
def root():
    return {"ok": True, "service": "Passa pra Ela API", "docs": "/docs", "health": "/healthz"}


@app.get("/healthz")
def healthz():
    return {"ok": True}


def normalize_email(raw_email: str | None) -> str:
    email = (raw_email or "").strip().lower()
    if not VALID_EMAIL.match(email):
        raise HTTPException(400, "A valid email is required.")
    return email


def auth_exception(detail: str = "Authentication required.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> str:
    if not authorization:
        raise auth_exception()
    scheme, _, token = authorization.partition(" ")
    if scheme.strip().lower() != "bearer" or not token.strip():
        raise auth_exception("Invalid authorization header.")
    return token.strip()


def get_auth_context(
    bearer_token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> AuthContext:
    session = find_active_session(db, bearer_token)
    if not session:
        raise auth_exception("Session is invalid or expired.")
    user = db.get(User, session.user_id)
    if not user:
        raise auth_exception("User not found.")
    return AuthContext(user=user, session=session)


def is_admin(user: User) -> bool:
    return str(user.email).strip().lower() in ADMIN_EMAILS


def get_admin_context(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not is_admin(auth.user):
        raise HTTPException(status_code=403, detail="Admin access required.")
    return auth


def get_player_or_raise(db: Session, player_id: int, for_update: bool = False) -> Player:
    stmt = select(Player).where(Player.id == player_id)
    if for_update:
        stmt = stmt.with_for_update()
    player = db.execute(stmt).scalar_one_or_none()
    if not player:
        raise HTTPException(404, f"Player {player_id} not found.")
    return player


def user_to_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        team_name=user.team_name,
        total_score=float(user.total_score or 0),
        is_admin=is_admin(user),
    )


def player_to_out(player: Player) -> PlayerOut:
    return PlayerOut(
        id=player.id,
        name=player.name,
        shirt_number=player.shirt_number,
        position=player.position,
        team_name=player.team_name,
        image_url=player.image_url,
        goals=player.goals,
        assists=player.assists,
        shots_on_target=player.shots_on_target,
        tackles=player.tackles,
        saves=player.saves,
        goals_conceded=player.goals_conceded,
        yellow_cards=player.yellow_cards,
        red_cards=player.red_cards,
        round_score=float(player.round_score or 0),
        total_steps=player.total_steps,
        distance_km=float(player.distance_km or 0),
    )


def create_auth_session_out(db: Session, user: User) -> AuthSessionOut:
    token, expires_at = open_session(db, user)
    return AuthSessionOut(
        access_token=token,
        expires_at=expires_at,
        user=user_to_out(user),
    )


@app.post("/auth/register", response_model=AuthSessionOut, status_code=201)
def register(payload: AuthRegisterIn, db: Session = Depends(get_db)):
    email = normalize_email(payload.email)
    team_name = payload.team_name.strip()
    if not team_name:
        raise HTTPException(400, "team_name is required.")

    existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing:
        raise HTTPException(409, "This email is already registered.")

    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        team_name=team_name,
        total_score=0,
        lineup=None,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, "This email is already registered.")

    out = create_auth_session_out(db=db, user=user)
    db.commit()
    return out


@app.post("/auth/login", response_model=AuthSessionOut)
def login(payload: AuthLoginIn, db: Session = Depends(get_db)):
    email = (payload.email or "").strip().lower()
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise auth_exception("Invalid email or password.")

    out = create_auth_session_out(db=db, user=user)
    db.commit()
    return out


@app.post("/auth/logout", response_model=AuthLogoutOut)
def logout(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    revoke_session(auth.session)
    db.commit()
    return AuthLogoutOut(ok=True)


@app.get("/auth/me", response_model=UserOut)
def auth_me(auth: AuthContext = Depends(get_auth_context)):
    return user_to_out(auth.user)


@app.get("/players", response_model=list[PlayerOut])
def list_players(db: Session = Depends(get_db)):
    players = db.execute(select(Player).order_by(Player.id.asc())).scalars().all()
    return [player_to_out(player) for player in players]


@app.post("/players", response_model=PlayerBatchCreateOut, status_code=201)
def create_players(
    payload: list[PlayerCreateIn],
    _admin: AuthContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
):
    if not payload:
        raise HTTPException(400, "At least one player is required.")

    players = [
        Player(
            name=item.name.strip(),
            shirt_number=item.shirt_number,
            position=(item.position or "").strip() or None,
            team_name=(item.team_name or "").strip() or None,
            image_url=item.image_url,
        )
        for item in payload
    ]
    db.add_all(players)
    db.flush()
    player_ids = [int(player.id) for player in players]
    db.commit()
    return PlayerBatchCreateOut(
        created=len(player_ids),
        player_ids=player_ids,
        message=f"{len(player_ids)} player(s) registered.",
    )


@app.get("/players/{player_id}", response_model=PlayerOut)
def get_player(player_id: int, db: Session = Depends(get_db)):
    return player_to_out(get_player_or_raise(db, player_id))


@app.put("/players/{player_id}/stats", response_model=StatUpdateOut)
def update_player_stats(
    player_id: int,
    stats: StatLineIn,
    _admin: AuthContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
):
    try:
        score = apply_stat_line(db, player_id, stats.model_dump())
    except PlayerNotFound as exc:
        raise HTTPException(404, str(exc))
    db.commit()
    return StatUpdateOut(player_id=player_id, round_score=float(score), message="Round score updated.")


@app.post("/players/{player_id}/physical", response_model=PhysicalStatsOut)
def update_physical_stats(
    player_id: int,
    payload: PhysicalStatsIn,
    _admin: AuthContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
):
    player = get_player_or_raise(db, player_id, for_update=True)
    player.total_steps = payload.steps
    player.distance_km = round(payload.distance_meters / 1000, 2)
    out = PhysicalStatsOut(
        player_id=player_id,
        name=player.name,
        total_steps=payload.steps,
        distance_km=float(player.distance_km),
    )
    db.commit()
    return out


@app.get("/players/{player_id}/physical", response_model=PhysicalStatsOut)
def get_physical_stats(player_id: int, db: Session = Depends(get_db)):
    player = get_player_or_raise(db, player_id)
    return PhysicalStatsOut(
        player_id=player.id,
        name=player.name,
        total_steps=player.total_steps,
        distance_km=float(player.distance_km or 0),
    )


@app.post("/lineup", response_model=LineupOut)
def post_lineup(
    payload: LineupIn,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    try:
        lineup = save_lineup(db, user_id=auth.user.id, raw=payload.lineup)
    except MarketClosed as exc:
        db.rollback()
        raise HTTPException(409, str(exc))
    except InvalidLineup as exc:
        db.rollback()
        raise HTTPException(400, str(exc))
    db.commit()
    return LineupOut(lineup=lineup)


@app.get("/lineup/me", response_model=LineupOut)
def get_my_lineup(auth: AuthContext = Depends(get_auth_context)):
    return LineupOut(lineup=auth.user.lineup)


@app.get("/market/status", response_model=MarketStatusOut)
def market_status(db: Session = Depends(get_db)):
    market = get_market(db)
    return MarketStatusOut(status=market.status, version=market.version, round_number=market.round_number)


@app.post("/market/status", response_model=MarketTransitionOut)
def change_market_status(
    payload: MarketStatusIn,
    _admin: AuthContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
):
    try:
        transition = set_market_status(db, payload.status)
    except InvalidStatus as exc:
        raise HTTPException(400, str(exc))
    except SettlementFailed as exc:
        raise HTTPException(500, str(exc))

    settlement = None
    if transition.settlement is not None:
        settlement = SettlementSummaryOut(
            users_scored=transition.settlement.users_scored,
            users_skipped=transition.settlement.users_skipped,
            points_awarded=float(transition.settlement.points_awarded),
            players_reset=transition.settlement.players_reset,
            lineups_cleared=transition.settlement.lineups_cleared,
        )
    return MarketTransitionOut(
        status=transition.current.value,
        previous_status=transition.previous.value,
        message=transition.message,
        version=transition.version,
        round_number=transition.round_number,
        settlement=settlement,
    )


@app.get("/market/settlements", response_model=list[RoundSettlementOut])
def market_settlements(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return [
        RoundSettlementOut(
            round_number=row.round_number,
            users_scored=row.users_scored,
            users_skipped=row.users_skipped,
            points_awarded=float(row.points_awarded or 0),
            players_reset=row.players_reset,
            settled_at=row.settled_at,
        )
        for row in list_round_settlements(db, limit)
    ]


@app.get("/ranking", response_model=list[LeaderboardEntryOut])
def ranking(
    limit: int = Query(default=LEADERBOARD_DEFAULT_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return [
        LeaderboardEntryOut(position=index, team_name=team_name, total_score=total_score)
        for index, (team_name, total_score) in enumerate(get_leaderboard(db, limit), start=1)
    ]
