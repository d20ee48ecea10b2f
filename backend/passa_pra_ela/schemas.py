from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UserOut(BaseModel):
    id: int
    email: str
    team_name: str
    total_score: float
    is_admin: bool = False


class AuthRegisterIn(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=8, max_length=128)
    team_name: str = Field(min_length=1, max_length=64)


class AuthLoginIn(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=128)


class AuthSessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut


class AuthLogoutOut(BaseModel):
    ok: bool = True


class PlayerCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    shirt_number: int | None = Field(default=None, ge=0, le=999)
    position: str | None = Field(default=None, max_length=32)
    team_name: str | None = Field(default=None, max_length=64)
    image_url: str | None = Field(default=None, max_length=512)


class PlayerBatchCreateOut(BaseModel):
    created: int
    player_ids: list[int]
    message: str


class StatLineIn(BaseModel):
    goals: int = Field(default=0, ge=0)
    assists: int = Field(default=0, ge=0)
    shots_on_target: int = Field(default=0, ge=0)
    tackles: int = Field(default=0, ge=0)
    saves: int = Field(default=0, ge=0)
    goals_conceded: int = Field(default=0, ge=0)
    yellow_cards: int = Field(default=0, ge=0)
    red_cards: int = Field(default=0, ge=0)


class StatUpdateOut(BaseModel):
    player_id: int
    round_score: float
    message: str


class PlayerOut(BaseModel):
    id: int
    name: str
    shirt_number: int | None = None
    position: str | None = None
    team_name: str | None = None
    image_url: str | None = None
    goals: int
    assists: int
    shots_on_target: int
    tackles: int
    saves: int
    goals_conceded: int
    yellow_cards: int
    red_cards: int
    round_score: float
    total_steps: int
    distance_km: float


class PhysicalStatsIn(BaseModel):
    steps: int = Field(ge=0)
    distance_meters: float = Field(ge=0)


class PhysicalStatsOut(BaseModel):
    player_id: int
    name: str
    total_steps: int
    distance_km: float


class LineupIn(BaseModel):
    # slot name -> player card ({"id": ...}), bare player id, or null
    lineup: dict[str, Any]


class LineupOut(BaseModel):
    lineup: dict[str, int | None] | None = None


class MarketStatusIn(BaseModel):
    status: str


class MarketStatusOut(BaseModel):
    status: str
    version: int
    round_number: int


class SettlementSummaryOut(BaseModel):
    users_scored: int
    users_skipped: int
    points_awarded: float
    players_reset: int
    lineups_cleared: int


class MarketTransitionOut(BaseModel):
    status: str
    previous_status: str
    message: str
    version: int
    round_number: int
    settlement: SettlementSummaryOut | None = None


class RoundSettlementOut(BaseModel):
    round_number: int
    users_scored: int
    users_skipped: int
    points_awarded: float
    players_reset: int
    settled_at: datetime


class LeaderboardEntryOut(BaseModel):
    position: int
    team_name: str
    total_score: float
