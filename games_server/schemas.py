from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GameSummary(BaseModel):
    type: str
    name: str
    minBet: int
    maxBet: int


class GameListResponse(BaseModel):
    games: List[GameSummary]


class JackpotItem(BaseModel):
    type: str
    amount: int
    lastWinner: Optional[str] = None
    lastWinDate: Optional[str] = None


class JackpotListResponse(BaseModel):
    jackpots: List[JackpotItem]


class StartGameRequest(CamelModel):
    bet_amount: int = Field(alias="betAmount")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class StartGameResponse(BaseModel):
    sessionId: str
    gameType: str
    betAmount: int
    state: Dict[str, Any]


class GameActionRequest(CamelModel):
    session_id: str = Field(alias="sessionId")
    action: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class CashoutRequest(CamelModel):
    session_id: str = Field(alias="sessionId")


class GameActionResponse(BaseModel):
    sessionId: str
    gameType: str
    betAmount: int
    status: Literal["active", "completed"]
    completed: bool
    cashoutEligible: bool
    winAmount: int
    expEarned: int = 0
    state: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    outcome: Optional[Literal["win", "lose"]] = None
    settlementError: Optional[str] = None


class CashoutResponse(GameActionResponse):
    settlementAmount: int


class HistoryItem(BaseModel):
    session_id: str
    game_type: str
    room_id: Optional[str] = None
    bet_amount: int
    result: str
    payout_multiplier: float
    win_amount: int
    detail: Optional[dict] = None
    created_at: datetime
    completed_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    totalItems: int
    totalPages: int


class HistoryResponse(BaseModel):
    data: List[HistoryItem]
    pagination: Pagination


class GameStats(BaseModel):
    totalPlayed: int
    totalWon: int
    totalLost: int
    totalWagered: int
    totalWinnings: int
    biggestWin: int
    favoriteGame: Optional[str] = None


class StatsResponse(BaseModel):
    stats: GameStats


class UserBase(BaseModel):
    name: str


class UserCreate(UserBase):
    pin: str
    initial_balance: int = Field(default=0, ge=0)


class UserItem(UserBase):
    id: int
    balance: int

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    name: str
    pin: str


class LoginResponse(BaseModel):
    token: str
    user: UserItem


class AdjustBalanceRequest(BaseModel):
    delta: int
    reason: Optional[str] = None
