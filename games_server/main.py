import hashlib
import hmac
import json
import logging
import math
import random
import time
from datetime import datetime, timedelta
from typing import Callable, List

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import catalog, config, models, schemas
from .database import Base, SessionLocal, engine
from .engines import build_engines, jackpot_floors
from .errors import GameError
from .jackpot import JackpotAccumulator, JackpotPool
from .sessions import ActionOutcome, GameSession, SessionManager
from .settlement import LedgerSettlementGateway, apply_balance_change

config.configure_logging()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/games"


class GameRuntime:
    """Everything the game endpoints share for the lifetime of the process."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        rng: random.Random | None = None,
    ):
        self.session_factory = session_factory
        self.games = catalog.GAME_CATALOG
        self.jackpot = JackpotAccumulator(jackpot_floors(self.games))
        self.engines = build_engines(self.games, self.jackpot, rng)
        self.manager = SessionManager(
            self.games, self.engines, gateway=LedgerSettlementGateway(session_factory)
        )

    def load_jackpots(self) -> None:
        db = self.session_factory()
        try:
            for row in db.query(models.JackpotPoolRow).all():
                if self.jackpot.is_eligible(row.game_type):
                    self.jackpot.restore(
                        JackpotPool(
                            game_type=row.game_type,
                            amount=row.amount,
                            floor=row.floor,
                            last_winner=row.last_winner,
                            last_win_at=row.last_win_at,
                        )
                    )
        finally:
            db.close()
        self.jackpot.on_change = self.save_jackpot

    def save_jackpot(self, pool: JackpotPool) -> None:
        db = self.session_factory()
        try:
            db.merge(
                models.JackpotPoolRow(
                    game_type=pool.game_type,
                    amount=pool.amount,
                    floor=pool.floor,
                    last_winner=pool.last_winner,
                    last_win_at=pool.last_win_at,
                    updated_at=datetime.utcnow(),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist jackpot pool %s", pool.game_type)
        finally:
            db.close()


app = FastAPI(
    title="Aura Games",
    description="Wagering mini-games for voice chat rooms.",
)


def configure(target: FastAPI, session_factory=SessionLocal, db_engine=engine, rng=None) -> GameRuntime:
    target.state.db_engine = db_engine
    target.state.runtime = GameRuntime(session_factory, rng)
    return target.state.runtime


configure(app)


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=app.state.db_engine)
    app.state.runtime.load_jackpots()


@app.exception_handler(GameError)
def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.message, "code": exc.code}
    )


def get_runtime(request: Request) -> GameRuntime:
    return request.app.state.runtime


def get_db(runtime: GameRuntime = Depends(get_runtime)):
    db = runtime.session_factory()
    try:
        yield db
    finally:
        db.close()


def log_game_event(
    db: Session,
    user: models.User | None,
    game_type: str | None,
    action: str,
    detail: dict | str,
    session_id: str | None = None,
    commit: bool = True,
) -> models.GameLog:
    detail_str = (
        json.dumps(detail, ensure_ascii=False, default=str)
        if isinstance(detail, (dict, list))
        else str(detail)
    )
    log = models.GameLog(
        user_id=user.id if user else None,
        user_name=user.name if user else None,
        game_type=game_type,
        session_id=session_id,
        action=action,
        detail=detail_str,
    )
    db.add(log)
    if commit:
        db.commit()
    return log


def sign_token(user_id: int, expires_sec: int = config.TOKEN_TTL_SECONDS) -> str:
    ts = int(time.time())
    payload = f"{user_id}:{ts}:{ts+expires_sec}"
    sig = hmac.new(config.SECRET_KEY.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return f"{payload}:{sig}"


def verify_token(token: str) -> int:
    parts = token.split(":")
    if len(parts) != 4:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id, issued, expires, sig = parts
    try:
        user_id_int = int(user_id)
        exp_int = int(expires)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if exp_int < int(time.time()):
        raise HTTPException(status_code=401, detail="Token expired")
    raw = ":".join(parts[:3])
    expected = hmac.new(config.SECRET_KEY.encode(), raw.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig):
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id_int


def get_current_user(
    authorization: str | None = Header(None), db: Session = Depends(get_db)
):
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization.split(" ", 1)[1]
    user_id = verify_token(token)
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user


def require_admin(admin_secret: str | None = Header(None)):
    if admin_secret != config.ADMIN_SECRET:
        raise HTTPException(status_code=401, detail="Admin unauthorized")


def record_result(
    db: Session, user: models.User, session: GameSession, outcome: ActionOutcome
) -> None:
    result = outcome.outcome
    db.add(
        models.GameResult(
            user_id=user.id,
            session_id=session.id,
            game_type=session.game_type,
            room_id=session.room_id,
            bet_amount=session.bet_amount,
            result=result.result,
            payout_multiplier=float(result.multiplier),
            win_amount=result.win_amount,
            detail=json.dumps(result.state, ensure_ascii=False, default=str),
            created_at=session.created_at,
            completed_at=session.completed_at or datetime.utcnow(),
        )
    )
    log_game_event(
        db,
        user,
        session.game_type,
        "result",
        {
            "bet_amount": session.bet_amount,
            "result": result.result,
            "payout_multiplier": result.multiplier,
            "win_amount": result.win_amount,
            "settlement_error": outcome.settlement_error,
        },
        session_id=session.id,
        commit=False,
    )
    db.commit()


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"ok": True}


@app.post("/api/login", response_model=schemas.LoginResponse)
def api_login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = (
        db.query(models.User)
        .filter(models.User.name == payload.name, models.User.pin == payload.pin)
        .first()
    )
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = sign_token(user.id)
    return schemas.LoginResponse(token=token, user=schemas.UserItem.model_validate(user))


@app.get("/api/me", response_model=schemas.UserItem)
def api_me(current_user: models.User = Depends(get_current_user)):
    return current_user


@app.post("/api/admin/users", response_model=schemas.UserItem)
def admin_create_user(
    payload: schemas.UserCreate,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    user = models.User(name=payload.name, pin=payload.pin, balance=0)
    db.add(user)
    db.flush()
    if payload.initial_balance:
        apply_balance_change(db, user, payload.initial_balance, "initial", result_type="charge")
    db.commit()
    db.refresh(user)
    return user


@app.post("/api/admin/users/{user_id}/adjust_balance", response_model=schemas.UserItem)
def admin_adjust_balance(
    user_id: int,
    payload: schemas.AdjustBalanceRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.balance + payload.delta < 0:
        raise HTTPException(status_code=400, detail="Balance cannot go negative")
    apply_balance_change(
        db,
        user,
        payload.delta,
        description=payload.reason or "admin adjust",
        result_type="charge" if payload.delta >= 0 else "deduct",
    )
    db.commit()
    db.refresh(user)
    return user


@app.get(API_PREFIX, response_model=schemas.GameListResponse)
def list_games(runtime: GameRuntime = Depends(get_runtime)):
    return {"games": catalog.list_games(runtime.games)}


@app.get(f"{API_PREFIX}/stats", response_model=schemas.StatsResponse)
def game_stats(
    current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)
):
    base = db.query(models.GameResult).filter(models.GameResult.user_id == current_user.id)
    total_played = base.count()
    total_won = base.filter(models.GameResult.result == "win").count()
    totals = (
        db.query(
            func.coalesce(func.sum(models.GameResult.bet_amount), 0),
            func.coalesce(func.sum(models.GameResult.win_amount), 0),
            func.coalesce(func.max(models.GameResult.win_amount), 0),
        )
        .filter(models.GameResult.user_id == current_user.id)
        .one()
    )
    favorite = (
        db.query(models.GameResult.game_type, func.count(models.GameResult.id).label("played"))
        .filter(models.GameResult.user_id == current_user.id)
        .group_by(models.GameResult.game_type)
        .order_by(func.count(models.GameResult.id).desc(), models.GameResult.game_type.asc())
        .first()
    )
    return {
        "stats": {
            "totalPlayed": total_played,
            "totalWon": total_won,
            "totalLost": total_played - total_won,
            "totalWagered": int(totals[0]),
            "totalWinnings": int(totals[1]),
            "biggestWin": int(totals[2]),
            "favoriteGame": favorite[0] if favorite else None,
        }
    }


@app.get(f"{API_PREFIX}/jackpots", response_model=schemas.JackpotListResponse)
def list_jackpots(runtime: GameRuntime = Depends(get_runtime)):
    return {"jackpots": [pool.to_dict() for pool in runtime.jackpot.pools()]}


@app.get(f"{API_PREFIX}/jackpots/{{game_type}}", response_model=schemas.JackpotItem)
def get_jackpot(game_type: str, runtime: GameRuntime = Depends(get_runtime)):
    catalog.get_config(game_type, runtime.games)
    if not runtime.jackpot.is_eligible(game_type):
        return {"type": game_type, "amount": 0}
    return runtime.jackpot.get(game_type).to_dict()


@app.post(f"{API_PREFIX}/{{game_type}}/start", response_model=schemas.StartGameResponse)
def start_game(
    game_type: str,
    payload: schemas.StartGameRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: GameRuntime = Depends(get_runtime),
):
    runtime.manager.prune_completed(timedelta(seconds=config.SESSION_RETENTION_SECONDS))
    session = runtime.manager.start(
        current_user.id, game_type, payload.bet_amount, room_id=payload.room_id
    )
    state = runtime.manager.visible_state(session)
    log_game_event(
        db,
        current_user,
        game_type,
        "start",
        {"bet_amount": payload.bet_amount, "room_id": payload.room_id},
        session_id=session.id,
    )
    return {
        "sessionId": session.id,
        "gameType": game_type,
        "betAmount": session.bet_amount,
        "state": state,
    }


@app.post(f"{API_PREFIX}/{{game_type}}/action", response_model=schemas.GameActionResponse)
def game_action(
    game_type: str,
    payload: schemas.GameActionRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: GameRuntime = Depends(get_runtime),
):
    outcome = runtime.manager.action(
        current_user.id,
        payload.session_id,
        payload.action,
        payload.data,
        game_type=game_type,
    )
    log_game_event(
        db,
        current_user,
        game_type,
        "action",
        {"action": payload.action, "data": payload.data, "completed": outcome.completed},
        session_id=payload.session_id,
    )
    if outcome.completed:
        record_result(db, current_user, outcome.session, outcome)
    return outcome.to_dict()


@app.post(f"{API_PREFIX}/{{game_type}}/cashout", response_model=schemas.CashoutResponse)
def game_cashout(
    game_type: str,
    payload: schemas.CashoutRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: GameRuntime = Depends(get_runtime),
):
    outcome = runtime.manager.cashout(current_user.id, payload.session_id, game_type=game_type)
    log_game_event(
        db,
        current_user,
        game_type,
        "cashout",
        {"win_amount": outcome.outcome.win_amount},
        session_id=payload.session_id,
        commit=False,
    )
    record_result(db, current_user, outcome.session, outcome)
    body = outcome.to_dict()
    body["settlementAmount"] = outcome.outcome.win_amount
    return body


@app.get(f"{API_PREFIX}/{{game_type}}/history", response_model=schemas.HistoryResponse)
def game_history(
    game_type: str,
    page: int = 1,
    limit: int = 20,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: GameRuntime = Depends(get_runtime),
):
    catalog.get_config(game_type, runtime.games)
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    query = db.query(models.GameResult).filter(
        models.GameResult.user_id == current_user.id,
        models.GameResult.game_type == game_type,
    )
    total = query.count()
    rows: List[models.GameResult] = (
        query.order_by(models.GameResult.completed_at.desc(), models.GameResult.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [
            {
                "session_id": row.session_id,
                "game_type": row.game_type,
                "room_id": row.room_id,
                "bet_amount": row.bet_amount,
                "result": row.result,
                "payout_multiplier": row.payout_multiplier,
                "win_amount": row.win_amount,
                "detail": _parse_detail(row.detail),
                "created_at": row.created_at,
                "completed_at": row.completed_at,
            }
            for row in rows
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "totalItems": total,
            "totalPages": math.ceil(total / limit),
        },
    }


def _parse_detail(detail_raw):
    if not detail_raw:
        return None
    try:
        parsed = json.loads(detail_raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
