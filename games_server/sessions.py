"""Game session lifecycle.

A session is created by ``start``, advanced by ``action`` and closed either by
a terminal action or by ``cashout``.  The session table is shared between
request threads; each session carries its own lock so that two requests on
the same session are serialized while different sessions run independently.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from . import catalog
from .catalog import GameConfig
from .engines import GameEngine, Outcome
from .errors import (
    ForbiddenError,
    InsufficientFundsError,
    NotCashoutEligibleError,
    NotFoundError,
    SessionAlreadyCompletedError,
    ValidationError,
)
from .settlement import SettlementGateway

logger = logging.getLogger(__name__)

ACTIVE = "active"
COMPLETED = "completed"


@dataclass
class GameSession:
    id: str
    user_id: Any
    game_type: str
    bet_amount: int
    state: Any
    room_id: Optional[str] = None
    status: str = ACTIVE
    created_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    result: Optional[dict] = None
    win_amount: Optional[int] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE


@dataclass
class ActionOutcome:
    session_id: str
    game_type: str
    bet_amount: int
    status: str
    outcome: Outcome
    settlement_error: Optional[str] = None
    session: Optional[GameSession] = field(default=None, repr=False, compare=False)

    @property
    def completed(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> dict:
        body = {
            "sessionId": self.session_id,
            "gameType": self.game_type,
            "betAmount": self.bet_amount,
            "status": self.status,
            "completed": self.completed,
            "cashoutEligible": self.outcome.cashout_eligible,
            "winAmount": self.outcome.win_amount,
            "expEarned": self.outcome.exp_earned,
        }
        if self.completed:
            body["result"] = self.outcome.state
            body["outcome"] = self.outcome.result
        else:
            body["state"] = self.outcome.state
        if self.settlement_error:
            body["settlementError"] = self.settlement_error
        return body


class SessionManager:
    def __init__(
        self,
        games: Dict[str, GameConfig],
        engines: Dict[str, GameEngine],
        gateway: SettlementGateway | None = None,
    ):
        self.games = games
        self.engines = engines
        self.gateway = gateway
        self._sessions: Dict[str, GameSession] = {}
        self._table_lock = threading.Lock()

    def start(
        self,
        user_id,
        game_type: str,
        bet_amount: int,
        room_id: str | None = None,
    ) -> GameSession:
        game = catalog.get_config(game_type, self.games)
        if isinstance(bet_amount, bool) or not isinstance(bet_amount, int):
            raise ValidationError("Bet amount must be an integer")
        if bet_amount < game.min_bet or bet_amount > game.max_bet:
            raise ValidationError(
                f"Bet amount must be between {game.min_bet} and {game.max_bet}"
            )
        engine = self.engines[game_type]
        session_id = uuid.uuid4().hex
        state = engine.initialize()

        if self.gateway is not None:
            if not self.gateway.debit(user_id, bet_amount, game_type, session_id):
                raise InsufficientFundsError("Insufficient balance")

        session = GameSession(
            id=session_id,
            user_id=user_id,
            game_type=game_type,
            bet_amount=bet_amount,
            state=state,
            room_id=room_id,
        )
        with self._table_lock:
            self._sessions[session_id] = session
        logger.info(
            "Session %s started: user=%s game=%s bet=%s", session_id, user_id, game_type, bet_amount
        )
        return session

    def get(self, session_id: str) -> GameSession:
        with self._table_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def visible_state(self, session: GameSession) -> dict:
        return self.engines[session.game_type].visible_state(session.state)

    def _owned_session(self, user_id, session_id: str, game_type: str | None) -> GameSession:
        session = self.get(session_id)
        if session.user_id != user_id:
            raise ForbiddenError("Session belongs to another user")
        if game_type is not None and session.game_type != game_type:
            raise ValidationError(f"Session {session_id} is not a {game_type} session")
        return session

    def action(
        self,
        user_id,
        session_id: str,
        action: str | None = None,
        data: dict | None = None,
        game_type: str | None = None,
    ) -> ActionOutcome:
        session = self._owned_session(user_id, session_id, game_type)
        engine = self.engines[session.game_type]
        if data is not None and not isinstance(data, dict):
            raise ValidationError("Action data must be an object")
        with session.lock:
            if not session.is_active:
                raise SessionAlreadyCompletedError("Session already completed")
            engine.check_action(action)
            outcome = engine.act(session.state, session.bet_amount, data or {}, user_id)
            if outcome.completed:
                self._complete(session, outcome)
        return self._finish(session, outcome)

    def cashout(self, user_id, session_id: str, game_type: str | None = None) -> ActionOutcome:
        session = self._owned_session(user_id, session_id, game_type)
        engine = self.engines[session.game_type]
        with session.lock:
            if not session.is_active:
                raise SessionAlreadyCompletedError("Session already completed")
            if not engine.cashout_eligible(session.state):
                raise NotCashoutEligibleError("Session is not eligible for cashout")
            outcome = engine.settle(session.state, session.bet_amount)
            self._complete(session, outcome)
        return self._finish(session, outcome)

    def _complete(self, session: GameSession, outcome: Outcome) -> None:
        # Caller holds session.lock.
        session.status = COMPLETED
        session.completed_at = datetime.utcnow()
        session.result = outcome.state
        session.win_amount = outcome.win_amount
        logger.info(
            "Session %s completed: result=%s win=%s",
            session.id,
            outcome.result,
            outcome.win_amount,
        )

    def _finish(self, session: GameSession, outcome: Outcome) -> ActionOutcome:
        settlement_error = None
        if outcome.completed and outcome.win_amount > 0 and self.gateway is not None:
            try:
                self.gateway.credit(
                    session.user_id, outcome.win_amount, session.game_type, session.id
                )
            except Exception as exc:
                # The game result stands; reconciliation happens out-of-band.
                logger.exception("Credit failed for session %s", session.id)
                settlement_error = str(exc) or type(exc).__name__
        return ActionOutcome(
            session_id=session.id,
            game_type=session.game_type,
            bet_amount=session.bet_amount,
            status=COMPLETED if outcome.completed else ACTIVE,
            outcome=outcome,
            settlement_error=settlement_error,
            session=session,
        )

    def active_sessions(self, user_id=None) -> List[GameSession]:
        with self._table_lock:
            sessions = list(self._sessions.values())
        return [
            s for s in sessions if s.is_active and (user_id is None or s.user_id == user_id)
        ]

    def prune_completed(self, older_than: timedelta) -> int:
        """Drop completed sessions finished before ``now - older_than``.

        Active sessions are never removed.
        """
        cutoff = datetime.utcnow() - older_than
        with self._table_lock:
            stale = [
                sid
                for sid, s in self._sessions.items()
                if s.status == COMPLETED and s.completed_at and s.completed_at < cutoff
            ]
            for sid in stale:
                del self._sessions[sid]
        if stale:
            logger.debug("Pruned %d completed sessions", len(stale))
        return len(stale)
