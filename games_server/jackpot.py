"""Progressive jackpot pools.

Each jackpot-eligible game owns one pool guarded by its own lock, so a
contribution and a claim on the same pool never interleave, while pools of
different games never block each other.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class JackpotPool:
    game_type: str
    amount: int
    floor: int
    last_winner: Optional[str] = None
    last_win_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "type": self.game_type,
            "amount": self.amount,
            "lastWinner": self.last_winner,
            "lastWinDate": self.last_win_at.isoformat() if self.last_win_at else None,
        }


class JackpotAccumulator:
    def __init__(
        self,
        floors: Dict[str, int],
        on_change: Callable[[JackpotPool], None] | None = None,
    ):
        self._pools: Dict[str, JackpotPool] = {
            game_type: JackpotPool(game_type=game_type, amount=floor, floor=floor)
            for game_type, floor in floors.items()
        }
        self._locks: Dict[str, threading.Lock] = {
            game_type: threading.Lock() for game_type in floors
        }
        self.on_change = on_change

    def _pool(self, game_type: str) -> JackpotPool:
        pool = self._pools.get(game_type)
        if pool is None:
            raise ValidationError(f"No jackpot for game type: {game_type}")
        return pool

    def is_eligible(self, game_type: str) -> bool:
        return game_type in self._pools

    def restore(self, snapshot: JackpotPool) -> None:
        """Load a persisted pool state, keeping the configured floor."""
        pool = self._pool(snapshot.game_type)
        with self._locks[snapshot.game_type]:
            pool.amount = max(snapshot.amount, pool.floor)
            pool.last_winner = snapshot.last_winner
            pool.last_win_at = snapshot.last_win_at

    def contribute(self, game_type: str, amount: int) -> int:
        if amount < 0:
            raise ValidationError("Jackpot contribution must not be negative")
        pool = self._pool(game_type)
        # The change hook runs under the pool lock so snapshots reach it in order.
        with self._locks[game_type]:
            pool.amount += amount
            current = pool.amount
            self._notify(replace(pool))
        return current

    def claim(self, game_type: str, winner: str | None = None) -> int:
        """Pay out the whole pool and reset it to its floor."""
        pool = self._pool(game_type)
        with self._locks[game_type]:
            won = pool.amount
            pool.amount = pool.floor
            pool.last_winner = None if winner is None else str(winner)
            pool.last_win_at = datetime.utcnow()
            self._notify(replace(pool))
        logger.info("Jackpot %s claimed by %s: %s", game_type, winner, won)
        return won

    def amount(self, game_type: str) -> int:
        pool = self._pool(game_type)
        with self._locks[game_type]:
            return pool.amount

    def get(self, game_type: str) -> JackpotPool:
        pool = self._pool(game_type)
        with self._locks[game_type]:
            return replace(pool)

    def pools(self) -> List[JackpotPool]:
        return [self.get(game_type) for game_type in self._pools]

    def _notify(self, snapshot: JackpotPool) -> None:
        # Caller holds the pool lock.
        if self.on_change is not None:
            self.on_change(snapshot)
