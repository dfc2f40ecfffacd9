"""Outcome engines, one per game type.

Every engine follows the same contract: ``initialize`` builds the per-game
state for a fresh session, ``act`` applies one player action to that state and
``settle`` computes the cashout of a push-your-luck session.  Engines never
touch the session table or the wallet; the session manager owns both.
"""

import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import catalog
from .catalog import GameConfig
from .errors import (
    CellAlreadyRevealedError,
    InternalError,
    NotCashoutEligibleError,
    ValidationError,
)
from .jackpot import JackpotAccumulator


def weighted_draw(entries: Sequence[Tuple[Any, float]], draw: float, default: Any) -> Any:
    """Pick the first entry whose cumulative weight reaches ``draw``.

    ``draw`` is expected in [0, 100).  When the weights sum to less than 100
    and the draw lands in the remainder, ``default`` is returned.
    """
    cumulative = 0.0
    for item, weight in entries:
        cumulative += weight
        if cumulative >= draw:
            return item
    return default


def payout(bet_amount: int, multiplier: float) -> int:
    # Small epsilon so 1000 * 7.6 does not floor to 7599.
    return int(math.floor(bet_amount * multiplier + 1e-9))


def _field(data: dict, *names: str) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return None


def _as_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{label} must be an integer")
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{label} must be an integer")


@dataclass
class Outcome:
    completed: bool
    state: dict
    win_amount: int = 0
    multiplier: float = 0.0
    result: str = "pending"  # win | lose | pending
    cashout_eligible: bool = False
    exp_earned: Optional[int] = None

    def __post_init__(self):
        if self.exp_earned is None:
            if not self.completed:
                self.exp_earned = 0
            elif self.result == "win":
                self.exp_earned = catalog.EXP_WIN
            else:
                self.exp_earned = catalog.EXP_LOSS


@dataclass
class RoundState:
    """State of a single-action game before its only action."""

    rounds_played: int = 0


@dataclass
class CardFlipState:
    deck: List[dict]
    current: dict
    streak: int = 0
    multiplier: float = 1.0
    history: List[dict] = field(default_factory=list)


@dataclass
class TreasureState:
    grid: List[str]
    revealed: Dict[int, str] = field(default_factory=dict)
    pot: int = 0


class GameEngine(ABC):
    game_type: str = "base"
    actions: Tuple[str, ...] = ("play",)
    push_your_luck: bool = False

    def __init__(self, game_config: GameConfig, rng: random.Random | None = None):
        if game_config.game_type != self.game_type:
            raise InternalError(
                f"{type(self).__name__} cannot run {game_config.game_type}"
            )
        self.config = game_config
        self.rng = rng or random.SystemRandom()

    def initialize(self) -> Any:
        return RoundState()

    def visible_state(self, state: Any) -> dict:
        return {}

    def check_action(self, action: str | None) -> None:
        if action and action != "play" and action not in self.actions:
            raise ValidationError(f"Unknown action for {self.game_type}: {action}")

    @abstractmethod
    def act(self, state: Any, bet_amount: int, data: dict, user_id: str) -> Outcome:
        ...

    def cashout_eligible(self, state: Any) -> bool:
        return False

    def settle(self, state: Any, bet_amount: int) -> Outcome:
        raise NotCashoutEligibleError(f"{self.config.name} does not support cashout")


class LuckySpinEngine(GameEngine):
    game_type = catalog.LUCKY_SPIN
    actions = ("spin",)

    def act(self, state: RoundState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        segments = self.config.table["segments"]
        default = next(s for s in segments if s.label == self.config.table["default"])
        draw = self.rng.random() * 100
        segment = weighted_draw([(s, s.weight) for s in segments], draw, default)
        state.rounds_played += 1
        win_amount = payout(bet_amount, segment.multiplier)
        return Outcome(
            completed=True,
            state={"segment": segment.label, "multiplier": segment.multiplier},
            win_amount=win_amount,
            multiplier=segment.multiplier,
            result="win" if win_amount > 0 else "lose",
            exp_earned=catalog.EXP_WHEEL_JACKPOT if segment.label == "jackpot" else None,
        )


class DiceEngine(GameEngine):
    game_type = catalog.DICE
    actions = ("roll",)

    def act(self, state: RoundState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        bet_types = self.config.table["bet_types"]
        bet_type = _field(data, "betType", "bet_type")
        if bet_type not in bet_types:
            raise ValidationError(f"Invalid bet type: {bet_type}")
        pair_value = None
        if bet_type == "specific_pair":
            pair_value = _as_int(_field(data, "value", "pairValue", "pair_value"), "Pair value")
            if not 1 <= pair_value <= 6:
                raise ValidationError("Pair value must be between 1 and 6")

        die1 = self.rng.randint(1, 6)
        die2 = self.rng.randint(1, 6)
        total = die1 + die2
        won = self.is_win(bet_type, die1, die2, pair_value)
        multiplier = bet_types[bet_type] if won else 0.0
        state.rounds_played += 1
        return Outcome(
            completed=True,
            state={
                "dice": [die1, die2],
                "sum": total,
                "betType": bet_type,
                "won": won,
                "multiplier": multiplier,
                "winAmount": payout(bet_amount, multiplier),
            },
            win_amount=payout(bet_amount, multiplier),
            multiplier=multiplier,
            result="win" if won else "lose",
        )

    @staticmethod
    def is_win(bet_type: str, die1: int, die2: int, pair_value: int | None = None) -> bool:
        total = die1 + die2
        if bet_type == "high":
            return total >= 8
        if bet_type == "low":
            return total <= 6
        if bet_type == "seven":
            return total == 7
        if bet_type == "pair":
            return die1 == die2
        if bet_type == "specific_pair":
            return die1 == die2 == pair_value
        return False


class CardFlipEngine(GameEngine):
    """Higher/lower with a compounding streak multiplier.  Ties always lose."""

    game_type = catalog.CARD_FLIP
    actions = ("guess", "flip")
    push_your_luck = True

    def new_deck(self) -> List[dict]:
        ranks = self.config.table["ranks"]
        suits = self.config.table["suits"]
        deck = [{"rank": rank, "suit": suit} for suit in range(suits) for rank in range(1, ranks + 1)]
        self.rng.shuffle(deck)
        return deck

    def initialize(self) -> CardFlipState:
        deck = self.new_deck()
        current = deck.pop()
        return CardFlipState(deck=deck, current=current)

    def ladder_step(self, streak: int) -> float:
        ladder = self.config.table["ladder"]
        return ladder[min(streak - 1, len(ladder) - 1)]

    def visible_state(self, state: CardFlipState) -> dict:
        return {
            "currentCard": dict(state.current),
            "streak": state.streak,
            "multiplier": round(state.multiplier, 6),
            "history": list(state.history),
            "cardsLeft": len(state.deck),
        }

    def act(self, state: CardFlipState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        guess = _field(data, "guess", "direction")
        if guess not in ("higher", "lower"):
            raise ValidationError("Guess must be 'higher' or 'lower'")
        if not state.deck:
            state.deck = self.new_deck()
        card = state.deck.pop()
        previous = state.current
        if guess == "higher":
            won = card["rank"] > previous["rank"]
        else:
            won = card["rank"] < previous["rank"]
        state.history.append({"from": previous, "to": card, "guess": guess, "won": won})
        state.current = card

        if not won:
            visible = self.visible_state(state)
            visible.update({"drawnCard": card, "won": False})
            return Outcome(completed=True, state=visible, result="lose")

        state.streak += 1
        state.multiplier *= self.ladder_step(state.streak)
        visible = self.visible_state(state)
        visible.update(
            {
                "drawnCard": card,
                "won": True,
                "potentialWin": payout(bet_amount, state.multiplier),
            }
        )
        return Outcome(
            completed=False,
            state=visible,
            multiplier=state.multiplier,
            cashout_eligible=True,
        )

    def cashout_eligible(self, state: CardFlipState) -> bool:
        return state.streak > 0

    def settle(self, state: CardFlipState, bet_amount: int) -> Outcome:
        if not self.cashout_eligible(state):
            raise NotCashoutEligibleError("Win at least one round before cashing out")
        win_amount = payout(bet_amount, state.multiplier)
        return Outcome(
            completed=True,
            state=self.visible_state(state),
            win_amount=win_amount,
            multiplier=state.multiplier,
            result="win",
        )


class TreasureEngine(GameEngine):
    """Reveal cells of a shuffled grid; a bomb empties the pot."""

    game_type = catalog.TREASURE
    actions = ("reveal", "open")
    push_your_luck = True

    def initialize(self) -> TreasureState:
        grid: List[str] = []
        for cell, count in self.config.table["cells"].items():
            grid.extend([cell] * count)
        self.rng.shuffle(grid)
        return TreasureState(grid=grid)

    def visible_state(self, state: TreasureState) -> dict:
        return {
            "gridSize": len(state.grid),
            "revealed": {str(index): cell for index, cell in sorted(state.revealed.items())},
            "pot": state.pot,
        }

    def act(self, state: TreasureState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        index = _as_int(_field(data, "index", "cell"), "Cell index")
        if not 0 <= index < len(state.grid):
            raise ValidationError(f"Cell index must be between 0 and {len(state.grid) - 1}")
        if index in state.revealed:
            raise CellAlreadyRevealedError(f"Cell {index} already revealed")

        cell = state.grid[index]
        state.revealed[index] = cell
        if cell == "bomb":
            state.pot = 0
            visible = self.visible_state(state)
            visible.update({"cell": cell, "index": index, "grid": list(state.grid)})
            return Outcome(completed=True, state=visible, result="lose")

        if cell == "coin":
            state.pot += payout(bet_amount, self.config.table["coin_fraction"])
        elif cell in ("double", "triple"):
            factor = 2 if cell == "double" else 3
            state.pot = (state.pot or bet_amount) * factor

        visible = self.visible_state(state)
        visible.update({"cell": cell, "index": index})
        return Outcome(
            completed=False,
            state=visible,
            cashout_eligible=self.cashout_eligible(state),
        )

    def cashout_eligible(self, state: TreasureState) -> bool:
        return state.pot > 0

    def settle(self, state: TreasureState, bet_amount: int) -> Outcome:
        if not self.cashout_eligible(state):
            raise NotCashoutEligibleError("Nothing collected yet")
        visible = self.visible_state(state)
        visible["grid"] = list(state.grid)
        return Outcome(
            completed=True,
            state=visible,
            win_amount=state.pot,
            multiplier=state.pot / bet_amount,
            result="win",
        )


class LuckyNumberEngine(GameEngine):
    game_type = catalog.LUCKY_NUMBER
    actions = ("guess",)

    def multiplier_for(self, distance: int) -> float:
        for band in self.config.table["bands"]:
            if distance <= band.max_distance:
                return band.multiplier
        return 0.0

    def act(self, state: RoundState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        low, high = self.config.table["low"], self.config.table["high"]
        guess = _as_int(_field(data, "guess", "number"), "Guess")
        if not low <= guess <= high:
            raise ValidationError(f"Guess must be between {low} and {high}")
        target = self.rng.randint(low, high)
        distance = abs(guess - target)
        multiplier = self.multiplier_for(distance)
        win_amount = payout(bet_amount, multiplier)
        state.rounds_played += 1
        return Outcome(
            completed=True,
            state={
                "guess": guess,
                "target": target,
                "distance": distance,
                "multiplier": multiplier,
                "winAmount": win_amount,
            },
            win_amount=win_amount,
            multiplier=multiplier,
            result="win" if win_amount > 0 else "lose",
        )


class CoinTossEngine(GameEngine):
    game_type = catalog.COIN_TOSS
    actions = ("toss", "flip")

    def act(self, state: RoundState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        sides = self.config.table["sides"]
        multipliers = self.config.table["multipliers"]
        guesses = _field(data, "guesses", "sequence")
        if isinstance(guesses, str):
            guesses = [guesses]
        if not isinstance(guesses, list) or len(guesses) not in multipliers:
            raise ValidationError(f"Pick between 1 and {max(multipliers)} guesses")
        if any(guess not in sides for guess in guesses):
            raise ValidationError("Guesses must be 'heads' or 'tails'")

        flips: List[str] = []
        for guess in guesses:
            flip = sides[0] if self.rng.random() < 0.5 else sides[1]
            flips.append(flip)
            if flip != guess:
                break
        won = flips == guesses
        multiplier = multipliers[len(guesses)] if won else 0.0
        win_amount = payout(bet_amount, multiplier)
        state.rounds_played += 1
        return Outcome(
            completed=True,
            state={
                "guesses": list(guesses),
                "flips": flips,
                "won": won,
                "multiplier": multiplier,
                "winAmount": win_amount,
            },
            win_amount=win_amount,
            multiplier=multiplier,
            result="win" if won else "lose",
        )


class SlotEngine(GameEngine):
    game_type = catalog.SLOT
    actions = ("spin",)

    def __init__(
        self,
        game_config: GameConfig,
        rng: random.Random | None = None,
        jackpot: JackpotAccumulator | None = None,
    ):
        super().__init__(game_config, rng)
        if jackpot is None or not jackpot.is_eligible(self.game_type):
            raise InternalError("Slot engine needs a jackpot pool")
        self.jackpot = jackpot

    def line_multiplier(self, reels: List[str]) -> float:
        table = self.config.table
        if len(set(reels)) == 1:
            return table["triples"].get(reels[0], 0.0)
        if reels.count("cherry") == 2:
            return table["cherry_pair"]
        return 0.0

    def act(self, state: RoundState, bet_amount: int, data: dict, user_id: str) -> Outcome:
        table = self.config.table
        reels = [self.rng.choice(table["symbols"]) for _ in range(3)]
        state.rounds_played += 1
        if all(symbol == table["jackpot_symbol"] for symbol in reels):
            won = self.jackpot.claim(self.game_type, winner=str(user_id))
            return Outcome(
                completed=True,
                state={
                    "reels": reels,
                    "isJackpot": True,
                    "winAmount": won,
                    "jackpot": self.jackpot.amount(self.game_type),
                },
                win_amount=won,
                multiplier=won / bet_amount,
                result="win",
                exp_earned=catalog.EXP_SLOT_JACKPOT,
            )

        multiplier = self.line_multiplier(reels)
        win_amount = payout(bet_amount, multiplier)
        pool = self.jackpot.contribute(
            self.game_type, payout(bet_amount, table["jackpot_contribution_rate"])
        )
        return Outcome(
            completed=True,
            state={
                "reels": reels,
                "isJackpot": False,
                "multiplier": multiplier,
                "winAmount": win_amount,
                "jackpot": pool,
            },
            win_amount=win_amount,
            multiplier=multiplier,
            result="win" if win_amount > 0 else "lose",
        )


ENGINE_CLASSES = {
    engine.game_type: engine
    for engine in (
        LuckySpinEngine,
        DiceEngine,
        CardFlipEngine,
        TreasureEngine,
        LuckyNumberEngine,
        CoinTossEngine,
        SlotEngine,
    )
}


def jackpot_floors(games: Dict[str, GameConfig]) -> Dict[str, int]:
    return {
        game_type: game.table["jackpot_floor"]
        for game_type, game in games.items()
        if "jackpot_floor" in game.table
    }


def build_engines(
    games: Dict[str, GameConfig],
    jackpot: JackpotAccumulator,
    rng: Optional[random.Random] = None,
) -> Dict[str, GameEngine]:
    """Resolve one engine instance per configured game type."""
    engines: Dict[str, GameEngine] = {}
    for game_type, game in games.items():
        engine_cls = ENGINE_CLASSES.get(game_type)
        if engine_cls is None:
            raise InternalError(f"No engine for game type: {game_type}")
        if engine_cls is SlotEngine:
            engines[game_type] = SlotEngine(game, rng, jackpot=jackpot)
        else:
            engines[game_type] = engine_cls(game, rng)
    return engines
