from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from . import config
from .errors import InternalError, ValidationError


LUCKY_SPIN = "lucky_spin"
DICE = "dice"
CARD_FLIP = "card_flip"
TREASURE = "treasure"
LUCKY_NUMBER = "lucky_number"
COIN_TOSS = "coin_toss"
SLOT = "slot"

# Experience granted per completed round.
EXP_LOSS = 10
EXP_WIN = 25
EXP_WHEEL_JACKPOT = 200
EXP_SLOT_JACKPOT = 500


@dataclass(frozen=True)
class WheelSegment:
    label: str
    multiplier: float
    weight: float


@dataclass(frozen=True)
class DistanceBand:
    max_distance: int
    multiplier: float


@dataclass(frozen=True)
class GameConfig:
    game_type: str
    name: str
    min_bet: int
    max_bet: int
    # Game-specific payout / probability table, shape depends on game_type.
    table: Mapping = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "table", MappingProxyType(dict(self.table)))

    def summary(self) -> dict:
        return {
            "type": self.game_type,
            "name": self.name,
            "minBet": self.min_bet,
            "maxBet": self.max_bet,
        }


WHEEL_SEGMENTS: Tuple[WheelSegment, ...] = (
    WheelSegment("lose", 0.0, 30),
    WheelSegment("half", 0.5, 25),
    WheelSegment("even", 1.0, 20),
    WheelSegment("double", 2.0, 15),
    WheelSegment("x5", 5.0, 7),
    WheelSegment("x10", 10.0, 2.5),
    WheelSegment("jackpot", 50.0, 0.5),
)

DICE_BET_TYPES: Mapping[str, float] = MappingProxyType({
    "high": 2.0,  # sum 8..12
    "low": 2.0,  # sum 2..6
    "seven": 5.0,
    "pair": 5.0,  # any doubles
    "specific_pair": 30.0,  # both dice show the chosen value
})

CARD_STREAK_LADDER: Tuple[float, ...] = (1.5, 1.6, 1.8, 2.0, 2.5, 3.0)

TREASURE_CELLS: Mapping[str, int] = MappingProxyType(
    {"coin": 4, "bomb": 3, "double": 1, "triple": 1}
)

LUCKY_NUMBER_BANDS: Tuple[DistanceBand, ...] = (
    DistanceBand(0, 50.0),
    DistanceBand(2, 10.0),
    DistanceBand(5, 5.0),
    DistanceBand(10, 2.0),
)

COIN_TOSS_MULTIPLIERS: Mapping[int, float] = MappingProxyType({1: 1.9, 2: 3.8, 3: 7.6})

SLOT_SYMBOLS: Tuple[str, ...] = ("seven", "bar", "bell", "grape", "lemon", "cherry")
SLOT_TRIPLE_PAYOUTS: Mapping[str, float] = MappingProxyType({
    "bar": 25.0,
    "bell": 15.0,
    "grape": 10.0,
    "lemon": 8.0,
    "cherry": 5.0,
})


def _build_catalog() -> Dict[str, GameConfig]:
    games: List[GameConfig] = [
        GameConfig(
            LUCKY_SPIN,
            "Lucky Spin",
            100,
            100000,
            {"segments": WHEEL_SEGMENTS, "default": "lose"},
        ),
        GameConfig(DICE, "Dice", 100, 100000, {"bet_types": DICE_BET_TYPES}),
        GameConfig(
            CARD_FLIP,
            "Card Flip",
            100,
            50000,
            {"ranks": 13, "suits": 4, "ladder": CARD_STREAK_LADDER},
        ),
        GameConfig(
            TREASURE,
            "Treasure Box",
            1000,
            100000,
            {"cells": TREASURE_CELLS, "coin_fraction": 0.5},
        ),
        GameConfig(
            LUCKY_NUMBER,
            "Lucky Number",
            100,
            100000,
            {"low": 1, "high": 100, "bands": LUCKY_NUMBER_BANDS},
        ),
        GameConfig(
            COIN_TOSS,
            "Coin Toss",
            100,
            100000,
            {"sides": ("heads", "tails"), "multipliers": COIN_TOSS_MULTIPLIERS},
        ),
        GameConfig(
            SLOT,
            "Lucky Slot",
            100,
            100000,
            {
                "symbols": SLOT_SYMBOLS,
                "triples": SLOT_TRIPLE_PAYOUTS,
                "cherry_pair": 2.0,
                "jackpot_symbol": "seven",
                "jackpot_contribution_rate": 0.01,
                "jackpot_floor": config.JACKPOT_FLOOR_SLOT,
            },
        ),
    ]
    return {game.game_type: game for game in games}


GAME_CATALOG: Dict[str, GameConfig] = _build_catalog()


def list_games(catalog: Dict[str, GameConfig] | None = None) -> List[dict]:
    catalog = GAME_CATALOG if catalog is None else catalog
    if not catalog:
        raise InternalError("Game catalog not loaded")
    return [game.summary() for game in catalog.values()]


def get_config(game_type: str, catalog: Dict[str, GameConfig] | None = None) -> GameConfig:
    catalog = GAME_CATALOG if catalog is None else catalog
    if not catalog:
        raise InternalError("Game catalog not loaded")
    game = catalog.get(game_type)
    if game is None:
        raise ValidationError(f"Invalid game type: {game_type}")
    return game
