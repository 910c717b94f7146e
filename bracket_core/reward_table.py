"""
Fixed reward tables.

Everything that turns a finishing position into points or money lives here as
an explicit constant table: tier prize percentages and multipliers, game
format multipliers, cash distribution by bracket size, per-position ELO and
SPA bases, and the rank keyed SPA table used for individual payouts.
"""
import logging
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from .ratings import Rank, round_half_up

logger = logging.getLogger(__name__)


class TournamentTier(IntEnum):
    K = 1
    I = 2
    H = 3
    G = 4

    @property
    def prize_percentage(self) -> float:
        return PRIZE_PERCENTAGE[self]

    @property
    def elo_multiplier(self) -> float:
        return TIER_ELO_MULTIPLIER[self]

    @classmethod
    def parse(cls, value) -> "TournamentTier":
        if isinstance(value, TournamentTier):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown tournament tier {value!r}")
        return cls(int(value))


class GameFormat(str, Enum):
    EIGHT_BALL = "8_ball"
    NINE_BALL = "9_ball"
    TEN_BALL = "10_ball"
    STRAIGHT_POOL = "straight_pool"


class TournamentPosition(str, Enum):
    CHAMPION = "CHAMPION"
    RUNNER_UP = "RUNNER_UP"
    THIRD_PLACE = "THIRD_PLACE"
    FOURTH_PLACE = "FOURTH_PLACE"
    TOP_8 = "TOP_8"
    TOP_16 = "TOP_16"
    PARTICIPATION = "PARTICIPATION"


PRIZE_PERCENTAGE: Dict[TournamentTier, float] = {
    TournamentTier.K: 0.70,
    TournamentTier.I: 0.75,
    TournamentTier.H: 0.80,
    TournamentTier.G: 0.85,
}

TIER_ELO_MULTIPLIER: Dict[TournamentTier, float] = {
    TournamentTier.K: 1.0,
    TournamentTier.I: 1.2,
    TournamentTier.H: 1.4,
    TournamentTier.G: 1.6,
}

GAME_FORMAT_MULTIPLIER: Dict[GameFormat, float] = {
    GameFormat.NINE_BALL: 1.0,
    GameFormat.EIGHT_BALL: 0.9,
    GameFormat.TEN_BALL: 1.1,
    GameFormat.STRAIGHT_POOL: 1.2,
}

# (minimum participants, valid positions, cash share per position), largest first.
SIZE_BRACKETS = (
    (32, (1, 2, 3, 4, 8, 16), {1: 0.40, 2: 0.25, 3: 0.15, 4: 0.10, 8: 0.10}),
    (16, (1, 2, 3, 4, 8), {1: 0.40, 2: 0.25, 3: 0.15, 4: 0.10, 8: 0.10}),
    (8, (1, 2, 3, 4), {1: 0.45, 2: 0.30, 3: 0.15, 4: 0.10}),
    (4, (1, 2, 3), {1: 0.50, 2: 0.30, 3: 0.20}),
    (0, (1, 2), {1: 0.60, 2: 0.40}),
)

POSITION_ELO_BASE = {1: 100, 2: 60, 3: 40, 4: 25, 8: 15, 16: 10}
DEFAULT_POSITION_ELO = 5

TIER_POSITION_SPA: Dict[TournamentTier, Dict[int, int]] = {
    TournamentTier.K: {1: 900, 2: 700, 3: 500, 4: 350, 8: 200, 16: 100},
    TournamentTier.I: {1: 1000, 2: 800, 3: 600, 4: 400, 8: 250, 16: 120},
    TournamentTier.H: {1: 1200, 2: 950, 3: 700, 4: 450, 8: 300, 16: 150},
    TournamentTier.G: {1: 1500, 2: 1200, 3: 900, 4: 600, 8: 400, 16: 200},
}
DEFAULT_POSITION_SPA = 50

POSITION_NAMES = {
    1: "Champion",
    2: "Runner-up",
    3: "Third place",
    4: "Fourth place",
    8: "Top 8",
    16: "Top 16",
}

DEFAULT_ITEMS = {
    1: ["Champion trophy", "Certificate"],
    2: ["Silver medal"],
    3: ["Bronze medal"],
}

PLACE_TO_POSITION = {
    1: TournamentPosition.CHAMPION,
    2: TournamentPosition.RUNNER_UP,
    3: TournamentPosition.THIRD_PLACE,
    4: TournamentPosition.FOURTH_PLACE,
    8: TournamentPosition.TOP_8,
    16: TournamentPosition.TOP_16,
}

TOURNAMENT_ELO_REWARDS: Dict[TournamentPosition, int] = {
    TournamentPosition.CHAMPION: 100,
    TournamentPosition.RUNNER_UP: 50,
    TournamentPosition.THIRD_PLACE: 25,
    TournamentPosition.FOURTH_PLACE: 12,
    TournamentPosition.TOP_8: 6,
    TournamentPosition.TOP_16: 3,
    TournamentPosition.PARTICIPATION: 1,
}

# Keyed by base rank letter; a "+" rank shares its letter's table.
SPA_TOURNAMENT_REWARDS: Dict[Rank, Dict[TournamentPosition, int]] = {
    Rank.E: {
        TournamentPosition.CHAMPION: 1500,
        TournamentPosition.RUNNER_UP: 1100,
        TournamentPosition.THIRD_PLACE: 900,
        TournamentPosition.FOURTH_PLACE: 650,
        TournamentPosition.TOP_8: 320,
        TournamentPosition.PARTICIPATION: 120,
    },
    Rank.F: {
        TournamentPosition.CHAMPION: 1350,
        TournamentPosition.RUNNER_UP: 1000,
        TournamentPosition.THIRD_PLACE: 800,
        TournamentPosition.FOURTH_PLACE: 550,
        TournamentPosition.TOP_8: 280,
        TournamentPosition.PARTICIPATION: 110,
    },
    Rank.G: {
        TournamentPosition.CHAMPION: 1200,
        TournamentPosition.RUNNER_UP: 900,
        TournamentPosition.THIRD_PLACE: 700,
        TournamentPosition.FOURTH_PLACE: 500,
        TournamentPosition.TOP_8: 250,
        TournamentPosition.PARTICIPATION: 100,
    },
    Rank.H: {
        TournamentPosition.CHAMPION: 1100,
        TournamentPosition.RUNNER_UP: 850,
        TournamentPosition.THIRD_PLACE: 650,
        TournamentPosition.FOURTH_PLACE: 450,
        TournamentPosition.TOP_8: 200,
        TournamentPosition.PARTICIPATION: 100,
    },
    Rank.I: {
        TournamentPosition.CHAMPION: 1000,
        TournamentPosition.RUNNER_UP: 800,
        TournamentPosition.THIRD_PLACE: 600,
        TournamentPosition.FOURTH_PLACE: 400,
        TournamentPosition.TOP_8: 150,
        TournamentPosition.PARTICIPATION: 100,
    },
    Rank.K: {
        TournamentPosition.CHAMPION: 900,
        TournamentPosition.RUNNER_UP: 700,
        TournamentPosition.THIRD_PLACE: 500,
        TournamentPosition.FOURTH_PLACE: 350,
        TournamentPosition.TOP_8: 120,
        TournamentPosition.PARTICIPATION: 100,
    },
}

CHALLENGE_WIN_SPA = 50
CHALLENGE_LOSS_SPA = 10
CHALLENGE_STREAK_BONUS = 25
CHALLENGE_COMEBACK_BONUS = 100
CHALLENGE_DAILY_LIMIT = 500


def _size_bracket(max_participants: int):
    for minimum, positions, distribution in SIZE_BRACKETS:
        if max_participants >= minimum:
            return positions, distribution
    return SIZE_BRACKETS[-1][1], SIZE_BRACKETS[-1][2]


def valid_positions(max_participants: int) -> List[int]:
    return list(_size_bracket(max_participants)[0])


def prize_distribution(max_participants: int) -> Dict[int, float]:
    return dict(_size_bracket(max_participants)[1])


def position_elo(tier: TournamentTier, game_format: GameFormat, position: int) -> int:
    base = POSITION_ELO_BASE.get(position, DEFAULT_POSITION_ELO)
    return round_half_up(base * tier.elo_multiplier * GAME_FORMAT_MULTIPLIER.get(game_format, 1.0))


def position_spa(tier: TournamentTier, position: int) -> int:
    return TIER_POSITION_SPA[tier].get(position, DEFAULT_POSITION_SPA)


def position_name(position: int) -> str:
    return POSITION_NAMES.get(position, f"Position {position}")


def default_items(position: int) -> List[str]:
    return list(DEFAULT_ITEMS.get(position, []))


def position_for_place(place: int) -> TournamentPosition:
    return PLACE_TO_POSITION.get(place, TournamentPosition.PARTICIPATION)


def _parse_position(position) -> Optional[TournamentPosition]:
    if isinstance(position, TournamentPosition):
        return position
    try:
        return TournamentPosition(position)
    except ValueError:
        return None


def calculate_tournament_elo(position) -> int:
    """ELO bonus for a finishing position; unknown positions count as participation."""
    parsed = _parse_position(position)
    if parsed is None:
        logger.debug(f"Unknown tournament position {position!r}, using participation reward")
        parsed = TournamentPosition.PARTICIPATION
    return TOURNAMENT_ELO_REWARDS[parsed]


def calculate_tournament_spa(position, rank) -> int:
    """
    SPA reward for a finishing position, scaled by the player's rank.

    Unknown ranks use the K table; positions missing from a rank's table
    (TOP_16 included) pay that table's participation amount.
    """
    parsed_rank = Rank.from_code(rank)
    table = SPA_TOURNAMENT_REWARDS[parsed_rank.base_tier] if parsed_rank else SPA_TOURNAMENT_REWARDS[Rank.K]
    parsed_position = _parse_position(position)
    if parsed_position is None or parsed_position not in table:
        return table[TournamentPosition.PARTICIPATION]
    return table[parsed_position]


def calculate_tournament_rewards(position, rank) -> dict:
    return {
        "elo_points": calculate_tournament_elo(position),
        "spa_points": calculate_tournament_spa(position, rank),
        "position": _parse_position(position) or TournamentPosition.PARTICIPATION,
        "rank": rank,
    }


def challenge_spa_reward(won: bool, win_streak: int = 0, comeback: bool = False,
                         earned_today: int = 0) -> int:
    """SPA for a challenge match, capped by what is left of the daily allowance."""
    if won:
        reward = CHALLENGE_WIN_SPA + CHALLENGE_STREAK_BONUS * max(win_streak - 1, 0)
        if comeback:
            reward += CHALLENGE_COMEBACK_BONUS
    else:
        reward = CHALLENGE_LOSS_SPA
    return max(0, min(reward, CHALLENGE_DAILY_LIMIT - earned_today))
