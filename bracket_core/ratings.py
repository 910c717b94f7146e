import math
from dataclasses import replace
from enum import Enum
from typing import Dict, Optional, Tuple

from .models import PlayerRanking, RatingUpdate


class Rank(str, Enum):
    K = "K"
    K_PLUS = "K+"
    I = "I"
    I_PLUS = "I+"
    H = "H"
    H_PLUS = "H+"
    G = "G"
    G_PLUS = "G+"
    F = "F"
    F_PLUS = "F+"
    E = "E"
    E_PLUS = "E+"

    @property
    def base_tier(self) -> "Rank":
        """The plain letter tier, e.g. ``H+`` -> ``H``."""
        return Rank(self.value.rstrip("+"))

    @classmethod
    def from_code(cls, code) -> Optional["Rank"]:
        if isinstance(code, Rank):
            return code
        try:
            return cls(code)
        except ValueError:
            return None


RANK_ORDER = tuple(Rank)

# Minimum ELO for holding each rank.
RANK_ELO: Dict[Rank, int] = {
    Rank.K: 1000,
    Rank.K_PLUS: 1100,
    Rank.I: 1200,
    Rank.I_PLUS: 1300,
    Rank.H: 1400,
    Rank.H_PLUS: 1500,
    Rank.G: 1600,
    Rank.G_PLUS: 1700,
    Rank.F: 1800,
    Rank.F_PLUS: 1900,
    Rank.E: 2000,
    Rank.E_PLUS: 2100,
}


class MatchResult(float, Enum):
    WIN = 1.0
    DRAW = 0.5
    LOSS = 0.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def rank_by_elo(elo: int) -> Rank:
    """Highest rank whose ELO floor the rating reaches (K for anything below)."""
    for rank in reversed(RANK_ORDER):
        if elo >= RANK_ELO[rank]:
            return rank
    return Rank.K


class RatingEngine:
    """
    ELO rating system with a K-factor that depends on experience and strength.

    Established players (30+ matches) are split by rating: masters move the
    slowest, advanced players a little faster, everyone else at the regular
    rate. New players get the largest K so they converge quickly.
    """

    K_NEW = 40
    K_REGULAR = 32
    K_ADVANCED = 24
    K_MASTER = 16

    NEW_PLAYER_MATCHES = 30
    ADVANCED_ELO = 2100
    MASTER_ELO = 2400

    def determine_k_factor(self, elo: int, match_count: int) -> int:
        if match_count < self.NEW_PLAYER_MATCHES:
            return self.K_NEW
        if elo >= self.MASTER_ELO:
            return self.K_MASTER
        if elo >= self.ADVANCED_ELO:
            return self.K_ADVANCED
        return self.K_REGULAR

    def expected_score(self, player_elo: int, opponent_elo: int) -> float:
        return 1 / (1 + math.pow(10, (opponent_elo - player_elo) / 400))

    def calculate_win_probability(self, rating_a: int, rating_b: int) -> Tuple[float, float]:
        """
        Calculate win probabilities for two players based on their ELO ratings.

        Returns:
            (prob_a_wins, prob_b_wins) as floats between 0 and 1
        """
        expected_a = self.expected_score(rating_a, rating_b)
        return (expected_a, 1 - expected_a)

    def calculate_elo_change(
        self,
        player_elo: int,
        opponent_elo: int,
        result: float,
        match_count: int
    ) -> int:
        """Signed rating change for one player, rounded half up."""
        k_factor = self.determine_k_factor(player_elo, match_count)
        expected = self.expected_score(player_elo, opponent_elo)
        return round_half_up(k_factor * (float(result) - expected))

    def calculate_match_elo(
        self,
        player_elo: int,
        opponent_elo: int,
        result: float,
        match_count: int
    ) -> int:
        """Updated absolute rating for one player."""
        k_factor = self.determine_k_factor(player_elo, match_count)
        expected = self.expected_score(player_elo, opponent_elo)
        return round_half_up(player_elo + k_factor * (float(result) - expected))

    def rating_change(
        self,
        player_id: str,
        player_elo: int,
        opponent_elo: int,
        result: float,
        match_count: int
    ) -> RatingUpdate:
        """
        Compute both views of a rating update.

        The signed delta is what audit logs record; the new rating is what gets
        stored. Both derive from the same unrounded change.
        """
        k_factor = self.determine_k_factor(player_elo, match_count)
        expected = self.expected_score(player_elo, opponent_elo)
        change = k_factor * (float(result) - expected)
        return RatingUpdate(
            player_id=player_id,
            old_rating=player_elo,
            new_rating=round_half_up(player_elo + change),
            delta=round_half_up(change),
            k_factor=k_factor,
            expected=expected,
            result=float(result),
        )

    def apply_match(
        self,
        winner: PlayerRanking,
        loser: PlayerRanking,
        draw: bool = False
    ) -> Tuple[PlayerRanking, PlayerRanking, RatingUpdate, RatingUpdate]:
        """
        Rate one completed match.

        Both updates are computed from the pre-match ratings. Returns new
        ranking snapshots (inputs are left untouched) plus the two updates.
        Rank codes are never changed here; promotion is a separate decision.
        """
        winner_result = MatchResult.DRAW if draw else MatchResult.WIN
        loser_result = MatchResult.DRAW if draw else MatchResult.LOSS

        winner_update = self.rating_change(
            winner.player_id, winner.elo_points, loser.elo_points,
            winner_result.value, winner.total_matches
        )
        loser_update = self.rating_change(
            loser.player_id, loser.elo_points, winner.elo_points,
            loser_result.value, loser.total_matches
        )

        new_winner = replace(
            winner,
            elo_points=winner_update.new_rating,
            total_matches=winner.total_matches + 1,
            wins=winner.wins + (0 if draw else 1),
        )
        new_loser = replace(
            loser,
            elo_points=loser_update.new_rating,
            total_matches=loser.total_matches + 1,
        )
        return new_winner, new_loser, winner_update, loser_update
