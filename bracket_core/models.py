from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional

from .state_machine import BracketState, MatchStatus


class MatchKey(NamedTuple):
    """Composite slot address of a match inside a bracket."""
    round_number: int
    match_number: int

    def to_dict(self) -> dict:
        return {"round": self.round_number, "match": self.match_number}

    def __str__(self) -> str:
        return f"r{self.round_number}_m{self.match_number}"

    @classmethod
    def parse(cls, value) -> Optional["MatchKey"]:
        if value is None:
            return None
        if isinstance(value, MatchKey):
            return value
        if isinstance(value, dict):
            return cls(int(value["round"]), int(value["match"]))
        return cls(int(value[0]), int(value[1]))


@dataclass
class Match:
    key: MatchKey
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None
    score_player1: Optional[int] = None
    score_player2: Optional[int] = None
    winner_id: Optional[str] = None
    loser_id: Optional[str] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    is_third_place_match: bool = False
    is_bye: bool = False
    previous_match1: Optional[MatchKey] = None
    previous_match2: Optional[MatchKey] = None
    next_match: Optional[MatchKey] = None

    @property
    def round_number(self) -> int:
        return self.key.round_number

    @property
    def match_number(self) -> int:
        return self.key.match_number

    @property
    def next_slot(self) -> int:
        """Player slot this match's winner occupies in ``next_match``."""
        return 1 if self.match_number % 2 == 1 else 2

    @property
    def is_terminal(self) -> bool:
        return self.status == MatchStatus.COMPLETED and self.winner_id is not None

    def player_in_slot(self, slot: int) -> Optional[str]:
        return self.player1_id if slot == 1 else self.player2_id

    def has_player(self, player_id: str) -> bool:
        return player_id is not None and player_id in (self.player1_id, self.player2_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.key),
            "round": self.round_number,
            "match": self.match_number,
            "player1_id": self.player1_id,
            "player2_id": self.player2_id,
            "score_player1": self.score_player1,
            "score_player2": self.score_player2,
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "status": self.status.value,
            "is_third_place_match": self.is_third_place_match,
            "is_bye": self.is_bye,
            "previous_match1": self.previous_match1.to_dict() if self.previous_match1 else None,
            "previous_match2": self.previous_match2.to_dict() if self.previous_match2 else None,
            "next_match": self.next_match.to_dict() if self.next_match else None,
        }


@dataclass
class Bracket:
    tournament_id: str
    participant_count: int
    total_players: int
    total_rounds: int
    current_round: int = 1
    status: BracketState = BracketState.SEEDED
    seeding_method: str = "ranked"
    seeds: Dict[str, int] = field(default_factory=dict)
    matches: Dict[MatchKey, Match] = field(default_factory=dict)

    def get(self, key: MatchKey) -> Optional[Match]:
        return self.matches.get(key)

    def add(self, match: Match):
        self.matches[match.key] = match

    def round_matches(self, round_number: int, include_third_place: bool = False) -> List[Match]:
        matches = [
            m for m in self.matches.values()
            if m.round_number == round_number and (include_third_place or not m.is_third_place_match)
        ]
        return sorted(matches, key=lambda m: m.match_number)

    def round_exists(self, round_number: int) -> bool:
        return bool(self.round_matches(round_number))

    def final_match(self) -> Optional[Match]:
        finals = self.round_matches(self.total_rounds)
        return finals[0] if finals else None

    def third_place_match(self) -> Optional[Match]:
        for m in self.matches.values():
            if m.is_third_place_match:
                return m
        return None

    def completed_matches(self, include_byes: bool = False) -> List[Match]:
        return [
            m for m in self.matches.values()
            if m.status == MatchStatus.COMPLETED and (include_byes or not m.is_bye)
        ]

    @property
    def bye_count(self) -> int:
        return sum(1 for m in self.matches.values() if m.is_bye and not m.is_third_place_match)

    def to_dict(self) -> dict:
        rounds: Dict[str, list] = {}
        for m in sorted(self.matches.values(), key=lambda m: (m.key, m.is_third_place_match)):
            rounds.setdefault(str(m.round_number), []).append(m.to_dict())
        return {
            "tournament_id": self.tournament_id,
            "participant_count": self.participant_count,
            "total_players": self.total_players,
            "total_rounds": self.total_rounds,
            "current_round": self.current_round,
            "status": self.status.value,
            "seeding_method": self.seeding_method,
            "seeds": dict(self.seeds),
            "rounds": rounds,
        }


@dataclass
class Registration:
    player_id: str
    registration_status: str = "confirmed"
    payment_status: str = "pending"
    seed_number: Optional[int] = None
    registration_date: datetime = field(default_factory=datetime.utcnow)


@dataclass
class PlayerRanking:
    player_id: str
    elo_points: int = 1000
    rank_code: str = "K"
    spa_points: int = 0
    total_matches: int = 0
    wins: int = 0
    last_promotion_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_promotion_date"] = (
            self.last_promotion_date.isoformat() if self.last_promotion_date else None
        )
        return data


@dataclass
class RatingUpdate:
    player_id: str
    old_rating: int
    new_rating: int
    delta: int
    k_factor: int
    expected: float
    result: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RewardPosition:
    position: int
    name: str
    elo_points: int
    spa_points: int
    cash_prize: int
    items: List[str] = field(default_factory=list)
    is_visible: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RewardPosition":
        return cls(
            position=int(data["position"]),
            name=data.get("name", f"Position {data['position']}"),
            elo_points=int(data.get("elo_points", 0)),
            spa_points=int(data.get("spa_points", 0)),
            cash_prize=int(data.get("cash_prize", 0)),
            items=list(data.get("items", [])),
            is_visible=bool(data.get("is_visible", True)),
        )


@dataclass
class SpecialAward:
    id: str
    name: str
    description: str = ""
    cash_prize: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SpecialAward":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            cash_prize=int(data.get("cash_prize", 0)),
        )


@dataclass(frozen=True)
class RewardParams:
    tier: int
    entry_fee: int
    max_participants: int
    game_format: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RewardPlan:
    total_prize: int
    positions: List[RewardPosition] = field(default_factory=list)
    special_awards: List[SpecialAward] = field(default_factory=list)
    show_prizes: bool = True
    params: Optional[RewardParams] = None

    def position(self, position: int) -> Optional[RewardPosition]:
        for p in self.positions:
            if p.position == position:
                return p
        return None

    @property
    def total_cash(self) -> int:
        return sum(p.cash_prize for p in self.positions) + sum(a.cash_prize for a in self.special_awards)

    def to_dict(self) -> dict:
        return {
            "total_prize": self.total_prize,
            "show_prizes": self.show_prizes,
            "positions": [p.to_dict() for p in self.positions],
            "special_awards": [a.to_dict() for a in self.special_awards],
            "params": self.params.to_dict() if self.params else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardPlan":
        params = data.get("params")
        return cls(
            total_prize=int(data["total_prize"]),
            positions=[RewardPosition.from_dict(p) for p in data.get("positions", [])],
            special_awards=[SpecialAward.from_dict(a) for a in data.get("special_awards", [])],
            show_prizes=bool(data.get("show_prizes", True)),
            params=RewardParams(**params) if params else None,
        )


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FinalStanding:
    player_id: str
    position: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RewardPayout:
    player_id: str
    position: int
    elo_points: int
    spa_points: int
    cash_prize: int

    def to_dict(self) -> dict:
        return asdict(self)
