from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json


class EventType(str, Enum):
    # Bracket lifecycle
    BRACKET_GENERATED = "bracket.generated"
    ROUND_GENERATED = "round.generated"
    THIRD_PLACE_CREATED = "round.third_place_created"

    # Match events
    MATCH_STARTED = "match.started"
    MATCH_ADVANCED = "match.advanced"
    MATCH_CANCELLED = "match.cancelled"

    # Tournament lifecycle
    STATE_CHANGED = "state.changed"
    TOURNAMENT_COMPLETED = "tournament.completed"

    # Player ranking
    RATING_UPDATED = "ranking.rating_updated"
    RANK_PROMOTED = "ranking.rank_promoted"


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            tournament_id=data["tournament_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def bracket_generated_event(tournament_id: str, participants: int, rounds: int, byes: int) -> Event:
    return Event(
        type=EventType.BRACKET_GENERATED,
        tournament_id=tournament_id,
        data={
            "participants": participants,
            "rounds": rounds,
            "byes": byes
        }
    )


def round_generated_event(tournament_id: str, round_num: int, matches_count: int) -> Event:
    return Event(
        type=EventType.ROUND_GENERATED,
        tournament_id=tournament_id,
        data={
            "round": round_num,
            "matches_count": matches_count
        }
    )


def third_place_created_event(tournament_id: str, match_id: str, players: list) -> Event:
    return Event(
        type=EventType.THIRD_PLACE_CREATED,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "players": players
        }
    )


def match_advanced_event(tournament_id: str, match_id: str, winner: str, round_num: int,
                         next_match: str = None) -> Event:
    return Event(
        type=EventType.MATCH_ADVANCED,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "winner": winner,
            "round": round_num,
            "next_match": next_match
        }
    )


def match_status_event(tournament_id: str, match_id: str, event_type: EventType) -> Event:
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={"match_id": match_id}
    )


def state_changed_event(tournament_id: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def tournament_completed_event(tournament_id: str, champion: str, runner_up: str = None) -> Event:
    return Event(
        type=EventType.TOURNAMENT_COMPLETED,
        tournament_id=tournament_id,
        data={
            "champion": champion,
            "runner_up": runner_up
        }
    )


def rank_promoted_event(tournament_id: str, player_id: str, from_rank: str, to_rank: str) -> Event:
    return Event(
        type=EventType.RANK_PROMOTED,
        tournament_id=tournament_id,
        data={
            "player_id": player_id,
            "from_rank": from_rank,
            "to_rank": to_rank
        }
    )
