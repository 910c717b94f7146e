"""
Live bracket progression.

Every public operation takes a bracket snapshot, works on a private copy and
returns a ``ProgressionResult`` holding the new snapshot plus the facts worth
announcing. Callers persist the snapshot inside one transaction per call; the
engine itself only guarantees that repeating an operation is a no-op.
"""
import copy
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import InvalidResult, MatchNotFound, NoFinalMatch, RoundNotComplete, SlotConflict
from .events import (
    Event,
    EventType,
    match_advanced_event,
    match_status_event,
    round_generated_event,
    third_place_created_event,
    tournament_completed_event,
)
from .models import Bracket, FinalStanding, Match, MatchKey
from .state_machine import (
    BracketState,
    MatchStateMachine,
    MatchStatus,
    check_bracket_transition,
)

logger = logging.getLogger(__name__)

THIRD_PLACE_MATCH_NUMBER = 2


@dataclass
class ProgressionResult:
    bracket: Bracket
    events: List[Event] = field(default_factory=list)
    created: List[MatchKey] = field(default_factory=list)
    match: Optional[Match] = None
    tournament_complete: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.events or self.created)

    def to_dict(self) -> dict:
        return {
            "bracket": self.bracket.to_dict(),
            "created": [str(k) for k in self.created],
            "match": self.match.to_dict() if self.match else None,
            "tournament_complete": self.tournament_complete,
            "events": [e.to_dict() for e in self.events],
        }


def is_round_complete(bracket: Bracket, round_number: int) -> bool:
    """A round is complete when every match in it (byes included) has a winner."""
    matches = bracket.round_matches(round_number)
    return bool(matches) and all(m.is_terminal for m in matches)


def _third_place_expected(bracket: Bracket) -> bool:
    """Only two played semifinals produce a third-place match; a semifinal bye leaves a single loser."""
    if bracket.total_rounds < 2:
        return False
    semifinals = bracket.round_matches(bracket.total_rounds - 1)
    return len(semifinals) >= 2 and not any(m.is_bye for m in semifinals)


def is_tournament_complete(bracket: Bracket) -> bool:
    final = bracket.final_match()
    if final is None or not final.is_terminal:
        return False
    third = bracket.third_place_match()
    if third is None:
        return not _third_place_expected(bracket)
    return third.is_terminal


def derive_bracket_state(bracket: Bracket, previous: BracketState = None) -> BracketState:
    final = bracket.final_match()
    if final is not None and final.is_terminal:
        return BracketState.COMPLETED if is_tournament_complete(bracket) else BracketState.AWAITING_THIRD_PLACE

    if previous in (None, BracketState.SEEDED) and bracket.current_round == 1:
        untouched = all(
            m.status not in (MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED)
            for m in bracket.round_matches(1) if not m.is_bye
        )
        if untouched:
            return BracketState.SEEDED

    if bracket.current_round >= bracket.total_rounds:
        return BracketState.FINAL_PENDING
    if is_round_complete(bracket, bracket.current_round):
        return BracketState.ROUND_COMPLETE
    return BracketState.ROUND_IN_PROGRESS


class ProgressionEngine:
    """
    Advances a live single-elimination bracket as results arrive.

    With ``auto_advance`` a result that closes a round immediately creates the
    next round (and the third-place match after the semifinals). Without it the
    caller drives round creation through ``generate_next_round``.
    """

    def __init__(self, auto_advance: bool = True):
        self.auto_advance = auto_advance

    # ---------------------------------------------------------------- matches

    def start_match(self, bracket: Bracket, key: MatchKey) -> ProgressionResult:
        return self._status_action(bracket, key, "start", EventType.MATCH_STARTED, needs_players=True)

    def cancel_match(self, bracket: Bracket, key: MatchKey) -> ProgressionResult:
        return self._status_action(bracket, key, "cancel", EventType.MATCH_CANCELLED)

    def restore_match(self, bracket: Bracket, key: MatchKey) -> ProgressionResult:
        return self._status_action(bracket, key, "restore")

    def reschedule_match(self, bracket: Bracket, key: MatchKey) -> ProgressionResult:
        return self._status_action(bracket, key, "reschedule")

    def record_result(
        self,
        bracket: Bracket,
        key: MatchKey,
        winner_id: str,
        score_player1: int = None,
        score_player2: int = None
    ) -> ProgressionResult:
        """
        Complete a match and move its winner on.

        Re-submitting the same winner for a completed match is a no-op;
        a different winner is rejected, results are final.
        """
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        b = result.bracket
        match = self._get(b, key)
        result.match = match

        if match.is_terminal:
            if match.winner_id == winner_id:
                return result
            raise InvalidResult(
                f"Match {key} is already completed with winner {match.winner_id}",
                match_id=str(key),
            )
        if match.player1_id is None or match.player2_id is None:
            raise InvalidResult(f"Match {key} is still waiting for its players", match_id=str(key))
        if not match.has_player(winner_id):
            raise InvalidResult(f"Winner {winner_id} is not in match {key}", match_id=str(key))
        self._check_scores(match, winner_id, score_player1, score_player2)

        sm = MatchStateMachine(match.status)
        match.status = sm.transition("complete")
        match.winner_id = winner_id
        match.loser_id = match.player2_id if winner_id == match.player1_id else match.player1_id
        match.score_player1 = score_player1
        match.score_player2 = score_player2

        target = self._propagate(b, match)
        result.events.append(match_advanced_event(
            b.tournament_id, str(key), winner_id, key.round_number,
            str(target.key) if target else (str(match.next_match) if match.next_match else None)
        ))
        logger.debug(f"{b.tournament_id}: {winner_id} won {key}")

        if self.auto_advance:
            self._advance_completed_rounds(b, result)
        self._settle(b, result)
        return result

    # ----------------------------------------------------------------- rounds

    def generate_next_round(self, bracket: Bracket, round_number: int = None) -> ProgressionResult:
        """
        Create round ``round_number + 1`` from a completed round.

        Raises RoundNotComplete while any match of the round is unsettled.
        If the next round already exists, nothing changes. Without an explicit
        round, a current round with no recorded results counts as already
        generated, so repeating the call is a no-op.
        """
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        b = result.bracket
        if round_number is None:
            round_number = self._round_to_advance(b)

        if not b.round_exists(round_number):
            raise RoundNotComplete(f"Round {round_number} does not exist", round=round_number)
        if not is_round_complete(b, round_number):
            pending = [str(m.key) for m in b.round_matches(round_number) if not m.is_terminal]
            raise RoundNotComplete(
                f"Round {round_number} has unfinished matches", round=round_number, pending=pending
            )

        self._generate_round(b, round_number, result)
        self._derive_third_place(b, result)
        self._settle(b, result)
        return result

    def generate_remaining_rounds(self, bracket: Bracket) -> ProgressionResult:
        """Create every round whose feeder round is already complete, stopping at the first open one."""
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        b = result.bracket
        self._advance_completed_rounds(b, result)
        self._settle(b, result)
        return result

    def derive_third_place(self, bracket: Bracket) -> ProgressionResult:
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        self._derive_third_place(result.bracket, result)
        self._settle(result.bracket, result)
        return result

    def finalize(self, bracket: Bracket) -> ProgressionResult:
        """Confirm that the bracket is finished; raises if it is not (or cannot be)."""
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        b = result.bracket
        if not b.round_exists(b.total_rounds):
            if b.current_round >= b.total_rounds:
                raise NoFinalMatch(f"No final match found in round {b.total_rounds}", round=b.total_rounds)
            raise RoundNotComplete(
                f"Bracket is still in round {b.current_round} of {b.total_rounds}",
                round=b.current_round,
            )
        if not is_tournament_complete(b):
            raise RoundNotComplete("Final or third-place match is not completed yet", round=b.total_rounds)
        self._settle(b, result)
        result.tournament_complete = True
        return result

    # -------------------------------------------------------------- standings

    def final_standings(self, bracket: Bracket) -> List[FinalStanding]:
        """
        Places for everyone in a finished bracket.

        1 and 2 come from the final, 3 and 4 from the third-place match (a lone
        semifinal loser after a bye is 3rd outright); players
        knocked out earlier share the place of their round (8 for quarterfinal
        losers, 16 for the round before, and so on).
        """
        if not is_tournament_complete(bracket):
            raise RoundNotComplete("Standings are only available for a completed bracket")

        final = bracket.final_match()
        standings = [FinalStanding(final.winner_id, 1), FinalStanding(final.loser_id, 2)]

        third = bracket.third_place_match()
        if third is not None:
            standings.append(FinalStanding(third.winner_id, 3))
            if third.loser_id:
                standings.append(FinalStanding(third.loser_id, 4))
        elif bracket.total_rounds >= 2:
            # semifinal bye: the only semifinal loser is third outright
            standings.extend(
                FinalStanding(m.loser_id, 3)
                for m in bracket.round_matches(bracket.total_rounds - 1) if m.loser_id
            )

        for round_number in range(bracket.total_rounds - 2, 0, -1):
            place = 2 ** (bracket.total_rounds - round_number + 1)
            losers = [m.loser_id for m in bracket.round_matches(round_number) if m.loser_id]
            losers.sort(key=lambda pid: bracket.seeds.get(pid, 0))
            standings.extend(FinalStanding(pid, place) for pid in losers)

        return standings

    # ---------------------------------------------------------------- helpers

    def _get(self, bracket: Bracket, key: MatchKey) -> Match:
        match = bracket.get(MatchKey.parse(key))
        if match is None:
            raise MatchNotFound(f"Match {key} not found", match_id=str(key))
        return match

    def _round_to_advance(self, bracket: Bracket) -> int:
        current = bracket.current_round
        if current > 1 and not any(
            m.status == MatchStatus.COMPLETED
            for m in bracket.round_matches(current, include_third_place=True)
        ):
            return current - 1
        return current

    def _check_scores(self, match: Match, winner_id: str, score1, score2):
        if score1 is None and score2 is None:
            return
        if score1 is None or score2 is None or score1 < 0 or score2 < 0:
            raise InvalidResult("Both scores must be given as non-negative numbers", match_id=str(match.key))
        winner_score, loser_score = (score1, score2) if winner_id == match.player1_id else (score2, score1)
        if winner_score <= loser_score:
            raise InvalidResult(
                f"Score {score1}-{score2} does not agree with winner {winner_id}", match_id=str(match.key)
            )

    def _status_action(self, bracket: Bracket, key: MatchKey, action: str,
                       event_type: EventType = None, needs_players: bool = False) -> ProgressionResult:
        result = ProgressionResult(bracket=copy.deepcopy(bracket))
        b = result.bracket
        match = self._get(b, key)
        result.match = match
        if needs_players and (match.player1_id is None or match.player2_id is None):
            raise InvalidResult(f"Match {key} is still waiting for its players", match_id=str(key))

        match.status = MatchStateMachine(match.status).transition(action)
        if event_type is not None:
            result.events.append(match_status_event(b.tournament_id, str(match.key), event_type))
        self._settle(b, result)
        return result

    def _propagate(self, bracket: Bracket, match: Match) -> Optional[Match]:
        """Write the winner into the already generated downstream slot, exactly once."""
        if match.next_match is None:
            return None
        target = bracket.get(match.next_match)
        if target is None:
            return None

        slot = match.next_slot
        occupant = target.player_in_slot(slot)
        if occupant == match.winner_id:
            return target
        if occupant is not None:
            raise SlotConflict(
                f"Slot {slot} of {target.key} already holds {occupant}",
                match_id=str(target.key),
            )
        if slot == 1:
            target.player1_id = match.winner_id
        else:
            target.player2_id = match.winner_id
        return target

    def _advance_completed_rounds(self, bracket: Bracket, result: ProgressionResult):
        round_number = bracket.current_round
        while round_number < bracket.total_rounds and is_round_complete(bracket, round_number):
            self._generate_round(bracket, round_number, result)
            round_number += 1
        self._derive_third_place(bracket, result)

    def _generate_round(self, bracket: Bracket, round_number: int, result: ProgressionResult):
        next_round = round_number + 1
        if next_round > bracket.total_rounds or bracket.round_exists(next_round):
            return

        feeders = bracket.round_matches(round_number)
        for index in range(0, len(feeders), 2):
            first, second = feeders[index], feeders[index + 1]
            key = MatchKey(next_round, index // 2 + 1)
            bracket.add(Match(
                key=key,
                player1_id=first.winner_id,
                player2_id=second.winner_id,
                previous_match1=first.key,
                previous_match2=second.key,
                next_match=(
                    MatchKey(next_round + 1, math.ceil(key.match_number / 2))
                    if next_round < bracket.total_rounds else None
                ),
            ))
            result.created.append(key)

        bracket.current_round = next_round
        count = len(feeders) // 2
        result.events.append(round_generated_event(bracket.tournament_id, next_round, count))
        logger.info(f"{bracket.tournament_id}: generated round {next_round} with {count} matches")

    def _derive_third_place(self, bracket: Bracket, result: ProgressionResult):
        if not _third_place_expected(bracket) or bracket.third_place_match() is not None:
            return
        semifinals = bracket.round_matches(bracket.total_rounds - 1)
        if not all(m.is_terminal for m in semifinals):
            return

        losers = [m.loser_id for m in semifinals]
        key = MatchKey(bracket.total_rounds, THIRD_PLACE_MATCH_NUMBER)
        bracket.add(Match(
            key=key,
            player1_id=losers[0],
            player2_id=losers[1],
            is_third_place_match=True,
            previous_match1=semifinals[0].key,
            previous_match2=semifinals[1].key,
        ))
        result.created.append(key)
        result.events.append(third_place_created_event(bracket.tournament_id, str(key), losers))
        logger.info(f"{bracket.tournament_id}: third-place match created for {losers}")

    def _settle(self, bracket: Bracket, result: ProgressionResult):
        previous = bracket.status
        bracket.status = check_bracket_transition(previous, derive_bracket_state(bracket, previous))

        if bracket.status == BracketState.COMPLETED:
            result.tournament_complete = True
            if previous != BracketState.COMPLETED:
                final = bracket.final_match()
                result.events.append(
                    tournament_completed_event(bracket.tournament_id, final.winner_id, final.loser_id)
                )
                logger.info(f"{bracket.tournament_id}: bracket completed, champion {final.winner_id}")
