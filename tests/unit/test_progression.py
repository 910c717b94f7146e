"""
Unit tests for ProgressionEngine.
Tests result recording, round generation, the third-place match,
completion and final standings.
"""
import pytest

from bracket_core.bracket_builder import BracketBuilder, SeedingMethod
from bracket_core.errors import (
    InvalidResult,
    MatchNotFound,
    NoFinalMatch,
    RoundNotComplete,
    SlotConflict,
)
from bracket_core.events import EventType
from bracket_core.models import MatchKey
from bracket_core.progression import (
    ProgressionEngine,
    derive_bracket_state,
    is_round_complete,
    is_tournament_complete,
)
from bracket_core.state_machine import BracketState, MatchStatus, TransitionError


def play_round(engine, bracket, round_number, pick=min):
    """Resolve every open match of a round in favour of the better seed."""
    for match in bracket.round_matches(round_number, include_third_place=True):
        if match.is_terminal:
            continue
        winner = pick((match.player1_id, match.player2_id), key=lambda pid: bracket.seeds[pid])
        bracket = engine.record_result(bracket, match.key, winner).bracket
    return bracket


def play_out(engine, bracket):
    guard = 0
    while not is_tournament_complete(bracket):
        bracket = play_round(engine, bracket, bracket.current_round)
        guard += 1
        assert guard < 10
    return bracket


class TestRecordResult:
    """Tests for completing a single match."""

    def test_completes_match(self, engine, bracket8):
        result = engine.record_result(bracket8, MatchKey(1, 1), 'p1', 7, 3)
        match = result.bracket.get(MatchKey(1, 1))
        assert match.status == MatchStatus.COMPLETED
        assert match.winner_id == 'p1'
        assert match.loser_id == 'p8'
        assert (match.score_player1, match.score_player2) == (7, 3)
        assert result.events[0].type == EventType.MATCH_ADVANCED

    def test_input_snapshot_untouched(self, engine, bracket8):
        engine.record_result(bracket8, MatchKey(1, 1), 'p1')
        assert bracket8.get(MatchKey(1, 1)).status == MatchStatus.SCHEDULED

    def test_winner_must_play(self, engine, bracket8):
        with pytest.raises(InvalidResult):
            engine.record_result(bracket8, MatchKey(1, 1), 'p2')

    def test_scores_must_agree(self, engine, bracket8):
        with pytest.raises(InvalidResult):
            engine.record_result(bracket8, MatchKey(1, 1), 'p1', 2, 5)

    def test_unknown_match(self, engine, bracket8):
        with pytest.raises(MatchNotFound):
            engine.record_result(bracket8, MatchKey(4, 1), 'p1')

    def test_same_result_twice_is_noop(self, engine, bracket8):
        first = engine.record_result(bracket8, MatchKey(1, 1), 'p1').bracket
        again = engine.record_result(first, MatchKey(1, 1), 'p1')
        assert again.events == []
        assert again.bracket.to_dict() == first.to_dict()

    def test_different_winner_rejected(self, engine, bracket8):
        first = engine.record_result(bracket8, MatchKey(1, 1), 'p1').bracket
        with pytest.raises(InvalidResult):
            engine.record_result(first, MatchKey(1, 1), 'p8')

    def test_cancelled_match_cannot_complete(self, engine, bracket8):
        cancelled = engine.cancel_match(bracket8, MatchKey(1, 1)).bracket
        with pytest.raises(TransitionError):
            engine.record_result(cancelled, MatchKey(1, 1), 'p1')

    def test_next_round_waits_for_whole_round(self, engine, bracket8):
        bracket = engine.record_result(bracket8, MatchKey(1, 1), 'p1').bracket
        bracket = engine.record_result(bracket, MatchKey(1, 2), 'p4').bracket
        assert not bracket.round_exists(2)
        assert bracket.status == BracketState.ROUND_IN_PROGRESS


class TestMatchStatus:
    """Tests for start/cancel/restore/reschedule."""

    def test_start(self, engine, bracket8):
        result = engine.start_match(bracket8, MatchKey(1, 1))
        assert result.bracket.get(MatchKey(1, 1)).status == MatchStatus.IN_PROGRESS
        assert result.events[0].type == EventType.MATCH_STARTED
        assert result.bracket.status == BracketState.ROUND_IN_PROGRESS

    def test_cancel_and_restore(self, engine, bracket8):
        cancelled = engine.cancel_match(bracket8, MatchKey(1, 2)).bracket
        assert cancelled.get(MatchKey(1, 2)).status == MatchStatus.CANCELLED
        restored = engine.restore_match(cancelled, MatchKey(1, 2)).bracket
        assert restored.get(MatchKey(1, 2)).status == MatchStatus.SCHEDULED

    def test_reschedule_then_complete(self, engine, bracket8):
        bracket = engine.reschedule_match(bracket8, MatchKey(1, 3)).bracket
        assert bracket.get(MatchKey(1, 3)).status == MatchStatus.RESCHEDULED
        bracket = engine.record_result(bracket, MatchKey(1, 3), 'p2').bracket
        assert bracket.get(MatchKey(1, 3)).winner_id == 'p2'

    def test_completed_is_terminal(self, engine, bracket8):
        bracket = engine.record_result(bracket8, MatchKey(1, 1), 'p1').bracket
        with pytest.raises(TransitionError):
            engine.cancel_match(bracket, MatchKey(1, 1))

    def test_bye_cannot_be_started(self, engine, builder):
        bracket = builder.build('t', ['a', 'b', 'c'], SeedingMethod.REGISTRATION_ORDER)
        with pytest.raises(InvalidResult):
            engine.start_match(bracket, MatchKey(1, 1))


class TestRoundGeneration:
    """Tests for next-round creation."""

    def test_auto_advance(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        assert bracket.current_round == 2
        second = bracket.round_matches(2)
        assert [(m.player1_id, m.player2_id) for m in second] == [('p1', 'p4'), ('p2', 'p3')]
        assert second[0].previous_match1 == MatchKey(1, 1)
        assert second[0].previous_match2 == MatchKey(1, 2)
        assert second[0].next_match == MatchKey(3, 1)

    def test_manual_mode_waits(self, bracket8):
        manual = ProgressionEngine(auto_advance=False)
        bracket = play_round(manual, bracket8, 1)
        assert not bracket.round_exists(2)
        assert bracket.status == BracketState.ROUND_COMPLETE

        result = manual.generate_next_round(bracket)
        assert len(result.created) == 2
        assert result.events[0].type == EventType.ROUND_GENERATED

    def test_incomplete_round_refused(self, bracket8):
        with pytest.raises(RoundNotComplete):
            ProgressionEngine(auto_advance=False).generate_next_round(bracket8, 1)

    def test_generate_twice_is_identical(self, bracket8):
        manual = ProgressionEngine(auto_advance=False)
        bracket = play_round(manual, bracket8, 1)
        once = manual.generate_next_round(bracket, 1).bracket
        twice = manual.generate_next_round(once, 1)
        assert twice.created == []
        assert twice.bracket.to_dict() == once.to_dict()

    def test_repeated_call_without_round_is_noop(self, bracket8):
        manual = ProgressionEngine(auto_advance=False)
        bracket = play_round(manual, bracket8, 1)
        once = manual.generate_next_round(bracket).bracket
        assert once.current_round == 2

        twice = manual.generate_next_round(once)

        assert twice.created == []
        assert twice.events == []
        assert twice.bracket.to_dict() == once.to_dict()

    def test_call_without_round_waits_once_play_started(self, bracket8):
        manual = ProgressionEngine(auto_advance=False)
        bracket = manual.generate_next_round(play_round(manual, bracket8, 1)).bracket
        bracket = manual.record_result(bracket, MatchKey(2, 1), 'p1').bracket
        with pytest.raises(RoundNotComplete):
            manual.generate_next_round(bracket)

    def test_generate_remaining_stops_at_open_round(self, bracket8):
        manual = ProgressionEngine(auto_advance=False)
        bracket = play_round(manual, bracket8, 1)
        result = manual.generate_remaining_rounds(bracket)
        assert result.bracket.round_exists(2)
        assert not result.bracket.round_exists(3)

    def test_byes_advance_without_play(self, engine, builder):
        bracket = builder.build('t', ['a', 'b', 'c', 'd', 'e'], SeedingMethod.REGISTRATION_ORDER)
        # 8 slots: a, b, c hold byes; d plays e
        assert is_round_complete(bracket, 1) is False
        bracket = engine.record_result(bracket, MatchKey(1, 2), 'd').bracket
        second = bracket.round_matches(2)
        assert [(m.player1_id, m.player2_id) for m in second] == [('a', 'd'), ('b', 'c')]

    def test_slot_conflict(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket.get(MatchKey(2, 1)).player1_id = 'intruder'
        bracket.get(MatchKey(1, 1)).status = MatchStatus.SCHEDULED
        bracket.get(MatchKey(1, 1)).winner_id = None
        with pytest.raises(SlotConflict):
            engine.record_result(bracket, MatchKey(1, 1), 'p1')


class TestThirdPlace:
    """Tests for third-place derivation."""

    def test_created_after_semifinals(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = engine.record_result(bracket, MatchKey(2, 1), 'p1').bracket
        assert bracket.third_place_match() is None

        result = engine.record_result(bracket, MatchKey(2, 2), 'p2')
        third = result.bracket.third_place_match()
        assert third is not None
        assert {third.player1_id, third.player2_id} == {'p4', 'p3'}
        assert third.key == MatchKey(3, 2)
        assert EventType.THIRD_PLACE_CREATED in [e.type for e in result.events]

    def test_created_once(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        again = engine.derive_third_place(bracket)
        assert again.created == []
        assert len([m for m in again.bracket.matches.values() if m.is_third_place_match]) == 1

    def test_not_for_two_players(self, engine, builder):
        bracket = builder.build('t', ['a', 'b'])
        bracket = engine.record_result(bracket, MatchKey(1, 1), 'a').bracket
        assert bracket.third_place_match() is None
        assert is_tournament_complete(bracket)

    def test_semifinal_bye_places_lone_loser_third(self, engine, builder):
        bracket = builder.build('t', ['a', 'b', 'c'], SeedingMethod.REGISTRATION_ORDER)
        bracket = engine.record_result(bracket, MatchKey(1, 2), 'b').bracket
        assert bracket.third_place_match() is None
        assert MatchKey(2, 2) not in bracket.matches

        result = engine.record_result(bracket, MatchKey(2, 1), 'a')

        assert result.tournament_complete
        assert result.bracket.status == BracketState.COMPLETED
        standings = [(s.player_id, s.position) for s in engine.final_standings(result.bracket)]
        assert standings == [('a', 1), ('b', 2), ('c', 3)]

    def test_final_round_excludes_third_place(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        assert len(bracket.round_matches(3)) == 1
        assert len(bracket.round_matches(3, include_third_place=True)) == 2


class TestCompletion:
    """Tests for tournament completion and standings."""

    def test_seed_round_trip(self, engine, bracket8):
        """Better seed always wins: seed 1 champion, seed 2 runner-up."""
        bracket = play_out(engine, bracket8)
        final = bracket.final_match()
        assert final.winner_id == 'p1'
        assert final.loser_id == 'p2'
        assert bracket.status == BracketState.COMPLETED

    def test_not_complete_while_third_place_open(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        result = engine.record_result(bracket, MatchKey(3, 1), 'p1')

        assert result.tournament_complete is False
        assert not is_tournament_complete(result.bracket)
        assert result.bracket.status == BracketState.AWAITING_THIRD_PLACE

    def test_third_place_closes_tournament(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        bracket = engine.record_result(bracket, MatchKey(3, 1), 'p1').bracket
        result = engine.record_result(bracket, MatchKey(3, 2), 'p3')

        assert result.tournament_complete
        completed = [e for e in result.events if e.type == EventType.TOURNAMENT_COMPLETED]
        assert completed[0].data['champion'] == 'p1'

    def test_finalize_incomplete(self, engine, bracket8):
        with pytest.raises(RoundNotComplete):
            engine.finalize(bracket8)

    def test_finalize_missing_final(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        for key in [k for k in bracket.matches if k.round_number == 3]:
            del bracket.matches[key]
        with pytest.raises(NoFinalMatch):
            engine.finalize(bracket)

    def test_finalize_complete(self, engine, bracket8):
        bracket = play_out(engine, bracket8)
        assert engine.finalize(bracket).tournament_complete

    def test_standings(self, engine, bracket8):
        bracket = play_out(engine, bracket8)
        places = {s.player_id: s.position for s in engine.final_standings(bracket)}
        assert places == {
            'p1': 1, 'p2': 2, 'p3': 3, 'p4': 4,
            'p5': 8, 'p6': 8, 'p7': 8, 'p8': 8,
        }

    def test_standings_need_completion(self, engine, bracket8):
        with pytest.raises(RoundNotComplete):
            engine.final_standings(bracket8)

    def test_sixteen_players(self, engine, builder):
        players = [f's{i + 1}' for i in range(16)]
        bracket = play_out(engine, builder.build('t16', players, SeedingMethod.REGISTRATION_ORDER))
        places = {s.player_id: s.position for s in engine.final_standings(bracket)}
        assert places['s1'] == 1
        assert places['s2'] == 2
        assert sorted(places.values()).count(16) == 8

    def test_odd_field(self, engine, builder):
        players = [f'o{i + 1}' for i in range(6)]
        bracket = play_out(engine, builder.build('t6', players, SeedingMethod.REGISTRATION_ORDER))
        assert bracket.final_match().winner_id == 'o1'
        assert bracket.final_match().loser_id == 'o2'


class TestDeriveBracketState:

    def test_seeded(self, bracket8):
        assert derive_bracket_state(bracket8, BracketState.SEEDED) == BracketState.SEEDED

    def test_final_pending(self, engine, bracket8):
        bracket = play_round(engine, bracket8, 1)
        bracket = play_round(engine, bracket, 2)
        assert bracket.status == BracketState.FINAL_PENDING
