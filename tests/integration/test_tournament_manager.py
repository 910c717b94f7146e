"""
Integration tests for TournamentManager against the test database.
Covers the registration window, bracket generation, result recording,
automatic completion with reward payouts, and player rankings.
"""
from datetime import datetime, timedelta

import pytest
from bracket_core.errors import (
    AlreadyGenerated,
    InvalidResult,
    RegistrationLocked,
    RoundNotComplete,
)
from bracket_core.events import EventType
from bracket_core.models import MatchKey
from bracket_core.state_machine import TransitionError, WindowAction
from club_service.models import PlayerRanking, Registration
from club_service.tournament_manager import (
    RegistrationRejected,
    TournamentManager,
    TournamentNotFound,
)

TID = 'test-tournament-001'


def start_tournament(manager, seeding_method='registration_order'):
    ok, _ = manager.perform_action(TID, 'close_registration')
    assert ok
    ok, bracket = manager.generate_bracket(TID, seeding_method=seeding_method)
    assert ok, bracket
    ok, _ = manager.perform_action(TID, 'start')
    assert ok
    return bracket


def play_all(manager, tournament_id=TID):
    """Record results until nothing is playable; the better seed always wins."""
    last = None
    while True:
        bracket = manager.get_bracket(tournament_id)
        pending = sorted(
            (m for m in bracket.matches.values()
             if not m.is_terminal and m.player1_id and m.player2_id),
            key=lambda m: m.key,
        )
        if not pending:
            return last
        match = pending[0]
        winner = min((match.player1_id, match.player2_id), key=lambda p: bracket.seeds[p])
        ok, last = manager.record_result(tournament_id, match.round_number, match.match_number, winner)
        assert ok, last


class TestTournamentLifecycle:
    """Tests for creation and lifecycle actions."""

    def test_create_stores_baseline_plan(self, manager, db_session):
        tournament = manager.create_tournament('Spring Open', tier='I', entry_fee=100_000,
                                               max_participants=16, game_format='9_ball')
        assert tournament.status == 'draft'
        assert tournament.tier == 2
        assert tournament.reward_plan['total_prize'] == 1_200_000

    def test_create_rejects_unknown_format(self, manager, db_session):
        with pytest.raises(ValueError):
            manager.create_tournament('Odd', game_format='snooker')

    def test_publish_and_open(self, manager, db_session):
        tournament = manager.create_tournament('Summer Cup')
        ok, _ = manager.perform_action(tournament.tournament_id, 'publish')
        assert ok
        ok, result = manager.perform_action(tournament.tournament_id, 'open_registration')
        assert ok
        assert result.status == 'registration_open'

    def test_illegal_action(self, manager, sample_tournament):
        ok, error = manager.perform_action(TID, 'start')
        assert not ok
        assert isinstance(error, TransitionError)

    def test_start_requires_bracket(self, manager, sample_tournament):
        manager.perform_action(TID, 'close_registration')
        ok, error = manager.perform_action(TID, 'start')
        assert not ok
        assert 'bracket' in str(error).lower()

    def test_unknown_tournament(self, manager, db_session):
        ok, error = manager.perform_action('missing', 'publish')
        assert not ok
        assert isinstance(error, TournamentNotFound)

    def test_state_change_published(self, app, db_session, mock_redis):
        manager = TournamentManager()
        manager.notifier.enabled = True
        manager.notifier.redis = mock_redis
        tournament = manager.create_tournament('Published')

        manager.perform_action(tournament.tournament_id, 'publish')

        assert mock_redis.publish.call_count == 2
        assert 'state.changed' in mock_redis.publish.call_args.args[1]


class TestRegistrations:
    """Tests for the registration operations."""

    def test_add(self, manager, sample_tournament):
        ok, registration = manager.add_registration(TID, 'newcomer', payment_status='paid')
        assert ok
        assert registration.player_id == 'newcomer'

    def test_duplicate_rejected(self, manager, sample_registrations):
        ok, error = manager.add_registration(TID, 'p1')
        assert not ok
        assert isinstance(error, RegistrationRejected)

    def test_full_rejected(self, manager, sample_registrations):
        ok, error = manager.add_registration(TID, 'p9')
        assert not ok
        assert 'full' in str(error)

    def test_closed_rejected(self, manager, sample_tournament):
        manager.perform_action(TID, 'close_registration')
        ok, error = manager.add_registration(TID, 'late')
        assert not ok
        assert isinstance(error, TransitionError)

    def test_update_payment(self, manager, sample_tournament):
        manager.add_registration(TID, 'payer')
        ok, registration = manager.update_payment(TID, 'payer', 'paid')
        assert ok
        assert registration.payment_status == 'paid'

    def test_remove_before_bracket(self, manager, sample_registrations):
        ok, _ = manager.remove_registration(TID, 'p8')
        assert ok
        assert Registration.query.filter_by(player_id='p8').first() is None

    def test_remove_after_bracket_locked(self, manager, sample_registrations):
        manager.perform_action(TID, 'close_registration')
        manager.generate_bracket(TID)
        ok, error = manager.remove_registration(TID, 'p8')
        assert not ok
        assert isinstance(error, RegistrationLocked)


class TestRegistrationWindow:
    """Tests for process_registration_window."""

    def test_finalizes_full_window(self, manager, sample_registrations):
        ok, action = manager.process_registration_window(TID, now=datetime.utcnow() + timedelta(days=4))
        assert ok
        assert action == WindowAction.FINALIZE
        assert manager.get_tournament(TID).status == 'registration_closed'

    def test_keeps_waiting(self, manager, sample_registrations):
        ok, action = manager.process_registration_window(TID)
        assert ok
        assert action == WindowAction.NONE
        assert manager.get_tournament(TID).status == 'registration_open'

    def test_cancels_short_field(self, manager, sample_tournament):
        manager.add_registration(TID, 'lonely', payment_status='paid')
        ok, action = manager.process_registration_window(TID, now=datetime.utcnow() + timedelta(days=4))
        assert ok
        assert action == WindowAction.CANCEL
        assert manager.get_tournament(TID).status == 'cancelled'


class TestBracketGeneration:
    """Tests for generate_bracket."""

    def test_generate(self, manager, sample_registrations):
        manager.perform_action(TID, 'close_registration')
        ok, bracket = manager.generate_bracket(TID, seeding_method='registration_order')

        assert ok
        assert bracket.total_rounds == 3
        stored = manager.get_bracket(TID)
        assert stored.seeds['p1'] == 1
        assert stored.get(MatchKey(1, 1)).player2_id == 'p8'

    def test_seeds_written_to_registrations(self, manager, sample_registrations):
        start_tournament(manager)
        assert Registration.query.filter_by(player_id='p5').first().seed_number == 5

    def test_requires_closed_registration(self, manager, sample_registrations):
        ok, error = manager.generate_bracket(TID)
        assert not ok
        assert isinstance(error, TransitionError)

    def test_second_generation_refused(self, manager, sample_registrations):
        start_tournament(manager)
        ok, error = manager.generate_bracket(TID)
        assert not ok
        assert isinstance(error, AlreadyGenerated)

    def test_ranked_seeding_uses_ratings(self, manager, sample_registrations, db_session):
        db_session.add(PlayerRanking(player_id='p8', elo_points=1900))
        db_session.commit()
        bracket = start_tournament(manager, seeding_method='ranked')
        assert bracket.seeds['p8'] == 1


class TestResults:
    """Tests for recording match results."""

    def test_requires_ongoing(self, manager, sample_registrations):
        manager.perform_action(TID, 'close_registration')
        manager.generate_bracket(TID)
        ok, error = manager.record_result(TID, 1, 1, 'p1')
        assert not ok
        assert isinstance(error, TransitionError)

    def test_result_rates_players(self, manager, sample_registrations):
        start_tournament(manager)
        ok, (result, extra) = manager.record_result(TID, 1, 1, 'p1', 3, 1)

        assert ok
        assert result.match.winner_id == 'p1'
        assert extra['promotion_eligible'] == []
        winner = manager.get_player_ranking('p1')
        loser = manager.get_player_ranking('p8')
        assert winner.elo_points > 1000 > loser.elo_points
        assert winner.wins == 1
        assert loser.total_matches == 1

    def test_resubmitted_result_not_rated_twice(self, manager, sample_registrations):
        start_tournament(manager)
        manager.record_result(TID, 1, 1, 'p1')
        elo = manager.get_player_ranking('p1').elo_points

        ok, (result, extra) = manager.record_result(TID, 1, 1, 'p1')

        assert ok
        assert 'promotion_eligible' not in extra
        assert manager.get_player_ranking('p1').elo_points == elo
        assert len(manager.get_rating_history('p1')) == 1

    def test_conflicting_result(self, manager, sample_registrations):
        start_tournament(manager)
        manager.record_result(TID, 1, 1, 'p1')
        ok, error = manager.record_result(TID, 1, 1, 'p8')
        assert not ok
        assert isinstance(error, InvalidResult)

    def test_failed_result_rolls_back(self, manager, sample_registrations):
        start_tournament(manager)
        ok, _ = manager.record_result(TID, 1, 1, 'p1', 1, 3)
        assert not ok
        assert manager.get_bracket(TID).get(MatchKey(1, 1)).winner_id is None
        assert manager.get_player_ranking('p1').total_matches == 0

    def test_round_two_created_automatically(self, manager, sample_registrations):
        start_tournament(manager)
        for match_number, winner in ((1, 'p1'), (2, 'p4'), (3, 'p2')):
            manager.record_result(TID, 1, match_number, winner)
        ok, (result, _) = manager.record_result(TID, 1, 4, 'p3')

        assert ok
        assert any(e.type == EventType.ROUND_GENERATED for e in result.events)
        bracket = manager.get_bracket(TID)
        assert bracket.current_round == 2
        second = bracket.get(MatchKey(2, 1))
        assert (second.player1_id, second.player2_id) == ('p1', 'p4')

    def test_match_status_actions(self, manager, sample_registrations):
        start_tournament(manager)
        ok, _ = manager.start_match(TID, 1, 2)
        assert ok
        ok, _ = manager.cancel_match(TID, 1, 2)
        assert ok
        ok, (result, _) = manager.restore_match(TID, 1, 2)
        assert ok
        assert result.match.status.value == 'scheduled'


class TestManualRounds:
    """Tests for round generation without auto-advance."""

    @pytest.fixture
    def manual(self, app):
        return TournamentManager(auto_advance=False)

    def test_next_round_waits_for_results(self, manual, sample_registrations):
        start_tournament(manual)
        ok, error = manual.generate_next_round(TID)
        assert not ok
        assert isinstance(error, RoundNotComplete)

    def test_next_round(self, manual, sample_registrations):
        start_tournament(manual)
        for match_number, winner in ((1, 'p1'), (2, 'p4'), (3, 'p2'), (4, 'p3')):
            manual.record_result(TID, 1, match_number, winner)
        assert not manual.get_bracket(TID).round_exists(2)

        ok, (result, _) = manual.generate_next_round(TID)

        assert ok
        assert [str(k) for k in result.created] == ['r2_m1', 'r2_m2']

    def test_retried_next_round_succeeds(self, manual, sample_registrations):
        start_tournament(manual)
        for match_number, winner in ((1, 'p1'), (2, 'p4'), (3, 'p2'), (4, 'p3')):
            manual.record_result(TID, 1, match_number, winner)
        manual.generate_next_round(TID)

        ok, (result, _) = manual.generate_next_round(TID)

        assert ok
        assert result.created == []
        assert len(manual.get_bracket(TID).round_matches(2)) == 2


class TestCompletion:
    """Tests for automatic completion and reward payouts."""

    def test_full_tournament(self, manager, sample_registrations):
        start_tournament(manager)
        _, extra = play_all(manager)

        tournament = manager.get_tournament(TID)
        assert tournament.status == 'completed'
        assert tournament.champion_id == 'p1'
        assert tournament.runner_up_id == 'p2'
        assert tournament.end_time is not None

        payouts = {p.player_id: p for p in extra['payouts']}
        assert payouts['p1'].position == 1
        assert payouts['p1'].cash_prize > payouts['p2'].cash_prize
        assert payouts['p8'].position == 8

    def test_standings(self, manager, sample_registrations):
        start_tournament(manager)
        play_all(manager)

        ok, standings = manager.get_standings(TID)

        assert ok
        assert [(s.player_id, s.position) for s in standings] == [
            ('p1', 1), ('p2', 2), ('p3', 3), ('p4', 4),
            ('p5', 8), ('p6', 8), ('p7', 8), ('p8', 8),
        ]

    def test_standings_before_finish(self, manager, sample_registrations):
        start_tournament(manager)
        ok, error = manager.get_standings(TID)
        assert not ok
        assert isinstance(error, RoundNotComplete)

    def test_rating_history(self, manager, sample_registrations):
        start_tournament(manager)
        play_all(manager)

        results = sorted(h.result for h in manager.get_rating_history('p1'))
        assert results == ['reward', 'win', 'win', 'win']
        ranking = manager.get_player_ranking('p1')
        assert ranking.spa_points > 0
        assert ranking.total_matches == 3

    def test_no_results_after_completion(self, manager, sample_registrations):
        start_tournament(manager)
        play_all(manager)
        ok, error = manager.record_result(TID, 1, 1, 'p1')
        assert not ok
        assert isinstance(error, TransitionError)


class TestRewards:
    """Tests for reward plan operations."""

    def test_get_falls_back_to_baseline(self, manager, sample_tournament):
        ok, plan = manager.get_rewards(TID)
        assert ok
        assert plan.total_prize == 280_000

    def test_recalculate_updates_parameters(self, manager, sample_tournament):
        ok, plan = manager.recalculate_rewards(TID, entry_fee=100_000)
        assert ok
        assert plan.total_prize == 560_000
        assert manager.get_tournament(TID).entry_fee == 100_000

    def test_update_rejects_over_budget(self, manager, sample_tournament):
        _, plan = manager.get_rewards(TID)
        data = plan.to_dict()
        data['positions'][0]['cash_prize'] = 10_000_000

        ok, error = manager.update_rewards(TID, data)

        assert not ok
        assert error.code == 'budget_exceeded'

    def test_update_with_template(self, manager, sample_tournament):
        ok, plan = manager.update_rewards(TID, None, template='basic')
        assert ok
        assert manager.get_tournament(TID).reward_plan['positions'][0]['items'] == plan.position(1).items

    def test_validate(self, manager, sample_tournament):
        ok, result = manager.validate_rewards(TID)
        assert ok
        assert result.is_valid


class TestPromotion:
    """Tests for rank promotion through the manager."""

    def test_check(self, manager, db_session):
        decision = manager.check_promotion('nobody')
        assert not decision.eligible

    def test_apply(self, manager, db_session):
        db_session.add(PlayerRanking(player_id='veteran', elo_points=1150, total_matches=25))
        db_session.commit()

        ok, promoted = manager.apply_promotion('veteran')

        assert ok
        assert promoted.rank_code == 'K+'
        assert manager.get_player_ranking('veteran').last_promotion_date is not None

    def test_apply_refused(self, manager, db_session):
        ok, error = manager.apply_promotion('nobody')
        assert not ok
        assert error.code == 'not_eligible_for_promotion'
