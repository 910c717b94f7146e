"""
Unit tests for RankPromotion.
"""
from datetime import datetime, timedelta

import pytest
from bracket_core.errors import NotEligibleForPromotion
from bracket_core.models import PlayerRanking
from bracket_core.rank_promotion import RankPromotion
from bracket_core.ratings import Rank


@pytest.fixture
def promotion():
    return RankPromotion()


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0)


class TestNextRank:
    """Tests for rank ordering."""

    def test_plain_to_plus(self, promotion):
        assert promotion.next_rank('K') == Rank.K_PLUS

    def test_plus_to_next_letter(self, promotion):
        assert promotion.next_rank('H+') == Rank.G

    def test_top_rank(self, promotion):
        assert promotion.next_rank('E+') is None

    def test_unknown_rank(self, promotion):
        assert promotion.next_rank('Z') is None

    def test_threshold(self, promotion):
        assert promotion.elo_threshold('G') == 1600
        assert promotion.elo_threshold('nope') is None


class TestEligibility:
    """Tests for is_eligible_for_promotion."""

    def test_eligible(self, promotion, now):
        assert promotion.is_eligible_for_promotion(1100, 'K', 10, now=now)

    def test_too_few_matches(self, promotion, now):
        assert not promotion.is_eligible_for_promotion(1500, 'K', 9, now=now)

    def test_rating_below_next_floor(self, promotion, now):
        assert not promotion.is_eligible_for_promotion(1099, 'K', 20, now=now)

    def test_cooldown(self, promotion, now):
        recent = now - timedelta(days=6, hours=23)
        assert not promotion.is_eligible_for_promotion(1100, 'K', 20, recent, now)

    def test_cooldown_over(self, promotion, now):
        assert promotion.is_eligible_for_promotion(1100, 'K', 20, now - timedelta(days=7), now)

    def test_top_rank_never_eligible(self, promotion, now):
        assert not promotion.is_eligible_for_promotion(3000, 'E+', 100, now=now)


class TestEvaluate:

    def test_decision_fields(self, promotion, now):
        ranking = PlayerRanking('p1', elo_points=1250, rank_code='K+', total_matches=12)
        decision = promotion.evaluate(ranking, now)

        assert decision.eligible
        assert decision.next_rank == 'I'
        assert decision.elo_required == 1200
        assert decision.to_dict()['player_id'] == 'p1'

    def test_reason_explains_refusal(self, promotion, now):
        decision = promotion.evaluate(PlayerRanking('p1', total_matches=3), now)
        assert not decision.eligible
        assert '10' in decision.reason


class TestApplyPromotion:
    """Tests for apply_promotion."""

    def test_promotes_one_step(self, promotion, now):
        ranking = PlayerRanking('p1', elo_points=1450, rank_code='I+', total_matches=30)
        promoted = promotion.apply_promotion(ranking, now)

        assert promoted.rank_code == 'H'
        assert promoted.last_promotion_date == now
        assert ranking.rank_code == 'I+'

    def test_refuses_ineligible(self, promotion, now):
        with pytest.raises(NotEligibleForPromotion) as exc_info:
            promotion.apply_promotion(PlayerRanking('p1'), now)
        assert exc_info.value.details['player_id'] == 'p1'

    def test_second_promotion_waits_for_cooldown(self, promotion, now):
        ranking = PlayerRanking('p1', elo_points=1450, rank_code='I', total_matches=30)
        promoted = promotion.apply_promotion(ranking, now)
        with pytest.raises(NotEligibleForPromotion):
            promotion.apply_promotion(promoted, now + timedelta(days=1))
