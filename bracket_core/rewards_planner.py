import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import BudgetExceeded, InvalidPosition, InvalidRewardPlan
from .models import (
    FinalStanding,
    PlayerRanking,
    RewardParams,
    RewardPayout,
    RewardPlan,
    RewardPosition,
    SpecialAward,
    ValidationResult,
)
from .reward_table import (
    GameFormat,
    TournamentTier,
    calculate_tournament_elo,
    calculate_tournament_spa,
    default_items,
    position_elo,
    position_for_place,
    position_name,
    position_spa,
    prize_distribution,
    valid_positions,
)
from .ratings import round_half_up

logger = logging.getLogger(__name__)


SPECIAL_AWARD_MIN_TIER = TournamentTier.H
SPECIAL_AWARD_MIN_REVENUE = 1_000_000
BEST_BREAK_SHARE = 0.02
UNDER_DISTRIBUTION_RATIO = 0.8

TEMPLATES = {
    "basic": {
        "positions": {
            1: ["Trophy", "Certificate"],
            2: ["Silver medal"],
            3: ["Bronze medal"],
        },
        "special_awards": [],
    },
    "premium": {
        "positions": {
            1: ["Gold trophy", "Certificate", "T-shirt"],
            2: ["Silver trophy", "Certificate"],
            3: ["Bronze trophy", "Certificate"],
            4: ["Certificate"],
        },
        "special_awards": [
            ("best-break", "Best break", "Most impressive break of the tournament"),
        ],
    },
    "championship": {
        "positions": {
            1: ["Championship trophy", "Gold medal", "T-shirt", "Cue"],
            2: ["Runner-up trophy", "Silver medal", "T-shirt"],
            3: ["Third place trophy", "Bronze medal", "T-shirt"],
            4: ["Honourable mention medal"],
        },
        "special_awards": [
            ("best-break", "Best break", "Most impressive break of the tournament"),
            ("highest-run", "Highest run", "Longest run of the tournament"),
            ("fair-play", "Fair play", "Outstanding sportsmanship"),
        ],
    },
}


def _params(tier, entry_fee, max_participants, game_format) -> RewardParams:
    return RewardParams(
        tier=int(TournamentTier.parse(tier)),
        entry_fee=int(entry_fee),
        max_participants=int(max_participants),
        game_format=GameFormat(game_format).value,
    )


def split_cash(amount: int, holders: int, index: int) -> int:
    """Share of ``amount`` for the ``index``-th of ``holders`` tied players; never pays out more than ``amount``."""
    share, leftover = divmod(amount, holders)
    return share + (1 if index < leftover else 0)


class RewardsPlanner:
    """
    Builds, re-derives and checks tournament reward plans.

    A plan is a pure function of (tier, entry fee, max participants, game
    format); the parameters are kept on the plan so a later recalculation can
    tell organiser edits apart from baseline values.
    """

    def calculate_rewards(
        self,
        tier,
        entry_fee: int,
        max_participants: int,
        game_format
    ) -> RewardPlan:
        params = _params(tier, entry_fee, max_participants, game_format)
        tier = TournamentTier(params.tier)
        fmt = GameFormat(params.game_format)

        total_revenue = params.entry_fee * params.max_participants
        total_prize = round_half_up(total_revenue * tier.prize_percentage)

        distribution = prize_distribution(params.max_participants)
        positions = [
            RewardPosition(
                position=position,
                name=position_name(position),
                elo_points=position_elo(tier, fmt, position),
                spa_points=position_spa(tier, position),
                cash_prize=round_half_up(total_prize * distribution.get(position, 0)),
                items=default_items(position),
                is_visible=True,
            )
            for position in valid_positions(params.max_participants)
        ]

        return RewardPlan(
            total_prize=total_prize,
            positions=positions,
            special_awards=self._special_awards(tier, total_revenue),
            show_prizes=params.entry_fee > 0,
            params=params,
        )

    def _special_awards(self, tier: TournamentTier, total_revenue: int) -> List[SpecialAward]:
        if tier < SPECIAL_AWARD_MIN_TIER or total_revenue < SPECIAL_AWARD_MIN_REVENUE:
            return []
        return [
            SpecialAward(
                id="best-break",
                name="Best break",
                description="Most impressive break of the tournament",
                cash_prize=round_half_up(total_revenue * BEST_BREAK_SHARE),
            )
        ]

    def recalculate_rewards(
        self,
        existing: RewardPlan,
        tier,
        entry_fee: int,
        max_participants: int,
        game_format,
        preserve_customizations: bool = True,
        previous_params: Optional[RewardParams] = None
    ) -> RewardPlan:
        """
        Rebuild the baseline for new parameters, optionally keeping edits.

        A cash prize counts as edited only when it differs from what the old
        baseline produced for that position. Custom items and visibility are
        always carried over; special awards missing from the new baseline are
        kept unless the baseline now has one with the same id.
        """
        baseline = self.calculate_rewards(tier, entry_fee, max_participants, game_format)
        if not preserve_customizations:
            return baseline

        old_params = previous_params or existing.params
        old_baseline = self.calculate_rewards(
            old_params.tier, old_params.entry_fee, old_params.max_participants, old_params.game_format
        ) if old_params else None

        positions = []
        for base in baseline.positions:
            current = existing.position(base.position)
            if current is None:
                positions.append(base)
                continue

            old_default = old_baseline.position(base.position) if old_baseline else None
            cash_edited = old_default is None or current.cash_prize != old_default.cash_prize
            positions.append(replace(
                base,
                cash_prize=current.cash_prize if cash_edited else base.cash_prize,
                items=list(current.items) if current.items else list(base.items),
                is_visible=current.is_visible,
            ))

        baseline_ids = {a.id for a in baseline.special_awards}
        carried = [a for a in existing.special_awards if a.id not in baseline_ids]

        return replace(
            baseline,
            positions=positions,
            special_awards=baseline.special_awards + carried,
        )

    def validate_rewards(self, plan: RewardPlan, max_participants: int) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        total_awarded = plan.total_cash
        if total_awarded > plan.total_prize:
            errors.append(
                f"Total payout exceeds the prize budget ({total_awarded:,} > {plan.total_prize:,})"
            )
        if total_awarded < plan.total_prize * UNDER_DISTRIBUTION_RATIO:
            share = (total_awarded / plan.total_prize * 100) if plan.total_prize else 0.0
            warnings.append(f"Only {share:.1f}% of the prize budget is distributed")

        allowed = valid_positions(max_participants)
        invalid = [p.position for p in plan.positions if p.position not in allowed]
        if invalid:
            errors.append(
                f"Positions not valid for {max_participants} participants: "
                f"{', '.join(str(p) for p in invalid)}"
            )

        if any(p.elo_points < 0 or p.spa_points < 0 or p.cash_prize < 0 for p in plan.positions):
            errors.append("Reward values must not be negative")

        if plan.position(1) is None:
            errors.append("A first place reward is required")

        if max_participants >= 4 and plan.position(2) is None:
            warnings.append("Tournaments with 4 or more players should reward second place")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def ensure_valid(self, plan: RewardPlan, max_participants: int) -> ValidationResult:
        """Like validate_rewards, but raises on the first blocking problem."""
        result = self.validate_rewards(plan, max_participants)
        if result.is_valid:
            return result

        if plan.total_cash > plan.total_prize:
            raise BudgetExceeded(result.errors[0], errors=result.errors)
        allowed = valid_positions(max_participants)
        if any(p.position not in allowed for p in plan.positions):
            raise InvalidPosition(result.errors[0], errors=result.errors)
        raise InvalidRewardPlan(result.errors[0], errors=result.errors)

    def template_rewards(self, template: str) -> dict:
        if template not in TEMPLATES:
            raise InvalidRewardPlan(f"Unknown reward template '{template}'")
        return TEMPLATES[template]

    def apply_template(self, plan: RewardPlan, template: str) -> RewardPlan:
        """Replace item lists with a template's and add its (unfunded) special awards."""
        chosen = self.template_rewards(template)
        positions = [
            replace(p, items=list(chosen["positions"].get(p.position, p.items)))
            for p in plan.positions
        ]
        existing_ids = {a.id for a in plan.special_awards}
        awards = list(plan.special_awards) + [
            SpecialAward(id=award_id, name=name, description=description, cash_prize=0)
            for award_id, name, description in chosen["special_awards"]
            if award_id not in existing_ids
        ]
        return replace(plan, positions=positions, special_awards=awards)

    def distribute_rewards(
        self,
        plan: RewardPlan,
        standings: Iterable[FinalStanding],
        rankings: Dict[str, PlayerRanking]
    ) -> Tuple[List[RewardPayout], Dict[str, PlayerRanking]]:
        """
        Pay out a finished tournament.

        Places listed in the plan pay the plan's values. Cash for a place held
        by several players (everyone knocked out in the same round) is split
        evenly between them; leftover units go to the players listed first,
        which for engine standings means the better seeds. Anyone on a place
        the plan does not list gets the participation ELO and the rank based
        participation SPA, and no cash. Returns the payouts and updated
        ranking snapshots.
        """
        standings = list(standings)
        tied: Dict[int, int] = {}
        for standing in standings:
            tied[standing.position] = tied.get(standing.position, 0) + 1
        seen: Dict[int, int] = {}

        payouts: List[RewardPayout] = []
        updated: Dict[str, PlayerRanking] = {}

        for standing in standings:
            ranking = rankings.get(standing.player_id) or PlayerRanking(player_id=standing.player_id)
            reward = plan.position(standing.position)
            if reward is not None:
                elo, spa = reward.elo_points, reward.spa_points
                cash = split_cash(reward.cash_prize, tied[standing.position], seen.get(standing.position, 0))
                seen[standing.position] = seen.get(standing.position, 0) + 1
            else:
                position = position_for_place(standing.position)
                elo = calculate_tournament_elo(position)
                spa = calculate_tournament_spa(position, ranking.rank_code)
                cash = 0

            payouts.append(RewardPayout(
                player_id=standing.player_id,
                position=standing.position,
                elo_points=elo,
                spa_points=spa,
                cash_prize=cash,
            ))
            updated[standing.player_id] = replace(
                ranking,
                elo_points=ranking.elo_points + elo,
                spa_points=ranking.spa_points + spa,
            )

        logger.info(
            f"Distributed rewards to {len(payouts)} players "
            f"({sum(p.cash_prize for p in payouts):,} cash)"
        )
        return payouts, updated
