import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from .errors import NotEligibleForPromotion
from .models import PlayerRanking
from .ratings import RANK_ELO, RANK_ORDER, Rank

logger = logging.getLogger(__name__)


@dataclass
class PromotionDecision:
    player_id: str
    current_rank: str
    next_rank: Optional[str]
    eligible: bool
    reason: str
    elo_required: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "current_rank": self.current_rank,
            "next_rank": self.next_rank,
            "eligible": self.eligible,
            "reason": self.reason,
            "elo_required": self.elo_required,
        }


class RankPromotion:
    """
    Decides whether a player has earned the next rank.

    Eligibility needs enough rated matches, a cooldown since the last
    promotion and a rating at or above the next rank's floor. Nothing here
    changes a ranking unless ``apply_promotion`` is called.
    """

    MIN_MATCHES = 10
    MIN_DAYS_BETWEEN_PROMOTIONS = 7

    def next_rank(self, current_rank) -> Optional[Rank]:
        rank = Rank.from_code(current_rank)
        if rank is None:
            return None
        index = RANK_ORDER.index(rank)
        if index + 1 >= len(RANK_ORDER):
            return None
        return RANK_ORDER[index + 1]

    def elo_threshold(self, rank) -> Optional[int]:
        parsed = Rank.from_code(rank)
        return RANK_ELO[parsed] if parsed else None

    def is_eligible_for_promotion(
        self,
        elo: int,
        current_rank,
        match_count: int,
        last_promotion_date: datetime = None,
        now: datetime = None
    ) -> bool:
        return self._check(elo, current_rank, match_count, last_promotion_date, now)[0]

    def evaluate(self, ranking: PlayerRanking, now: datetime = None) -> PromotionDecision:
        eligible, reason = self._check(
            ranking.elo_points, ranking.rank_code, ranking.total_matches,
            ranking.last_promotion_date, now
        )
        nxt = self.next_rank(ranking.rank_code)
        return PromotionDecision(
            player_id=ranking.player_id,
            current_rank=ranking.rank_code,
            next_rank=nxt.value if nxt else None,
            eligible=eligible,
            reason=reason,
            elo_required=self.elo_threshold(nxt) if nxt else None,
        )

    def apply_promotion(self, ranking: PlayerRanking, now: datetime = None) -> PlayerRanking:
        """Move a ranking up one rank; raises NotEligibleForPromotion otherwise."""
        now = now or datetime.utcnow()
        decision = self.evaluate(ranking, now)
        if not decision.eligible:
            raise NotEligibleForPromotion(
                decision.reason, player_id=ranking.player_id, rank=ranking.rank_code
            )

        logger.info(f"Promoting {ranking.player_id} from {decision.current_rank} to {decision.next_rank}")
        return replace(ranking, rank_code=decision.next_rank, last_promotion_date=now)

    def _check(self, elo, current_rank, match_count, last_promotion_date, now):
        if match_count < self.MIN_MATCHES:
            return False, f"Needs at least {self.MIN_MATCHES} rated matches ({match_count} played)"

        if last_promotion_date is not None:
            days = ((now or datetime.utcnow()) - last_promotion_date).days
            if days < self.MIN_DAYS_BETWEEN_PROMOTIONS:
                return False, (
                    f"Last promotion was {days} days ago, "
                    f"{self.MIN_DAYS_BETWEEN_PROMOTIONS} required"
                )

        nxt = self.next_rank(current_rank)
        if nxt is None:
            return False, f"No rank above {current_rank}"

        threshold = self.elo_threshold(nxt)
        if elo < threshold:
            return False, f"{nxt.value} requires {threshold} ELO, has {elo}"
        return True, f"Eligible for {nxt.value}"
