import logging
import math
import random
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .errors import AlreadyGenerated, InsufficientParticipants, RegistrationLocked
from .models import Bracket, Match, MatchKey, Registration
from .state_machine import BracketState, MatchStatus

logger = logging.getLogger(__name__)


class SeedingMethod(str, Enum):
    RANKED = "ranked"
    RANDOM = "random"
    REGISTRATION_ORDER = "registration_order"


ACTIVE_REGISTRATION_STATUSES = ("confirmed",)


def next_power_of_2(n: int) -> int:
    """Round up to next power of 2."""
    p = 1
    while p < n:
        p *= 2
    return p


def seeding_order(size: int) -> List[int]:
    """
    Seed numbers in bracket slot order for a power-of-two bracket.

    Each doubling pairs every seed s with size + 1 - s, so seed 1 meets the
    lowest seed and the top two seeds can only meet in the final:
    8 -> [1, 8, 4, 5, 2, 7, 3, 6].
    """
    order = [1]
    while len(order) < size:
        span = len(order) * 2 + 1
        order = [s for seed in order for s in (seed, span - seed)]
    return order


def eligible_registrations(registrations: Sequence[Registration],
                           require_payment: bool = False) -> List[Registration]:
    """Registrations that take a bracket slot, earliest first."""
    eligible = [
        r for r in registrations
        if r.registration_status in ACTIVE_REGISTRATION_STATUSES
        and (not require_payment or r.payment_status == "paid")
    ]
    return sorted(eligible, key=lambda r: r.registration_date)


def seed_participants(
    participants: Sequence[str],
    method=SeedingMethod.RANKED,
    ratings: Optional[Dict[str, int]] = None,
    rng: Optional[random.Random] = None
) -> List[str]:
    """
    Order participants from seed 1 downwards.

    RANKED sorts by rating, highest first, keeping the given order for ties
    and for unrated players. REGISTRATION_ORDER keeps the given order. RANDOM
    shuffles with the supplied generator.
    """
    method = SeedingMethod(method)
    ordered = list(participants)
    if method == SeedingMethod.RANKED:
        ratings = ratings or {}
        ordered.sort(key=lambda pid: -ratings.get(pid, 0))
    elif method == SeedingMethod.RANDOM:
        (rng or random.Random()).shuffle(ordered)
    return ordered


class BracketBuilder:
    """Seeds participants into a single-elimination tree and emits round one."""

    def build(
        self,
        tournament_id: str,
        participants: Sequence[str],
        seeding_method=SeedingMethod.RANKED,
        ratings: Optional[Dict[str, int]] = None,
        existing: Optional[Bracket] = None,
        force_regenerate: bool = False,
        rng: Optional[random.Random] = None
    ) -> Bracket:
        if len(set(participants)) != len(participants):
            raise ValueError("Participants must be unique")
        n = len(participants)
        if n < 2:
            raise InsufficientParticipants(
                f"At least 2 participants are required, got {n}", participant_count=n
            )
        if existing is not None:
            self._check_regeneration(existing, force_regenerate)

        method = SeedingMethod(seeding_method)
        seeded = seed_participants(participants, method, ratings, rng)
        size = next_power_of_2(n)
        total_rounds = size.bit_length() - 1  # ceil(log2(n))

        bracket = Bracket(
            tournament_id=tournament_id,
            participant_count=n,
            total_players=size,
            total_rounds=total_rounds,
            current_round=1,
            status=BracketState.SEEDED,
            seeding_method=method.value,
            seeds={pid: i + 1 for i, pid in enumerate(seeded)},
        )

        order = seeding_order(size)
        for index in range(size // 2):
            high, low = sorted((order[2 * index], order[2 * index + 1]))
            bracket.add(self._first_round_match(
                index + 1,
                seeded[high - 1],
                seeded[low - 1] if low <= n else None,
                total_rounds,
            ))

        logger.info(
            f"Built bracket for {tournament_id}: {n} players, {total_rounds} rounds, "
            f"{size - n} byes ({method.value} seeding)"
        )
        return bracket

    def _first_round_match(self, match_number: int, player1: str, player2: Optional[str],
                           total_rounds: int) -> Match:
        next_match = (
            MatchKey(2, math.ceil(match_number / 2)) if total_rounds > 1 else None
        )
        match = Match(
            key=MatchKey(1, match_number),
            player1_id=player1,
            player2_id=player2,
            next_match=next_match,
        )
        if player2 is None:
            # Byes are settled at creation so progression treats them like any result.
            match.is_bye = True
            match.status = MatchStatus.COMPLETED
            match.winner_id = player1
        return match

    def _check_regeneration(self, existing: Bracket, force_regenerate: bool):
        if not force_regenerate:
            raise AlreadyGenerated(
                f"Bracket already generated for {existing.tournament_id}",
                tournament_id=existing.tournament_id,
            )
        played = existing.completed_matches()
        if played:
            raise AlreadyGenerated(
                f"Cannot regenerate bracket for {existing.tournament_id}: "
                f"{len(played)} matches already completed",
                tournament_id=existing.tournament_id,
                completed_matches=len(played),
            )


def ensure_registration_removable(bracket_generated: bool, player_id: str = None):
    """Registrations are frozen once a bracket exists; repair it explicitly first."""
    if bracket_generated:
        raise RegistrationLocked(
            "Registrations cannot be removed after the bracket has been generated",
            player_id=player_id,
        )
