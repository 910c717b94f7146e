import logging
from typing import Dict, Iterable, List, Optional

from bracket_core import models as core
from bracket_core.state_machine import BracketState, MatchStatus

from .models import db, Tournament, Registration, Bracket, Match, PlayerRanking, RatingHistory

logger = logging.getLogger(__name__)


def _key(round_number, match_number) -> Optional[core.MatchKey]:
    if round_number is None or match_number is None:
        return None
    return core.MatchKey(round_number, match_number)


def _split(key: Optional[core.MatchKey]):
    return (key.round_number, key.match_number) if key else (None, None)


class BracketRepository:
    """
    Translates between table rows and engine snapshots.

    Nothing here commits; the caller owns the transaction.
    """

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        return Tournament.query.filter_by(tournament_id=tournament_id).first()

    # ==================== Brackets ====================

    def load_bracket(self, tournament_id: str) -> Optional[core.Bracket]:
        tournament = self.get_tournament(tournament_id)
        if not tournament or not tournament.bracket:
            return None

        record = tournament.bracket
        bracket = core.Bracket(
            tournament_id=tournament.tournament_id,
            participant_count=record.participant_count,
            total_players=record.total_players,
            total_rounds=record.total_rounds,
            current_round=record.current_round,
            status=BracketState(record.status),
            seeding_method=record.seeding_method,
            seeds={r.player_id: r.seed_number for r in tournament.registrations if r.seed_number},
        )
        for row in tournament.matches:
            bracket.add(self._to_match(row))
        return bracket

    def save_bracket(self, bracket: core.Bracket):
        tournament = self.get_tournament(bracket.tournament_id)
        if tournament is None:
            raise LookupError(f"Tournament {bracket.tournament_id} not found")

        record = tournament.bracket
        if record is None:
            record = Bracket(tournament=tournament)
            db.session.add(record)
        record.participant_count = bracket.participant_count
        record.total_players = bracket.total_players
        record.total_rounds = bracket.total_rounds
        record.current_round = bracket.current_round
        record.status = bracket.status.value
        record.seeding_method = bracket.seeding_method

        rows = {(m.round_number, m.match_number): m for m in tournament.matches}
        for key, match in bracket.matches.items():
            row = rows.pop(tuple(key), None)
            if row is None:
                row = Match(round_number=key.round_number, match_number=key.match_number)
                tournament.matches.append(row)
            self._fill_row(row, match)

        # Slots missing from the snapshot only happen on regeneration
        for stale in rows.values():
            tournament.matches.remove(stale)

        for registration in tournament.registrations:
            registration.seed_number = bracket.seeds.get(registration.player_id)

        tournament.seeding_method = bracket.seeding_method
        logger.debug(f"Saved bracket {bracket.tournament_id} ({len(bracket.matches)} matches)")

    def _to_match(self, row: Match) -> core.Match:
        return core.Match(
            key=core.MatchKey(row.round_number, row.match_number),
            player1_id=row.player1_id,
            player2_id=row.player2_id,
            score_player1=row.score_player1,
            score_player2=row.score_player2,
            winner_id=row.winner_id,
            loser_id=row.loser_id,
            status=MatchStatus(row.status),
            is_third_place_match=bool(row.is_third_place_match),
            is_bye=bool(row.is_bye),
            previous_match1=_key(row.previous_match1_round, row.previous_match1_number),
            previous_match2=_key(row.previous_match2_round, row.previous_match2_number),
            next_match=_key(row.next_match_round, row.next_match_number),
        )

    def _fill_row(self, row: Match, match: core.Match):
        row.player1_id = match.player1_id
        row.player2_id = match.player2_id
        row.score_player1 = match.score_player1
        row.score_player2 = match.score_player2
        row.winner_id = match.winner_id
        row.loser_id = match.loser_id
        row.status = match.status.value
        row.is_third_place_match = match.is_third_place_match
        row.is_bye = match.is_bye
        row.previous_match1_round, row.previous_match1_number = _split(match.previous_match1)
        row.previous_match2_round, row.previous_match2_number = _split(match.previous_match2)
        row.next_match_round, row.next_match_number = _split(match.next_match)

    # ==================== Registrations ====================

    def load_registrations(self, tournament_id: str) -> List[core.Registration]:
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            return []
        return [
            core.Registration(
                player_id=r.player_id,
                registration_status=r.registration_status,
                payment_status=r.payment_status,
                seed_number=r.seed_number,
                registration_date=r.registration_date,
            )
            for r in sorted(tournament.registrations, key=lambda r: (r.registration_date, r.id or 0))
        ]

    def get_registration(self, tournament: Tournament, player_id: str) -> Optional[Registration]:
        return Registration.query.filter_by(tournament_id=tournament.id, player_id=player_id).first()

    # ==================== Rankings ====================

    def _ranking_row(self, player_id: str) -> Optional[PlayerRanking]:
        return PlayerRanking.query.filter_by(player_id=player_id).first()

    def load_player_ranking(self, player_id: str) -> core.PlayerRanking:
        """Stored ranking, or a fresh K-rank ranking for a player never rated before."""
        row = self._ranking_row(player_id)
        if row is None:
            return core.PlayerRanking(player_id=player_id)
        return core.PlayerRanking(
            player_id=row.player_id,
            elo_points=row.elo_points,
            rank_code=row.rank_code,
            spa_points=row.spa_points,
            total_matches=row.total_matches,
            wins=row.wins,
            last_promotion_date=row.last_promotion_date,
        )

    def load_player_rankings(self, player_ids: Iterable[str]) -> Dict[str, core.PlayerRanking]:
        return {pid: self.load_player_ranking(pid) for pid in player_ids}

    def save_player_ranking(self, ranking: core.PlayerRanking) -> PlayerRanking:
        row = self._ranking_row(ranking.player_id)
        if row is None:
            row = PlayerRanking(player_id=ranking.player_id)
            db.session.add(row)
        row.elo_points = ranking.elo_points
        row.rank_code = ranking.rank_code
        row.spa_points = ranking.spa_points
        row.total_matches = ranking.total_matches
        row.wins = ranking.wins
        row.last_promotion_date = ranking.last_promotion_date
        return row

    def add_rating_history(
        self,
        player_id: str,
        old_rating: int,
        new_rating: int,
        result: str,
        tournament_id: str = None,
        match_id: str = None,
        opponent_rating: int = None,
        rating_change: int = None
    ):
        """Append an audit row; ``rating_change`` defaults to the stored difference."""
        row = self._ranking_row(player_id)
        if row is None:
            row = self.save_player_ranking(core.PlayerRanking(player_id=player_id))
        row.rating_history.append(RatingHistory(
            tournament_id=tournament_id,
            match_id=match_id,
            old_rating=old_rating,
            new_rating=new_rating,
            rating_change=new_rating - old_rating if rating_change is None else rating_change,
            opponent_rating=opponent_rating,
            result=result,
        ))

    def get_rating_history(self, player_id: str, limit: int = 50) -> List[RatingHistory]:
        row = self._ranking_row(player_id)
        if row is None:
            return []
        return (
            RatingHistory.query.filter_by(ranking_id=row.id)
            .order_by(RatingHistory.created_at.desc(), RatingHistory.id.desc())
            .limit(limit)
            .all()
        )
