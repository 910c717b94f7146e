import uuid
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from bracket_core.bracket_builder import (
    BracketBuilder,
    SeedingMethod,
    eligible_registrations,
    ensure_registration_removable,
)
from bracket_core.errors import BracketError, InvalidResult
from bracket_core.events import (
    Event,
    EventType,
    bracket_generated_event,
    rank_promoted_event,
    state_changed_event,
)
from bracket_core.models import MatchKey, RewardPlan
from bracket_core.progression import ProgressionEngine, ProgressionResult, is_tournament_complete
from bracket_core.rank_promotion import RankPromotion
from bracket_core.ratings import RatingEngine
from bracket_core.rewards_planner import RewardsPlanner
from bracket_core.state_machine import (
    TournamentStateMachine,
    TournamentStatus,
    TransitionError,
    WindowAction,
    registration_window_action,
)

from .models import db, Tournament, Registration
from .notifier import Notifier
from .repository import BracketRepository

logger = logging.getLogger(__name__)


class TournamentNotFound(BracketError):
    code = "tournament_not_found"


class RegistrationNotFound(BracketError):
    code = "registration_not_found"


class RegistrationRejected(BracketError):
    code = "registration_rejected"


class TournamentManager:
    """
    Runs engine operations against stored tournaments.

    Each public method loads a snapshot, applies one engine operation, writes
    the result and commits, in that order. Any engine or database error rolls
    the session back. Methods return ``(ok, payload)``; on failure the payload
    is the error, so the HTTP layer can report its code. Events are published
    only after the commit.
    """

    def __init__(
        self,
        notifier: Notifier = None,
        auto_advance: bool = True,
        default_seeding_method: str = SeedingMethod.RANKED.value,
        require_payment: bool = False
    ):
        self.notifier = notifier or Notifier(enabled=False)
        self.repo = BracketRepository()
        self.builder = BracketBuilder()
        self.engine = ProgressionEngine(auto_advance=auto_advance)
        self.ratings = RatingEngine()
        self.promotion = RankPromotion()
        self.planner = RewardsPlanner()
        self.default_seeding_method = default_seeding_method
        self.require_payment = require_payment

    # ==================== Plumbing ====================

    def _run(self, operation: str, fn) -> Tuple[bool, object]:
        events: List[Event] = []
        try:
            payload = fn(events)
            db.session.commit()
        except (BracketError, TransitionError) as e:
            db.session.rollback()
            logger.info(f"{operation} rejected: {e}")
            return False, e
        except ValueError as e:
            db.session.rollback()
            logger.info(f"{operation} rejected: {e}")
            return False, InvalidResult(str(e))
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"{operation} failed: {e}")
            raise

        if events:
            self.notifier.publish_all(events)
        return True, payload

    def _tournament(self, tournament_id: str) -> Tournament:
        tournament = self.repo.get_tournament(tournament_id)
        if not tournament:
            raise TournamentNotFound(f"Tournament {tournament_id} not found", tournament_id=tournament_id)
        return tournament

    def _bracket(self, tournament_id: str):
        bracket = self.repo.load_bracket(tournament_id)
        if bracket is None:
            raise TournamentNotFound(
                f"No bracket generated for {tournament_id}", tournament_id=tournament_id
            )
        return bracket

    def _transition(self, tournament: Tournament, action: str, events: List[Event], context: dict = None):
        sm = TournamentStateMachine.from_state_string(tournament.status)
        old_state = sm.state
        new_state = sm.transition(action, context)
        tournament.status = new_state.value
        events.append(state_changed_event(tournament.tournament_id, old_state.value, new_state.value))
        logger.info(f"Tournament {tournament.tournament_id}: {old_state.value} -> {new_state.value}")

    def _require_status(self, tournament: Tournament, *statuses: TournamentStatus):
        if tournament.status not in [s.value for s in statuses]:
            raise TransitionError(
                tournament.status,
                statuses[0].value,
                f"Tournament is {tournament.status}, expected {' or '.join(s.value for s in statuses)}"
            )

    # ==================== Tournaments ====================

    def create_tournament(
        self,
        name: str,
        tier=1,
        entry_fee: int = 0,
        max_participants: int = 16,
        game_format: str = '9_ball',
        registration_start: datetime = None,
        registration_end: datetime = None
    ) -> Tournament:
        """Create a draft tournament with its baseline reward plan."""
        plan = self.planner.calculate_rewards(tier, entry_fee, max_participants, game_format)

        tournament = Tournament(
            tournament_id=f"t_{uuid.uuid4().hex[:12]}",
            name=name,
            status=TournamentStatus.DRAFT.value,
            tier=plan.params.tier,
            entry_fee=plan.params.entry_fee,
            max_participants=plan.params.max_participants,
            game_format=plan.params.game_format,
            reward_plan=plan.to_dict(),
            registration_start=registration_start,
            registration_end=registration_end,
        )
        db.session.add(tournament)
        db.session.commit()

        logger.info(f"Created tournament {tournament.tournament_id} ({name})")
        return tournament

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        return self.repo.get_tournament(tournament_id)

    def list_tournaments(self, status: str = None, limit: int = 50, offset: int = 0) -> List[Tournament]:
        query = Tournament.query
        if status:
            query = query.filter_by(status=status)
        query = query.order_by(Tournament.created_at.desc())
        return query.offset(offset).limit(limit).all()

    def perform_action(self, tournament_id: str, action: str):
        """Apply a lifecycle action (publish, open_registration, start, complete, cancel...)."""
        def op(events):
            tournament = self._tournament(tournament_id)
            bracket = self.repo.load_bracket(tournament_id)

            if action == 'start':
                if bracket is None:
                    raise TransitionError(tournament.status, TournamentStatus.ONGOING.value,
                                          "Generate the bracket before starting the tournament")
                tournament.start_time = datetime.utcnow()

            if action == 'complete':
                if bracket is None:
                    raise TransitionError(tournament.status, TournamentStatus.COMPLETED.value,
                                          "Tournament has no bracket")
                result = self.engine.finalize(bracket)
                self._complete_tournament(tournament, result.bracket, events)
                return tournament

            self._transition(tournament, action, events)
            return tournament

        return self._run(f"{action} {tournament_id}", op)

    def _complete_tournament(self, tournament: Tournament, bracket, events: List[Event]):
        """Close out a finished bracket: status, champion, reward payouts."""
        self._transition(
            tournament, 'complete', events, {'bracket_complete': is_tournament_complete(bracket)}
        )
        final = bracket.final_match()
        tournament.champion_id = final.winner_id
        tournament.runner_up_id = final.loser_id
        tournament.end_time = datetime.utcnow()

        standings = self.engine.final_standings(bracket)
        plan = self._reward_plan(tournament)
        rankings = self.repo.load_player_rankings(s.player_id for s in standings)
        payouts, updated = self.planner.distribute_rewards(plan, standings, rankings)

        for payout in payouts:
            before = rankings[payout.player_id]
            after = updated[payout.player_id]
            self.repo.save_player_ranking(after)
            self.repo.add_rating_history(
                payout.player_id, before.elo_points, after.elo_points, 'reward',
                tournament_id=tournament.tournament_id,
            )

        logger.info(
            f"Tournament {tournament.tournament_id} completed, champion {tournament.champion_id}"
        )
        return payouts

    # ==================== Registrations ====================

    def add_registration(
        self,
        tournament_id: str,
        player_id: str,
        payment_status: str = 'pending'
    ):
        def op(events):
            tournament = self._tournament(tournament_id)
            self._require_status(tournament, TournamentStatus.REGISTRATION_OPEN)
            if self.repo.get_registration(tournament, player_id):
                raise RegistrationRejected(f"{player_id} is already registered", player_id=player_id)

            confirmed = [r for r in tournament.registrations if r.registration_status == 'confirmed']
            if len(confirmed) >= tournament.max_participants:
                raise RegistrationRejected(
                    f"Tournament is full ({tournament.max_participants} players)", player_id=player_id
                )

            registration = Registration(
                player_id=player_id,
                payment_status=payment_status,
                registration_status='confirmed',
            )
            tournament.registrations.append(registration)
            return registration

        return self._run(f"register {player_id} for {tournament_id}", op)

    def update_payment(self, tournament_id: str, player_id: str, payment_status: str):
        def op(events):
            tournament = self._tournament(tournament_id)
            registration = self.repo.get_registration(tournament, player_id)
            if registration is None:
                raise RegistrationNotFound(f"{player_id} is not registered", player_id=player_id)
            registration.payment_status = payment_status
            return registration

        return self._run(f"update payment for {player_id}", op)

    def remove_registration(self, tournament_id: str, player_id: str):
        def op(events):
            tournament = self._tournament(tournament_id)
            ensure_registration_removable(tournament.bracket is not None, player_id)
            registration = self.repo.get_registration(tournament, player_id)
            if registration is None:
                raise RegistrationNotFound(f"{player_id} is not registered", player_id=player_id)
            tournament.registrations.remove(registration)
            return player_id

        return self._run(f"unregister {player_id} from {tournament_id}", op)

    def process_registration_window(self, tournament_id: str, now: datetime = None):
        """Close or cancel an open registration window depending on paid sign-ups."""
        def op(events):
            tournament = self._tournament(tournament_id)
            if tournament.status != TournamentStatus.REGISTRATION_OPEN.value or not tournament.registration_end:
                return WindowAction.NONE

            active = [
                r for r in self.repo.load_registrations(tournament_id)
                if r.registration_status == 'confirmed'
            ]
            action, selected = registration_window_action(
                active, tournament.max_participants, tournament.registration_end, now or datetime.utcnow()
            )

            if action == WindowAction.FINALIZE:
                keep = {r.player_id for r in selected}
                for row in tournament.registrations:
                    if row.registration_status == 'confirmed' and row.player_id not in keep:
                        row.registration_status = 'waitlisted'
                self._transition(tournament, 'close_registration', events)
            elif action == WindowAction.CANCEL:
                self._transition(tournament, 'cancel', events)
            return action

        return self._run(f"registration window for {tournament_id}", op)

    # ==================== Bracket ====================

    def generate_bracket(self, tournament_id: str, seeding_method: str = None,
                         force_regenerate: bool = False, rng=None):
        def op(events):
            tournament = self._tournament(tournament_id)
            sm = TournamentStateMachine.from_state_string(tournament.status)
            if not sm.can_generate_bracket:
                raise TransitionError(
                    tournament.status, "bracket",
                    f"Cannot generate a bracket while tournament is {tournament.status}"
                )

            registrations = eligible_registrations(
                self.repo.load_registrations(tournament_id), require_payment=self.require_payment
            )
            participants = [r.player_id for r in registrations]
            ratings = {
                pid: ranking.elo_points
                for pid, ranking in self.repo.load_player_rankings(participants).items()
            }

            bracket = self.builder.build(
                tournament_id,
                participants,
                seeding_method=seeding_method or self.default_seeding_method,
                ratings=ratings,
                existing=self.repo.load_bracket(tournament_id),
                force_regenerate=force_regenerate,
                rng=rng,
            )
            self.repo.save_bracket(bracket)
            events.append(bracket_generated_event(
                tournament_id, bracket.participant_count, bracket.total_rounds, bracket.bye_count
            ))
            return bracket

        return self._run(f"generate bracket for {tournament_id}", op)

    def get_bracket(self, tournament_id: str):
        return self.repo.load_bracket(tournament_id)

    def get_standings(self, tournament_id: str):
        def op(events):
            return self.engine.final_standings(self._bracket(tournament_id))

        return self._run(f"standings for {tournament_id}", op)

    # ==================== Matches ====================

    def _progress(self, tournament_id: str, operation: str, step):
        """Load the bracket, apply ``step`` and persist whatever it changed."""
        def op(events):
            tournament = self._tournament(tournament_id)
            self._require_status(tournament, TournamentStatus.ONGOING)
            result: ProgressionResult = step(self._bracket(tournament_id))

            extra = {}
            if any(e.type == EventType.MATCH_ADVANCED for e in result.events) and result.match:
                extra['promotion_eligible'] = self._rate_match(tournament_id, result.match)

            self.repo.save_bracket(result.bracket)
            events.extend(result.events)

            if any(e.type == EventType.TOURNAMENT_COMPLETED for e in result.events):
                extra['payouts'] = self._complete_tournament(tournament, result.bracket, events)

            return result, extra

        return self._run(f"{operation} {tournament_id}", op)

    def _rate_match(self, tournament_id: str, match) -> List[str]:
        """Rate a freshly completed match; returns players now eligible for promotion."""
        winner = self.repo.load_player_ranking(match.winner_id)
        loser = self.repo.load_player_ranking(match.loser_id)
        new_winner, new_loser, winner_update, loser_update = self.ratings.apply_match(winner, loser)

        for before, after, update, result in (
            (winner, new_winner, winner_update, 'win'),
            (loser, new_loser, loser_update, 'loss'),
        ):
            self.repo.save_player_ranking(after)
            opponent = loser if before is winner else winner
            self.repo.add_rating_history(
                after.player_id, update.old_rating, update.new_rating, result,
                tournament_id=tournament_id,
                match_id=str(match.key),
                opponent_rating=opponent.elo_points,
                rating_change=update.delta,
            )

        return [
            r.player_id for r in (new_winner, new_loser)
            if self.promotion.evaluate(r).eligible
        ]

    def start_match(self, tournament_id: str, round_number: int, match_number: int):
        key = MatchKey(round_number, match_number)
        return self._progress(tournament_id, f"start {key}", lambda b: self.engine.start_match(b, key))

    def cancel_match(self, tournament_id: str, round_number: int, match_number: int):
        key = MatchKey(round_number, match_number)
        return self._progress(tournament_id, f"cancel {key}", lambda b: self.engine.cancel_match(b, key))

    def restore_match(self, tournament_id: str, round_number: int, match_number: int):
        key = MatchKey(round_number, match_number)
        return self._progress(tournament_id, f"restore {key}", lambda b: self.engine.restore_match(b, key))

    def reschedule_match(self, tournament_id: str, round_number: int, match_number: int):
        key = MatchKey(round_number, match_number)
        return self._progress(
            tournament_id, f"reschedule {key}", lambda b: self.engine.reschedule_match(b, key)
        )

    def record_result(self, tournament_id: str, round_number: int, match_number: int,
                      winner_id: str, score_player1: int = None, score_player2: int = None):
        key = MatchKey(round_number, match_number)
        return self._progress(
            tournament_id, f"result {key}",
            lambda b: self.engine.record_result(b, key, winner_id, score_player1, score_player2)
        )

    def generate_next_round(self, tournament_id: str, round_number: int = None):
        return self._progress(
            tournament_id, "next round", lambda b: self.engine.generate_next_round(b, round_number)
        )

    def generate_remaining_rounds(self, tournament_id: str):
        return self._progress(tournament_id, "remaining rounds", self.engine.generate_remaining_rounds)

    # ==================== Rewards ====================

    def _reward_plan(self, tournament: Tournament) -> RewardPlan:
        if tournament.reward_plan:
            return RewardPlan.from_dict(tournament.reward_plan)
        return self.planner.calculate_rewards(
            tournament.tier, tournament.entry_fee, tournament.max_participants, tournament.game_format
        )

    def get_rewards(self, tournament_id: str):
        def op(events):
            return self._reward_plan(self._tournament(tournament_id))

        return self._run(f"rewards for {tournament_id}", op)

    def recalculate_rewards(self, tournament_id: str, tier=None, entry_fee: int = None,
                            max_participants: int = None, game_format: str = None,
                            preserve_customizations: bool = True):
        """Re-derive the plan for changed parameters, keeping organiser edits unless told not to."""
        def op(events):
            tournament = self._tournament(tournament_id)
            existing = self._reward_plan(tournament)
            plan = self.planner.recalculate_rewards(
                existing,
                tier if tier is not None else tournament.tier,
                entry_fee if entry_fee is not None else tournament.entry_fee,
                max_participants if max_participants is not None else tournament.max_participants,
                game_format or tournament.game_format,
                preserve_customizations=preserve_customizations,
            )
            tournament.tier = plan.params.tier
            tournament.entry_fee = plan.params.entry_fee
            tournament.max_participants = plan.params.max_participants
            tournament.game_format = plan.params.game_format
            tournament.reward_plan = plan.to_dict()
            return plan

        return self._run(f"recalculate rewards for {tournament_id}", op)

    def update_rewards(self, tournament_id: str, plan_data: dict, template: str = None):
        """Store an organiser edited plan; it must pass validation first."""
        def op(events):
            tournament = self._tournament(tournament_id)
            plan = RewardPlan.from_dict(plan_data) if plan_data else self._reward_plan(tournament)
            if plan.params is None:
                plan.params = self._reward_plan(tournament).params
            if template:
                plan = self.planner.apply_template(plan, template)
            self.planner.ensure_valid(plan, tournament.max_participants)
            tournament.reward_plan = plan.to_dict()
            return plan

        return self._run(f"update rewards for {tournament_id}", op)

    def validate_rewards(self, tournament_id: str):
        def op(events):
            tournament = self._tournament(tournament_id)
            return self.planner.validate_rewards(self._reward_plan(tournament), tournament.max_participants)

        return self._run(f"validate rewards for {tournament_id}", op)

    # ==================== Rankings ====================

    def get_player_ranking(self, player_id: str):
        return self.repo.load_player_ranking(player_id)

    def get_rating_history(self, player_id: str, limit: int = 50):
        return self.repo.get_rating_history(player_id, limit)

    def check_promotion(self, player_id: str, now: datetime = None):
        return self.promotion.evaluate(self.repo.load_player_ranking(player_id), now)

    def apply_promotion(self, player_id: str, now: datetime = None):
        def op(events):
            ranking = self.repo.load_player_ranking(player_id)
            promoted = self.promotion.apply_promotion(ranking, now)
            self.repo.save_player_ranking(promoted)
            events.append(rank_promoted_event(None, player_id, ranking.rank_code, promoted.rank_code))
            return promoted

        return self._run(f"promote {player_id}", op)
