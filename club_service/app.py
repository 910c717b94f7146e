import os
import logging
from datetime import datetime

from flask import Flask, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from bracket_core.errors import (
    AlreadyGenerated,
    MatchNotFound,
    RegistrationLocked,
    RoundNotComplete,
    SlotConflict,
)
from bracket_core.state_machine import TransitionError

from .config import config
from .models import db
from .notifier import Notifier
from .tournament_manager import (
    TournamentManager,
    TournamentNotFound,
    RegistrationNotFound,
    RegistrationRejected,
)

logger = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = (
    'publish', 'open_registration', 'close_registration', 'reopen_registration',
    'start', 'complete', 'cancel',
)
MATCH_ACTIONS = ('start', 'cancel', 'restore', 'reschedule')

NOT_FOUND_ERRORS = (TournamentNotFound, RegistrationNotFound, MatchNotFound)
CONFLICT_ERRORS = (
    AlreadyGenerated, SlotConflict, RegistrationLocked, RoundNotComplete,
    RegistrationRejected, TransitionError,
)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the club tournament service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(level=app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)

    # Initialize services
    notifier = Notifier(
        redis_url=app.config['REDIS_URL'],
        enabled=app.config['NOTIFICATIONS_ENABLED'],
    )
    manager = TournamentManager(
        notifier=notifier,
        auto_advance=app.config['AUTO_ADVANCE_ROUNDS'],
        default_seeding_method=app.config['DEFAULT_SEEDING_METHOD'],
        require_payment=app.config['REQUIRE_PAYMENT_FOR_SEEDING'],
    )

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access in routes
    app.notifier = notifier
    app.manager = manager

    register_api_routes(app)

    return app


def error_response(error):
    if isinstance(error, NOT_FOUND_ERRORS):
        status = 404
    elif isinstance(error, CONFLICT_ERRORS):
        status = 409
    else:
        status = 400

    if hasattr(error, 'to_dict'):
        return jsonify(error.to_dict()), status
    return jsonify({'error': str(error), 'code': 'bad_request'}), status


def progress_response(payload):
    result, extra = payload
    body = result.to_dict()
    if 'promotion_eligible' in extra:
        body['promotion_eligible'] = extra['promotion_eligible']
    if 'payouts' in extra:
        body['payouts'] = [p.to_dict() for p in extra['payouts']]
    return jsonify(body)


def _parse_datetime(value):
    return datetime.fromisoformat(value) if value else None


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Tournaments ====================

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments with optional filtering."""
        status = request.args.get('status')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        tournaments = app.manager.list_tournaments(status=status, limit=limit, offset=offset)

        return jsonify({
            'tournaments': [t.to_dict() for t in tournaments],
            'count': len(tournaments),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/tournaments', methods=['POST'])
    def api_create_tournament():
        """Create a draft tournament and its baseline reward plan."""
        data = request.json or {}

        name = data.get('name')
        if not name:
            return jsonify({'error': 'Tournament name is required', 'code': 'bad_request'}), 400

        try:
            tournament = app.manager.create_tournament(
                name=name,
                tier=data.get('tier', 1),
                entry_fee=data.get('entry_fee', 0),
                max_participants=data.get('max_participants', 16),
                game_format=data.get('game_format', '9_ball'),
                registration_start=_parse_datetime(data.get('registration_start')),
                registration_end=_parse_datetime(data.get('registration_end')),
            )
        except (ValueError, TypeError) as e:
            return jsonify({'error': str(e), 'code': 'bad_request'}), 400

        return jsonify(tournament.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: str):
        tournament = app.manager.get_tournament(tournament_id)
        if not tournament:
            return error_response(TournamentNotFound(f"Tournament {tournament_id} not found"))
        return jsonify(tournament.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/actions/<action>', methods=['POST'])
    def api_tournament_action(tournament_id: str, action: str):
        """Run a lifecycle action through the tournament state machine."""
        if action not in LIFECYCLE_ACTIONS:
            return jsonify({'error': f'Unknown action {action}', 'code': 'bad_request'}), 400

        success, result = app.manager.perform_action(tournament_id, action)
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/registration-window', methods=['POST'])
    def api_registration_window(tournament_id: str):
        """Finalize or cancel an open registration window."""
        success, result = app.manager.process_registration_window(tournament_id)
        if not success:
            return error_response(result)
        return jsonify({'action': result.value})

    # ==================== Registrations ====================

    @app.route('/api/v1/tournaments/<tournament_id>/registrations', methods=['GET'])
    def api_list_registrations(tournament_id: str):
        tournament = app.manager.get_tournament(tournament_id)
        if not tournament:
            return error_response(TournamentNotFound(f"Tournament {tournament_id} not found"))
        return jsonify({
            'registrations': [r.to_dict() for r in tournament.registrations],
            'count': len(tournament.registrations)
        })

    @app.route('/api/v1/tournaments/<tournament_id>/registrations', methods=['POST'])
    def api_add_registration(tournament_id: str):
        data = request.json or {}
        player_id = data.get('player_id')
        if not player_id:
            return jsonify({'error': 'player_id is required', 'code': 'bad_request'}), 400

        success, result = app.manager.add_registration(
            tournament_id, player_id, payment_status=data.get('payment_status', 'pending')
        )
        if not success:
            return error_response(result)
        return jsonify(result.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>/registrations/<player_id>', methods=['PATCH'])
    def api_update_registration(tournament_id: str, player_id: str):
        data = request.json or {}
        payment_status = data.get('payment_status')
        if not payment_status:
            return jsonify({'error': 'payment_status is required', 'code': 'bad_request'}), 400

        success, result = app.manager.update_payment(tournament_id, player_id, payment_status)
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/registrations/<player_id>', methods=['DELETE'])
    def api_remove_registration(tournament_id: str, player_id: str):
        success, result = app.manager.remove_registration(tournament_id, player_id)
        if not success:
            return error_response(result)
        return jsonify({'message': f'{player_id} unregistered'})

    # ==================== Bracket ====================

    @app.route('/api/v1/tournaments/<tournament_id>/bracket', methods=['POST'])
    def api_generate_bracket(tournament_id: str):
        data = request.json or {}
        success, result = app.manager.generate_bracket(
            tournament_id,
            seeding_method=data.get('seeding_method'),
            force_regenerate=bool(data.get('force_regenerate', False)),
        )
        if not success:
            return error_response(result)
        return jsonify(result.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>/bracket', methods=['GET'])
    def api_get_bracket(tournament_id: str):
        bracket = app.manager.get_bracket(tournament_id)
        if bracket is None:
            return error_response(TournamentNotFound(f"No bracket generated for {tournament_id}"))
        return jsonify(bracket.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/standings', methods=['GET'])
    def api_get_standings(tournament_id: str):
        success, result = app.manager.get_standings(tournament_id)
        if not success:
            return error_response(result)
        return jsonify({'standings': [s.to_dict() for s in result]})

    # ==================== Matches ====================

    @app.route('/api/v1/tournaments/<tournament_id>/matches/<int:round_number>/<int:match_number>/result',
               methods=['POST'])
    def api_record_result(tournament_id: str, round_number: int, match_number: int):
        data = request.json or {}
        winner_id = data.get('winner_id')
        if not winner_id:
            return jsonify({'error': 'winner_id is required', 'code': 'bad_request'}), 400

        success, result = app.manager.record_result(
            tournament_id, round_number, match_number, winner_id,
            score_player1=data.get('score_player1'),
            score_player2=data.get('score_player2'),
        )
        if not success:
            return error_response(result)
        return progress_response(result)

    @app.route('/api/v1/tournaments/<tournament_id>/matches/<int:round_number>/<int:match_number>/<action>',
               methods=['POST'])
    def api_match_action(tournament_id: str, round_number: int, match_number: int, action: str):
        if action not in MATCH_ACTIONS:
            return jsonify({'error': f'Unknown match action {action}', 'code': 'bad_request'}), 400

        handler = getattr(app.manager, f'{action}_match')
        success, result = handler(tournament_id, round_number, match_number)
        if not success:
            return error_response(result)
        return progress_response(result)

    @app.route('/api/v1/tournaments/<tournament_id>/rounds/next', methods=['POST'])
    def api_next_round(tournament_id: str):
        data = request.json or {}
        success, result = app.manager.generate_next_round(tournament_id, data.get('round'))
        if not success:
            return error_response(result)
        return progress_response(result)

    @app.route('/api/v1/tournaments/<tournament_id>/rounds/remaining', methods=['POST'])
    def api_remaining_rounds(tournament_id: str):
        success, result = app.manager.generate_remaining_rounds(tournament_id)
        if not success:
            return error_response(result)
        return progress_response(result)

    # ==================== Rewards ====================

    @app.route('/api/v1/tournaments/<tournament_id>/rewards', methods=['GET'])
    def api_get_rewards(tournament_id: str):
        success, result = app.manager.get_rewards(tournament_id)
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/rewards', methods=['PUT'])
    def api_update_rewards(tournament_id: str):
        data = request.json or {}
        success, result = app.manager.update_rewards(
            tournament_id, data.get('plan'), template=data.get('template')
        )
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/rewards/recalculate', methods=['POST'])
    def api_recalculate_rewards(tournament_id: str):
        data = request.json or {}
        success, result = app.manager.recalculate_rewards(
            tournament_id,
            tier=data.get('tier'),
            entry_fee=data.get('entry_fee'),
            max_participants=data.get('max_participants'),
            game_format=data.get('game_format'),
            preserve_customizations=bool(data.get('preserve_customizations', True)),
        )
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/rewards/validate', methods=['GET'])
    def api_validate_rewards(tournament_id: str):
        success, result = app.manager.validate_rewards(tournament_id)
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    # ==================== Players ====================

    @app.route('/api/v1/players/<player_id>/ranking', methods=['GET'])
    def api_player_ranking(player_id: str):
        ranking = app.manager.get_player_ranking(player_id)
        history = app.manager.get_rating_history(player_id, request.args.get('limit', 20, type=int))
        body = ranking.to_dict()
        body['history'] = [h.to_dict() for h in history]
        return jsonify(body)

    @app.route('/api/v1/players/<player_id>/promotion', methods=['GET'])
    def api_check_promotion(player_id: str):
        return jsonify(app.manager.check_promotion(player_id).to_dict())

    @app.route('/api/v1/players/<player_id>/promotion', methods=['POST'])
    def api_apply_promotion(player_id: str):
        success, result = app.manager.apply_promotion(player_id)
        if not success:
            return error_response(result)
        return jsonify(result.to_dict())

    # ==================== Health Check ====================

    @app.route('/api/v1/health')
    def health_check():
        """Health check endpoint."""
        redis_ok = app.notifier.ping()

        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            db_ok = False

        healthy = db_ok and redis_ok is not False
        code = 200 if healthy else 503

        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'redis': {True: 'connected', False: 'disconnected', None: 'disabled'}[redis_ok],
            'database': 'connected' if db_ok else 'disconnected'
        }), code
