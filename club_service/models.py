from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(30), nullable=False, default='draft')

    # Reward parameters
    tier = db.Column(db.Integer, nullable=False, default=1)
    entry_fee = db.Column(db.Integer, nullable=False, default=0)
    max_participants = db.Column(db.Integer, nullable=False, default=16)
    game_format = db.Column(db.String(30), nullable=False, default='9_ball')
    reward_plan = db.Column(db.JSON, nullable=True)

    seeding_method = db.Column(db.String(30), nullable=True)

    # Results
    champion_id = db.Column(db.String(50), nullable=True)
    runner_up_id = db.Column(db.String(50), nullable=True)

    # Timestamps
    registration_start = db.Column(db.DateTime, nullable=True)
    registration_end = db.Column(db.DateTime, nullable=True)
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    registrations = db.relationship('Registration', back_populates='tournament', cascade='all, delete-orphan')
    bracket = db.relationship('Bracket', back_populates='tournament', uselist=False, cascade='all, delete-orphan')
    matches = db.relationship('Match', back_populates='tournament', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'name': self.name,
            'status': self.status,
            'tier': self.tier,
            'entry_fee': self.entry_fee,
            'max_participants': self.max_participants,
            'game_format': self.game_format,
            'seeding_method': self.seeding_method,
            'registration_count': len(self.registrations),
            'bracket_generated': self.bracket is not None,
            'champion_id': self.champion_id,
            'runner_up_id': self.runner_up_id,
            'registration_start': self.registration_start.isoformat() if self.registration_start else None,
            'registration_end': self.registration_end.isoformat() if self.registration_end else None,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Registration(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    player_id = db.Column(db.String(50), nullable=False, index=True)
    registration_status = db.Column(db.String(20), nullable=False, default='confirmed')
    payment_status = db.Column(db.String(20), nullable=False, default='pending')
    seed_number = db.Column(db.Integer, nullable=True)
    registration_date = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='registrations')

    __table_args__ = (
        db.UniqueConstraint('player_id', 'tournament_id', name='unique_player_per_tournament'),
    )

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'registration_status': self.registration_status,
            'payment_status': self.payment_status,
            'seed_number': self.seed_number,
            'registration_date': self.registration_date.isoformat() if self.registration_date else None,
        }


class Bracket(db.Model):
    __tablename__ = 'brackets'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, unique=True)
    participant_count = db.Column(db.Integer, nullable=False)
    total_players = db.Column(db.Integer, nullable=False)
    total_rounds = db.Column(db.Integer, nullable=False)
    current_round = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(30), nullable=False, default='seeded')
    seeding_method = db.Column(db.String(30), nullable=False, default='ranked')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='bracket')


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    match_number = db.Column(db.Integer, nullable=False)

    player1_id = db.Column(db.String(50), nullable=True)
    player2_id = db.Column(db.String(50), nullable=True)
    winner_id = db.Column(db.String(50), nullable=True)
    loser_id = db.Column(db.String(50), nullable=True)
    score_player1 = db.Column(db.Integer, nullable=True)
    score_player2 = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(20), default='scheduled')
    is_third_place_match = db.Column(db.Boolean, default=False)
    is_bye = db.Column(db.Boolean, default=False)

    # Links to other slots, stored as (round, match) pairs
    previous_match1_round = db.Column(db.Integer, nullable=True)
    previous_match1_number = db.Column(db.Integer, nullable=True)
    previous_match2_round = db.Column(db.Integer, nullable=True)
    previous_match2_number = db.Column(db.Integer, nullable=True)
    next_match_round = db.Column(db.Integer, nullable=True)
    next_match_number = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_number', 'match_number', name='unique_match_slot'),
    )


class PlayerRanking(db.Model):
    __tablename__ = 'player_rankings'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    elo_points = db.Column(db.Integer, nullable=False, default=1000)
    rank_code = db.Column(db.String(5), nullable=False, default='K')
    spa_points = db.Column(db.Integer, nullable=False, default=0)
    total_matches = db.Column(db.Integer, nullable=False, default=0)
    wins = db.Column(db.Integer, nullable=False, default=0)
    last_promotion_date = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rating_history = db.relationship('RatingHistory', back_populates='ranking', cascade='all, delete-orphan')


class RatingHistory(db.Model):
    __tablename__ = 'rating_history'

    id = db.Column(db.Integer, primary_key=True)
    ranking_id = db.Column(db.Integer, db.ForeignKey('player_rankings.id'), nullable=False)
    tournament_id = db.Column(db.String(50), nullable=True)
    match_id = db.Column(db.String(50), nullable=True)
    old_rating = db.Column(db.Integer, nullable=False)
    new_rating = db.Column(db.Integer, nullable=False)
    rating_change = db.Column(db.Integer, nullable=False)
    opponent_rating = db.Column(db.Integer, nullable=True)
    result = db.Column(db.String(10), nullable=False)  # 'win', 'loss', 'draw', 'reward'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    ranking = db.relationship('PlayerRanking', back_populates='rating_history')

    def to_dict(self):
        return {
            'tournament_id': self.tournament_id,
            'match_id': self.match_id,
            'old_rating': self.old_rating,
            'new_rating': self.new_rating,
            'rating_change': self.rating_change,
            'opponent_rating': self.opponent_rating,
            'result': self.result,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
