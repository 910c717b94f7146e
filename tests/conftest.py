"""
Pytest configuration and fixtures for club tournament tests.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from club_service.app import create_app
from club_service.models import db, Tournament, Registration
from bracket_core.bracket_builder import BracketBuilder, SeedingMethod
from bracket_core.progression import ProgressionEngine


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def manager(app):
    """The app's tournament manager."""
    return app.manager


@pytest.fixture
def sample_tournament(app, db_session):
    """An open-registration tournament for 8 players."""
    with app.app_context():
        tournament = Tournament(
            tournament_id='test-tournament-001',
            name='Test Open',
            status='registration_open',
            tier=1,
            entry_fee=50000,
            max_participants=8,
            game_format='9_ball',
            registration_end=datetime.utcnow() + timedelta(days=3),
        )
        db.session.add(tournament)
        db.session.commit()

        db.session.refresh(tournament)
        return tournament


@pytest.fixture
def sample_registrations(app, db_session, sample_tournament):
    """Eight confirmed, paid registrations p1..p8 in registration order."""
    with app.app_context():
        base = datetime(2024, 1, 1, 12, 0)
        for i in range(8):
            db.session.add(Registration(
                tournament_id=sample_tournament.id,
                player_id=f'p{i + 1}',
                payment_status='paid',
                registration_date=base + timedelta(minutes=i),
            ))
        db.session.commit()
        return [f'p{i + 1}' for i in range(8)]


@pytest.fixture
def players():
    return [f'p{i + 1}' for i in range(8)]


@pytest.fixture
def builder():
    return BracketBuilder()


@pytest.fixture
def engine():
    return ProgressionEngine(auto_advance=True)


@pytest.fixture
def bracket8(builder, players):
    """8-player bracket seeded in registration order."""
    return builder.build('t-8', players, seeding_method=SeedingMethod.REGISTRATION_ORDER)


@pytest.fixture
def mock_redis(mocker):
    """Mock redis client for the notifier."""
    client = mocker.MagicMock()
    client.publish.return_value = 1
    client.ping.return_value = True
    return client
