#!/usr/bin/env python3
"""
Entry point for the club tournament service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL, REDIS_URL, NOTIFICATIONS_ENABLED, AUTO_ADVANCE_ROUNDS,
    DEFAULT_SEEDING_METHOD, REQUIRE_PAYMENT_FOR_SEEDING, LOG_LEVEL
"""
import os


def run_service():
    """Run the club tournament service."""
    from club_service.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting club service on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_service()
