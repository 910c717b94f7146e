"""
Club Service - Host service for the bracket engine

Responsibilities:
- Tournament records and lifecycle (CRUD + state machine)
- Registrations and the registration window
- Bracket generation and live match progression
- Per-match rating updates and rank promotion
- Reward plans and payouts on completion
- Event notifications over redis pub/sub
"""
