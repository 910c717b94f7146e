"""
Bracket Core - Tournament computation library

Responsibilities:
- Seed registrations into a single-elimination bracket
- Advance rounds as results arrive, including the third-place match
- ELO rating updates per completed match
- Rank promotion eligibility
- Reward plans and final standing payouts
"""
from .bracket_builder import BracketBuilder, SeedingMethod
from .progression import ProgressionEngine, ProgressionResult
from .rank_promotion import RankPromotion
from .ratings import RatingEngine
from .rewards_planner import RewardsPlanner
