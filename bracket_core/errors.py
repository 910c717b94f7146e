class BracketError(Exception):
    """Base class for recoverable engine conditions reported back to callers."""

    code = "bracket_error"

    def __init__(self, message: str = None, **details):
        self.message = message or self.__class__.__name__
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.details}


class InsufficientParticipants(BracketError):
    code = "insufficient_participants"


class AlreadyGenerated(BracketError):
    code = "already_generated"


class RoundNotComplete(BracketError):
    code = "round_not_complete"


class NoFinalMatch(BracketError):
    code = "no_final_match"


class MatchNotFound(BracketError):
    code = "match_not_found"


class InvalidResult(BracketError):
    code = "invalid_result"


class SlotConflict(BracketError):
    code = "slot_conflict"


class RegistrationLocked(BracketError):
    code = "registration_locked"


class InvalidRewardPlan(BracketError):
    code = "invalid_reward_plan"


class InvalidPosition(InvalidRewardPlan):
    code = "invalid_position"


class BudgetExceeded(InvalidRewardPlan):
    code = "budget_exceeded"


class NotEligibleForPromotion(BracketError):
    code = "not_eligible_for_promotion"
