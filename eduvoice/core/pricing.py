"""
Token prices for AI features.

Maps each billable feature to the number of platform tokens it costs.
"""

from dataclasses import dataclass
from typing import Dict

TOPIC_LECTURE = "topic_lecture"
QUIZ_GENERATION = "quiz_generation"
QUIZ_EVALUATION = "quiz_evaluation"
INTERVIEW_PROGRESSION = "interview_progression"
INTERVIEW_FEEDBACK = "interview_feedback"
MOCK_INTERVIEW = "mock_interview"

FEATURES = (
    TOPIC_LECTURE,
    QUIZ_GENERATION,
    QUIZ_EVALUATION,
    INTERVIEW_PROGRESSION,
    INTERVIEW_FEEDBACK,
    MOCK_INTERVIEW,
)

# Only lectures are billed by default; 0 means the ledger is not consulted
DEFAULT_FEATURE_COSTS: Dict[str, int] = {
    TOPIC_LECTURE: 500,
    QUIZ_GENERATION: 0,
    QUIZ_EVALUATION: 0,
    INTERVIEW_PROGRESSION: 0,
    INTERVIEW_FEEDBACK: 0,
    MOCK_INTERVIEW: 0,
}


@dataclass(frozen=True)
class TokenPriceTable:
    """Fixed token price per feature."""
    costs: Dict[str, int]

    def get_cost(self, feature: str) -> int:
        """Get the token cost for a feature.
        
        Args:
            feature: Feature identifier
            
        Returns:
            Token cost, 0 for free features
            
        Raises:
            ValueError: If feature is not known
        """
        if feature not in self.costs:
            raise ValueError(f"Unknown feature: {feature}")
        return self.costs[feature]

    def is_billable(self, feature: str) -> bool:
        return self.get_cost(feature) > 0


DEFAULT_PRICE_TABLE = TokenPriceTable(dict(DEFAULT_FEATURE_COSTS))
