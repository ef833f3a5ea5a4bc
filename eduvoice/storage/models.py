"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TokenAccount:
    """Token balance and subscription state owned by a user.

    Mutated only through the ledger. The version stamp increments on every
    write and is the compare-and-set guard for concurrent deductions.
    """
    user_id: str
    balance: int
    subscription_active: bool = False
    subscription_ends_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if self.balance < 0:
            raise ValueError("balance must be >= 0")

    def is_subscribed(self, now: datetime) -> bool:
        """Whether the subscription is active and not past its end date."""
        if not self.subscription_active:
            return False
        return self.subscription_ends_at is None or self.subscription_ends_at > now


class TransactionType(Enum):
    """Kinds of ledger entries."""
    TOKEN_DEDUCTION = "token_deduction"
    DEDUCTION_SKIPPED = "token_deduction_skipped_subscription"
    TOKEN_GRANT = "token_grant"
    SUBSCRIPTION_ACTIVATION = "subscription_activation"
    VOUCHER_REDEEMED = "voucher_redeemed"


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable ledger entry written after a balance change.

    Append-only: once written, these records must never be modified.
    """
    user_id: str
    type: TransactionType
    delta: int
    resulting_balance: int
    description: str
    timestamp: datetime
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class Voucher:
    """Administrator-issued voucher.

    Becomes inert once expired or once uses_so_far reaches max_uses; both
    are checked at redemption time only.
    """
    code: str
    discount_percent: int
    expires_at: datetime
    max_uses: Optional[int] = None
    uses_so_far: int = 0
    active: bool = True


@dataclass(frozen=True)
class VoucherRedemption:
    """One successful redemption of a voucher by a user."""
    code: str
    user_id: str
    redeemed_at: datetime


class ExamStatus(Enum):
    """Exam session lifecycle. Transitions only move forward."""
    NOT_STARTED = "generated"
    IN_PROGRESS = "in_progress"
    EVALUATING = "in_progress_evaluation"
    COMPLETED = "completed"
    ERROR_EVALUATING = "error_evaluating"


@dataclass(frozen=True)
class ExamSession:
    """A quiz exam generated for one user."""
    session_id: str
    user_id: str
    title: str
    questions: List[str]
    duration_minutes: int
    correct_answers: List[str] = field(default_factory=list)
    answers: Dict[int, str] = field(default_factory=dict)
    status: ExamStatus = ExamStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    overall_score: Optional[float] = None
    max_score: Optional[int] = None
    overall_feedback: Optional[str] = None
    results: List[Dict[str, Any]] = field(default_factory=list)

    def answers_in_order(self) -> List[str]:
        """Answers aligned with questions; unanswered questions map to ''."""
        return [self.answers.get(i, "") for i in range(len(self.questions))]


@dataclass(frozen=True)
class LLMUsageEvent:
    """Immutable record of one successful provider call.

    Append-only events that create an auditable trail of which credential
    served each AI feature.
    """
    timestamp: datetime
    feature: str
    model: str
    credential_source: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    request_id: Optional[str] = None
