"""
Store interfaces.

The core only talks to these abstract stores. Each method is a
single-document read or write; none of them assume multi-document
transactions on the caller's side.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import (
    ExamSession,
    ExamStatus,
    LLMUsageEvent,
    TokenAccount,
    TransactionRecord,
    Voucher,
    VoucherRedemption,
)


class AccountStore(ABC):
    """Token accounts and their append-only transaction log."""

    @abstractmethod
    def get_account(self, user_id: str) -> Optional[TokenAccount]:
        """Return the account or None when it does not exist."""

    @abstractmethod
    def create_account(self, account: TokenAccount) -> None:
        """Insert a new account. Raises ValueError if it already exists."""

    @abstractmethod
    def compare_and_set_account(
        self,
        user_id: str,
        expected_version: int,
        patch: Dict[str, Any]
    ) -> bool:
        """Apply patch only if the stored version still equals expected_version.

        Returns:
            True if the write happened, False on a version conflict
        """

    @abstractmethod
    def append_transaction(self, record: TransactionRecord) -> None:
        ...

    @abstractmethod
    def list_transactions(self, user_id: str, limit: int = 100) -> List[TransactionRecord]:
        ...


class VoucherStore(ABC):
    """Vouchers and their redemptions."""

    @abstractmethod
    def get_voucher(self, code: str) -> Optional[Voucher]:
        ...

    @abstractmethod
    def create_voucher(self, voucher: Voucher) -> None:
        ...

    @abstractmethod
    def claim_redemption(self, code: str, user_id: str, now: datetime) -> bool:
        """Atomically record a redemption and bump uses_so_far.

        Returns False (and changes nothing) if the user already redeemed
        this code or the voucher has no uses left.
        """

    @abstractmethod
    def get_redemption(self, code: str, user_id: str) -> Optional[VoucherRedemption]:
        ...

    @abstractmethod
    def release_redemption(self, code: str, user_id: str) -> bool:
        """Undo a claim: drop the redemption and give the use back.

        Returns:
            True if a redemption existed and was released
        """


class ExamStore(ABC):
    """Exam sessions."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[ExamSession]:
        ...

    @abstractmethod
    def create_session(self, session: ExamSession) -> None:
        ...

    @abstractmethod
    def transition(
        self,
        session_id: str,
        from_status: ExamStatus,
        to_status: ExamStatus,
        patch: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Move a session between states if it is still in from_status.

        Returns:
            True if this call performed the transition
        """

    @abstractmethod
    def update_answers(
        self,
        session_id: str,
        answers: Dict[int, str],
        required_status: ExamStatus
    ) -> bool:
        ...


class UsageStore(ABC):
    """Provider usage events."""

    @abstractmethod
    def insert_usage_event(self, event: LLMUsageEvent) -> None:
        ...
