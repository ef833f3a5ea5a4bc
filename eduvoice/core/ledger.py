"""
Token ledger and charge gate.

Every billable AI call passes through charge_or_skip before the provider is
contacted. Balance changes are compare-and-set writes on the account's
version stamp, retried on conflict, so concurrent charges against one
account can never both spend the same tokens.

Ordering per charge:
1. Load the account (AccountNotFound if missing)
2. Effective subscription: no deduction
3. Balance below cost: InsufficientTokens, nothing written
4. Compare-and-set the new balance, then append a transaction record

The transaction log is best-effort: a failed append is logged and never
rolls back the balance change.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from eduvoice.observability import get_logger
from eduvoice.storage.base import AccountStore
from eduvoice.storage.models import TokenAccount, TransactionRecord, TransactionType

from .errors import EduVoiceError

logger = get_logger(__name__)


class AccountNotFound(EduVoiceError):
    """No token account exists for the user."""
    def __init__(self, user_id: str):
        super().__init__(f"Token account not found for user {user_id}")
        self.user_id = user_id


class InsufficientTokens(EduVoiceError):
    """Balance is below the cost of the requested operation.

    Carries the numbers a caller needs to offer an upgrade.
    """
    def __init__(self, user_id: str, balance: int, required: int):
        super().__init__(
            f"Insufficient tokens: {required} required, {balance} available"
        )
        self.user_id = user_id
        self.balance = balance
        self.required = required


class LedgerConflict(EduVoiceError):
    """Concurrent writers kept winning the compare-and-set."""


@dataclass(frozen=True)
class ChargeResult:
    charged: bool
    new_balance: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLedger:
    """Token balance mutations for user accounts.

    Args:
        store: Account store
        max_retries: Compare-and-set attempts before LedgerConflict
        subscription_grant: Tokens added on subscription activation
        subscription_days: Length of an activated subscription
        clock: Returns the current time (timezone-aware)
    """

    def __init__(
        self,
        store: AccountStore,
        max_retries: int = 50,
        subscription_grant: int = 60000,
        subscription_days: int = 30,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.store = store
        self.max_retries = max_retries
        self.subscription_grant = subscription_grant
        self.subscription_days = subscription_days
        self.clock = clock

    def get_account(self, user_id: str) -> TokenAccount:
        account = self.store.get_account(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        return account

    def open_account(self, user_id: str, initial_balance: int = 0) -> TokenAccount:
        """Create an account with a starting balance."""
        account = TokenAccount(user_id=user_id, balance=initial_balance)
        self.store.create_account(account)
        logger.info("account_opened", user_id=user_id, balance=initial_balance)
        return account

    def charge_or_skip(
        self,
        user_id: str,
        token_cost: int,
        description: Optional[str] = None
    ) -> ChargeResult:
        """Deduct token_cost unless the user has an effective subscription.

        Args:
            user_id: Account owner
            token_cost: Tokens to deduct, must be > 0
            description: Ledger entry text

        Returns:
            ChargeResult with charged=False for subscribers

        Raises:
            ValueError: If token_cost <= 0
            AccountNotFound: If the user has no account
            InsufficientTokens: If balance < token_cost (nothing is written)
            LedgerConflict: If every compare-and-set attempt lost a race
        """
        if isinstance(token_cost, bool) or not isinstance(token_cost, int) or token_cost <= 0:
            raise ValueError("token_cost must be a positive integer")

        for _ in range(self.max_retries):
            account = self.get_account(user_id)
            now = self.clock()

            if account.is_subscribed(now):
                self._record(TransactionRecord(
                    user_id=user_id,
                    type=TransactionType.DEDUCTION_SKIPPED,
                    delta=0,
                    resulting_balance=account.balance,
                    description=(
                        "Token deduction skipped (Pro user): "
                        f"{description or f'{token_cost} tokens for action'}"
                    ),
                    timestamp=now
                ))
                logger.info("charge_skipped_subscription", user_id=user_id, cost=token_cost)
                return ChargeResult(charged=False, new_balance=account.balance)

            if account.balance < token_cost:
                logger.info(
                    "charge_insufficient_tokens",
                    user_id=user_id,
                    balance=account.balance,
                    cost=token_cost
                )
                raise InsufficientTokens(user_id, account.balance, token_cost)

            new_balance = account.balance - token_cost
            if self.store.compare_and_set_account(
                    user_id, account.version, {"balance": new_balance}):
                self._record(TransactionRecord(
                    user_id=user_id,
                    type=TransactionType.TOKEN_DEDUCTION,
                    delta=-token_cost,
                    resulting_balance=new_balance,
                    description=description or f"Deducted {token_cost} tokens.",
                    timestamp=now
                ))
                logger.info(
                    "charge_applied",
                    user_id=user_id,
                    cost=token_cost,
                    new_balance=new_balance
                )
                return ChargeResult(charged=True, new_balance=new_balance)

            logger.debug("charge_version_conflict", user_id=user_id, version=account.version)

        raise LedgerConflict(
            f"Could not charge {user_id} after {self.max_retries} attempts"
        )

    def grant_tokens(
        self,
        user_id: str,
        amount: int,
        type: TransactionType = TransactionType.TOKEN_GRANT,
        description: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> int:
        """Credit tokens to an account.

        Returns:
            The new balance

        Raises:
            ValueError: If amount <= 0
            AccountNotFound: If the user has no account
            LedgerConflict: If every compare-and-set attempt lost a race
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer")

        for _ in range(self.max_retries):
            account = self.get_account(user_id)
            new_balance = account.balance + amount
            if self.store.compare_and_set_account(
                    user_id, account.version, {"balance": new_balance}):
                self._record(TransactionRecord(
                    user_id=user_id,
                    type=type,
                    delta=amount,
                    resulting_balance=new_balance,
                    description=description or f"Granted {amount} tokens.",
                    timestamp=self.clock(),
                    reference_id=reference_id
                ))
                logger.info("tokens_granted", user_id=user_id, amount=amount,
                            new_balance=new_balance, type=type.value)
                return new_balance

        raise LedgerConflict(
            f"Could not grant tokens to {user_id} after {self.max_retries} attempts"
        )

    def activate_subscription(self, user_id: str, source: str = "manual") -> TokenAccount:
        """Activate the Pro plan: status, end date and the token grant.

        A user whose subscription is already effective is left untouched.

        Returns:
            The account after activation
        """
        for _ in range(self.max_retries):
            account = self.get_account(user_id)
            now = self.clock()
            if account.is_subscribed(now):
                logger.info("subscription_already_active", user_id=user_id)
                return account

            ends_at = now + timedelta(days=self.subscription_days)
            new_balance = account.balance + self.subscription_grant
            if self.store.compare_and_set_account(user_id, account.version, {
                "balance": new_balance,
                "subscription_active": True,
                "subscription_ends_at": ends_at,
            }):
                self._record(TransactionRecord(
                    user_id=user_id,
                    type=TransactionType.SUBSCRIPTION_ACTIVATION,
                    delta=self.subscription_grant,
                    resulting_balance=new_balance,
                    description=(
                        f"EduVoice AI Pro Plan activated ({source}). "
                        f"{self.subscription_grant} tokens added."
                    ),
                    timestamp=now
                ))
                logger.info("subscription_activated", user_id=user_id,
                            source=source, ends_at=ends_at.isoformat())
                return self.get_account(user_id)

        raise LedgerConflict(
            f"Could not activate subscription for {user_id} after {self.max_retries} attempts"
        )

    def _record(self, record: TransactionRecord) -> None:
        """Append to the transaction log; failures never undo the mutation."""
        try:
            self.store.append_transaction(record)
        except Exception as exc:
            logger.warning(
                "transaction_log_failed",
                user_id=record.user_id,
                type=record.type.value,
                error=str(exc)
            )
