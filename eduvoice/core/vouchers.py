"""
Voucher issue and redemption.

A redemption grants the voucher token amount to the user. Expiry, the
inactive flag and max uses are enforced at redemption time; nothing sweeps
vouchers in the background. Each user can redeem a given code once, so a
double submission cannot count twice against max_uses.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from eduvoice.observability import get_logger
from eduvoice.storage.base import VoucherStore
from eduvoice.storage.models import TransactionType, Voucher

from .errors import EduVoiceError
from .ledger import TokenLedger

logger = get_logger(__name__)


class VoucherNotFound(EduVoiceError):
    def __init__(self, code: str):
        super().__init__(f"Voucher code not found: {code}")
        self.code = code


class VoucherUnavailable(EduVoiceError):
    """Voucher exists but cannot be redeemed (inactive, expired, used up)."""
    def __init__(self, code: str, reason: str):
        super().__init__(f"Voucher {code} cannot be redeemed: {reason}")
        self.code = code
        self.reason = reason


class VoucherAlreadyRedeemed(EduVoiceError):
    def __init__(self, code: str, user_id: str):
        super().__init__(f"Voucher {code} was already redeemed by {user_id}")
        self.code = code
        self.user_id = user_id


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VoucherService:
    """Creates vouchers and redeems them into token grants."""

    def __init__(
        self,
        store: VoucherStore,
        ledger: TokenLedger,
        grant_amount: int = 60000,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.store = store
        self.ledger = ledger
        self.grant_amount = grant_amount
        self.clock = clock

    def create_voucher(
        self,
        code: str,
        discount_percent: int,
        expires_at: datetime,
        max_uses: Optional[int] = None
    ) -> Voucher:
        """Issue a new voucher.

        Raises:
            ValueError: If the code is blank, the discount is outside
                0-100, max_uses is below 1, expires_at is naive or the
                code already exists
        """
        code = normalize_code(code)
        if not code:
            raise ValueError("voucher code cannot be empty")
        if not 0 <= discount_percent <= 100:
            raise ValueError("discount_percent must be between 0 and 100")
        if max_uses is not None and max_uses < 1:
            raise ValueError("max_uses must be >= 1 when set")
        if expires_at.tzinfo is None or expires_at.utcoffset() is None:
            raise ValueError("expires_at must be timezone-aware")

        voucher = Voucher(
            code=code,
            discount_percent=discount_percent,
            expires_at=expires_at,
            max_uses=max_uses
        )
        self.store.create_voucher(voucher)
        logger.info("voucher_created", code=code, max_uses=max_uses,
                    expires_at=expires_at.isoformat())
        return voucher

    def redeem(self, user_id: str, code: str) -> int:
        """Redeem a voucher for the user.

        A failed token grant releases the claimed use before re-raising.

        Returns:
            The user's new token balance

        Raises:
            VoucherNotFound: Unknown code
            VoucherUnavailable: Inactive, expired or out of uses
            VoucherAlreadyRedeemed: This user already redeemed the code
            AccountNotFound: The user has no token account
        """
        code = normalize_code(code)
        voucher = self.store.get_voucher(code)
        if voucher is None:
            raise VoucherNotFound(code)

        now = self.clock()
        if not voucher.active:
            raise VoucherUnavailable(code, "inactive")
        if voucher.expires_at < now:
            raise VoucherUnavailable(code, "expired")
        if voucher.max_uses is not None and voucher.uses_so_far >= voucher.max_uses:
            raise VoucherUnavailable(code, "maximum uses reached")

        # Fail before claiming a use if the account is missing
        self.ledger.get_account(user_id)

        if not self.store.claim_redemption(code, user_id, now):
            if self.store.get_redemption(code, user_id) is not None:
                raise VoucherAlreadyRedeemed(code, user_id)
            raise VoucherUnavailable(code, "maximum uses reached")

        try:
            new_balance = self.ledger.grant_tokens(
                user_id,
                self.grant_amount,
                type=TransactionType.VOUCHER_REDEEMED,
                description=f"Redeemed voucher {code} for {self.grant_amount} tokens.",
                reference_id=code
            )
        except Exception as exc:
            logger.error("voucher_grant_failed", code=code, user_id=user_id,
                         error=str(exc))
            self.store.release_redemption(code, user_id)
            raise

        logger.info("voucher_redeemed", code=code, user_id=user_id,
                    new_balance=new_balance)
        return new_balance
