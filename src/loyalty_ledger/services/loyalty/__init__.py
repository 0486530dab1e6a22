"""Loyalty ledger service exports."""

from .errors import (  # noqa: F401
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidRedemptionAmountError,
    LoyaltyLedgerError,
    TransientStoreError,
    WouldOverdrawError,
)
from .history import TransactionFilter, TransactionItem, TransactionPage  # noqa: F401
from .ledger import DerivedBalance, derive_balance, fold_entries  # noqa: F401
from .loyalty_service import (  # noqa: F401
    AccountSummary,
    AdjustResult,
    BirthdayBonusResult,
    EarnResult,
    IssuedVoucher,
    LoyaltyLedgerService,
    RedeemResult,
    RedemptionCatalog,
)
from .redemption import RedemptionPolicy  # noqa: F401
from .tiers import TierClassification, TierDefinition, TierTable  # noqa: F401
