"""SQLAlchemy models package."""

from .customer import Customer  # noqa: F401
from .loyalty import (  # noqa: F401
    CATEGORY_BY_REFERENCE,
    IDEMPOTENT_REFERENCE_TYPES,
    REFERENCE_BY_CATEGORY,
    LedgerReferenceType,
    LoyaltyAccount,
    LoyaltyLedgerEntry,
    TransactionCategory,
)
from .voucher import Voucher  # noqa: F401
