"""Declined-operation and store failure types raised by the loyalty ledger."""

from __future__ import annotations


class LoyaltyLedgerError(RuntimeError):
    """Base error carrying a stable ``kind`` for callers to map to responses."""

    kind = "loyalty_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(LoyaltyLedgerError):
    """Malformed or out-of-range request data."""

    kind = "invalid_input"


class InvalidRedemptionAmountError(InvalidInputError):
    """Redemption amount is not a positive multiple of the redemption increment."""

    kind = "invalid_redemption_amount"


class InsufficientBalanceError(LoyaltyLedgerError):
    """Redemption exceeds the account's current balance."""

    kind = "insufficient_balance"

    def __init__(self, *, balance: int, requested: int) -> None:
        super().__init__(f"Insufficient points. Balance: {balance}, Required: {requested}")
        self.balance = balance
        self.requested = requested


class WouldOverdrawError(LoyaltyLedgerError):
    """Adjustment would drive the balance below zero."""

    kind = "would_overdraw"

    def __init__(self, *, balance: int, delta: int) -> None:
        super().__init__(
            f"Adjustment would result in negative balance. Current: {balance}, Adjustment: {delta}"
        )
        self.balance = balance
        self.delta = delta


class AccountNotFoundError(LoyaltyLedgerError):
    """Customer is unknown to the identity directory."""

    kind = "account_not_found"


class TransientStoreError(LoyaltyLedgerError):
    """Underlying storage failed; nothing was written and the caller may retry."""

    kind = "transient_store_error"


__all__ = [
    "AccountNotFoundError",
    "InsufficientBalanceError",
    "InvalidInputError",
    "InvalidRedemptionAmountError",
    "LoyaltyLedgerError",
    "TransientStoreError",
    "WouldOverdrawError",
]
