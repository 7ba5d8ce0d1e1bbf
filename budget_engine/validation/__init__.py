"""Transaction validation package."""

from budget_engine.validation.validator import (
    ADJUSTMENT_NO_TARGET_MESSAGE,
    TRANSFER_ACCOUNT_MISMATCH_MESSAGE,
    TRANSFER_CATEGORY_MISMATCH_MESSAGE,
    TRANSFER_NOTHING_REAL_MESSAGE,
    InvalidTransactionError,
    InvalidTransferError,
    TransactionValidator,
    TransferDraft,
    check_transfer_endpoints,
)

__all__ = [
    # Messages
    "ADJUSTMENT_NO_TARGET_MESSAGE",
    "TRANSFER_ACCOUNT_MISMATCH_MESSAGE",
    "TRANSFER_CATEGORY_MISMATCH_MESSAGE",
    "TRANSFER_NOTHING_REAL_MESSAGE",
    # Exceptions
    "InvalidTransactionError",
    "InvalidTransferError",
    # Validators
    "TransactionValidator",
    "TransferDraft",
    "check_transfer_endpoints",
]
