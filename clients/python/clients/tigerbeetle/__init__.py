from .client import (
    get_tigerbeetle_client,
    LEDGER_BY_CURRENCY,
    ACCOUNT_CODE_BUYER,
    ACCOUNT_CODE_PRODUCER,
    ACCOUNT_CODE_PLATFORM,
    TRANSFER_CODE_PURCHASE,
    TRANSFER_CODE_SETTLEMENT,
    TRANSFER_CODE_CLAWBACK,
    TRANSFER_CODE_REFUND,
    ledger_for,
    platform_account_id,
    user_account_id,
    transfer_id,
    ensure_accounts,
    create_transfer,
)

__all__ = [
    "get_tigerbeetle_client",
    "LEDGER_BY_CURRENCY",
    "ACCOUNT_CODE_BUYER",
    "ACCOUNT_CODE_PRODUCER",
    "ACCOUNT_CODE_PLATFORM",
    "TRANSFER_CODE_PURCHASE",
    "TRANSFER_CODE_SETTLEMENT",
    "TRANSFER_CODE_CLAWBACK",
    "TRANSFER_CODE_REFUND",
    "ledger_for",
    "platform_account_id",
    "user_account_id",
    "transfer_id",
    "ensure_accounts",
    "create_transfer",
]
