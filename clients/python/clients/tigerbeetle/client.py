import hashlib
import os

from tigerbeetle import (
    ClientSync,
    Account,
    Transfer,
    AccountFlags,
    CreateAccountResult,
    CreateTransferResult,
)

# Configuration
TIGERBEETLE_CLUSTER_ID = int(os.environ.get("TIGERBEETLE_CLUSTER_ID", "0"))
TIGERBEETLE_ADDRESS = os.environ.get("TIGERBEETLE_ADDRESS", "127.0.0.1:3000")

# One ledger per currency, numbered by ISO 4217 numeric code
LEDGER_BY_CURRENCY = {
    "INR": 356,
    "EUR": 978,
    "USD": 840,
    "GBP": 826,
}

ACCOUNT_CODE_BUYER = 1
ACCOUNT_CODE_PRODUCER = 2
ACCOUNT_CODE_PLATFORM = 3

TRANSFER_CODE_PURCHASE = 1    # buyer -> platform
TRANSFER_CODE_SETTLEMENT = 2  # platform -> producer
TRANSFER_CODE_CLAWBACK = 3    # producer -> platform
TRANSFER_CODE_REFUND = 4      # platform -> buyer

PLATFORM_ESCROW_ACCOUNT_ID_BASE = 1_000_000

_U128_MASK = (1 << 128) - 1

_client_instance = None


def get_tigerbeetle_client() -> ClientSync:
    """Returns a singleton instance of the TigerBeetle ClientSync."""
    global _client_instance
    if _client_instance is None:
        _client_instance = ClientSync(
            cluster_id=TIGERBEETLE_CLUSTER_ID,
            replica_addresses=TIGERBEETLE_ADDRESS,
        )
    return _client_instance


def ledger_for(currency: str) -> int:
    try:
        return LEDGER_BY_CURRENCY[currency.upper()]
    except KeyError:
        raise ValueError(f"No TigerBeetle ledger configured for currency {currency}")


def _derived_id(*parts: str) -> int:
    """Stable 128-bit id, never 0 or 2^128-1 (both reserved by TigerBeetle)."""
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).digest()
    value = int.from_bytes(digest[:16], "big") & _U128_MASK
    if value in (0, _U128_MASK):
        value = 1 + (value & 0xFFFF)
    return value


def platform_account_id(ledger: int) -> int:
    return PLATFORM_ESCROW_ACCOUNT_ID_BASE + ledger


def user_account_id(user_id: str, ledger: int, code: int) -> int:
    return _derived_id("account", str(ledger), str(code), user_id)


def transfer_id(reference: str, leg: str) -> int:
    """Transfers are keyed by (reference, leg) so a replayed post is a no-op."""
    return _derived_id("transfer", reference, leg)


def ensure_accounts(ledger: int, accounts: list[tuple[int, int]]) -> None:
    """Create ``(account_id, code)`` accounts on ``ledger`` (idempotent)."""
    client = get_tigerbeetle_client()
    results = client.create_accounts([
        Account(
            id=account_id,
            ledger=ledger,
            code=code,
            flags=AccountFlags.NONE,
        )
        for account_id, code in accounts
    ])
    for r in results:
        if r.result not in (CreateAccountResult.OK, CreateAccountResult.EXISTS):
            raise RuntimeError(f"Failed to create account: {r.result}")


def create_transfer(
    id: int, debit_id: int, credit_id: int, amount_minor_units: int, ledger: int, code: int
) -> int:
    """Create a single transfer. Returns the transfer ID."""
    client = get_tigerbeetle_client()
    results = client.create_transfers([
        Transfer(
            id=id,
            debit_account_id=debit_id,
            credit_account_id=credit_id,
            amount=amount_minor_units,
            ledger=ledger,
            code=code,
        ),
    ])
    for r in results:
        if r.result not in (CreateTransferResult.OK, CreateTransferResult.EXISTS):
            raise RuntimeError(f"Failed to create transfer: {r.result}")
    return id
