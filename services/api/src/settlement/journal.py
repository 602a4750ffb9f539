"""
Double-entry journal of settled money in TigerBeetle.

A settlement posts buyer -> platform escrow -> producer; a refund posts the
mirror image. Transfer ids derive from the transaction key, so re-posting a
transaction is a no-op. The journal is a side record: the ledger store stays
the source of truth, and the engine treats journal failures as non-fatal.
"""

import asyncio
from typing import Protocol

from models.entities.couchbase.transactions import Transaction
from utils import log

logger = log.get_logger(__name__)


class SettlementJournal(Protocol):
    async def record_settlement(self, transaction: Transaction) -> None: ...

    async def record_refund(self, transaction: Transaction) -> None: ...


class TigerBeetleJournal:
    async def record_settlement(self, transaction: Transaction) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._post, transaction, False)

    async def record_refund(self, transaction: Transaction) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._post, transaction, True)

    def _post(self, transaction: Transaction, reverse: bool) -> None:
        from clients.tigerbeetle import (
            ACCOUNT_CODE_BUYER,
            ACCOUNT_CODE_PLATFORM,
            ACCOUNT_CODE_PRODUCER,
            TRANSFER_CODE_CLAWBACK,
            TRANSFER_CODE_PURCHASE,
            TRANSFER_CODE_REFUND,
            TRANSFER_CODE_SETTLEMENT,
            create_transfer,
            ensure_accounts,
            ledger_for,
            platform_account_id,
            transfer_id,
            user_account_id,
        )

        data = transaction.data
        ledger = ledger_for(data.currency)
        escrow_id = platform_account_id(ledger)
        buyer_id = user_account_id(data.buyer_id, ledger, ACCOUNT_CODE_BUYER)
        producer_id = user_account_id(data.producer_id or "unknown", ledger, ACCOUNT_CODE_PRODUCER)

        ensure_accounts(ledger, [
            (escrow_id, ACCOUNT_CODE_PLATFORM),
            (buyer_id, ACCOUNT_CODE_BUYER),
            (producer_id, ACCOUNT_CODE_PRODUCER),
        ])

        amount = data.amount_minor_units
        if not reverse:
            legs = [
                ("purchase", buyer_id, escrow_id, TRANSFER_CODE_PURCHASE),
                ("settlement", escrow_id, producer_id, TRANSFER_CODE_SETTLEMENT),
            ]
        else:
            legs = [
                ("clawback", producer_id, escrow_id, TRANSFER_CODE_CLAWBACK),
                ("refund", escrow_id, buyer_id, TRANSFER_CODE_REFUND),
            ]

        for leg, debit_id, credit_id, code in legs:
            create_transfer(
                transfer_id(transaction.id, leg), debit_id, credit_id, amount, ledger, code
            )

        direction = "refund" if reverse else "settlement"
        logger.info(
            f"Ledger: {direction} {data.transaction_id} buyer {data.buyer_id} "
            f"producer {data.producer_id} amount={amount} {data.currency}"
        )
