"""
Unit tests for CertificateIssuer: number format and collision handling.
"""

from datetime import datetime, timezone
from decimal import Decimal
from itertools import cycle

import pytest

from models.entities.couchbase.transactions import Transaction, TransactionData
from models.stores import DuplicateKeyError
from settlement import CertificateIssueError, CertificateIssuer


def _transaction() -> Transaction:
    return Transaction(
        id="txn_test",
        data=TransactionData(
            transaction_id="TXN-TEST",
            settlement_key="payment:order|pay",
            buyer_id="buyer-1",
            listing_id="listing-1",
            quantity=2,
            price_per_unit=Decimal("300"),
            total_amount=Decimal("600"),
            amount_minor_units=60000,
            payment_status="completed",
            status="completed",
            external_order_id="order",
            external_payment_id="pay",
        ),
    )


def _issuer(draws, max_attempts=5) -> CertificateIssuer:
    numbers = iter(draws)
    return CertificateIssuer(
        max_attempts=max_attempts,
        clock=lambda: datetime(2026, 3, 1, tzinfo=timezone.utc),
        randbelow=lambda _: next(numbers),
    )


class TestDraw:
    def test_format(self):
        issuer = _issuer([42])
        assert issuer.draw() == "CERT-2026-0042"

    def test_default_draws_are_in_range(self):
        issuer = CertificateIssuer()
        for _ in range(50):
            number = issuer.draw()
            prefix, year, serial = number.split("-")
            assert prefix == "CERT"
            assert year == str(datetime.now(timezone.utc).year)
            assert len(serial) == 4 and serial.isdigit()


class TestIssue:
    @pytest.mark.asyncio
    async def test_attaches_number_and_path(self):
        issuer = _issuer([7])
        transaction = _transaction()

        async def persist(t):
            return t.data.certificate_number

        result = await issuer.issue(transaction, persist)

        assert result == "CERT-2026-0007"
        assert transaction.data.certificate_path == "/certificates/txn_test.pdf"

    @pytest.mark.asyncio
    async def test_redraws_on_collision(self):
        issuer = _issuer([1, 1, 2])
        taken = {"CERT-2026-0001"}
        attempts = []

        async def persist(t):
            attempts.append(t.data.certificate_number)
            if t.data.certificate_number in taken:
                raise DuplicateKeyError("certificate", t.data.certificate_number)
            return t.data.certificate_number

        assert await issuer.issue(_transaction(), persist) == "CERT-2026-0002"
        assert attempts == ["CERT-2026-0001", "CERT-2026-0001", "CERT-2026-0002"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        issuer = _issuer(cycle([9]), max_attempts=3)
        transaction = _transaction()
        calls = 0

        async def persist(t):
            nonlocal calls
            calls += 1
            raise DuplicateKeyError("certificate", t.data.certificate_number)

        with pytest.raises(CertificateIssueError) as exc_info:
            await issuer.issue(transaction, persist)

        assert calls == 3
        assert transaction.data.certificate_number is None
        assert exc_info.value.external_payment_id == "pay"

    @pytest.mark.asyncio
    async def test_transaction_key_clash_is_not_retried(self):
        issuer = _issuer([1, 2])

        async def persist(t):
            raise DuplicateKeyError("transaction", t.id)

        with pytest.raises(DuplicateKeyError) as exc_info:
            await issuer.issue(_transaction(), persist)
        assert exc_info.value.kind == "transaction"
