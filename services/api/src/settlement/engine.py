"""
Settlement engine.

Turns a buyer's intent into an external payment order, verifies the payment
proof the buyer brings back, and atomically commits inventory, transaction
and certificate. Also owns refunds and the reconciliation queue for payments
that were captured but could not be settled.

Lifecycle of one settlement::

    INIT -> ORDER_CREATED -> VERIFYING -> COMPLETED -> REFUNDED
                                      \\-> FAILED

Only ORDER_CREATED lives outside the store (as the gateway order); COMPLETED,
FAILED and REFUNDED are persisted transactions.
"""

import asyncio
import secrets
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from clients.payments import ExternalOrder, ExternalPayment, PaymentGateway, WebhookEvent
from models.entities.couchbase.transactions import Transaction, TransactionData
from models.operations.listings import (
    listing_check_purchasable,
    listing_get,
    listing_restore_quantity,
    listing_take_quantity,
)
from models.operations.transactions import (
    new_transaction_id,
    settlement_key_for_direct,
    settlement_key_for_payment,
    transaction_get,
    transaction_get_by_buyer,
    transaction_get_by_order,
    transaction_get_requiring_reconciliation,
    transaction_key,
)
from models.stores import DuplicateKeyError, LedgerStore, StoreError, UnitOfWork
from utils import log

from .certificates import CertificateIssuer
from .errors import (
    ConflictError,
    GatewayTimeoutError,
    InsufficientInventoryError,
    InvalidSignatureError,
    NotFoundError,
    PaymentGatewayError,
    PersistenceError,
    SettlementError,
    ValidationError,
)
from .journal import SettlementJournal
from .money import line_total, to_minor_units

logger = log.get_logger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class SettlementState(str, Enum):
    INIT = "init"
    ORDER_CREATED = "order_created"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


_TRANSITIONS: Dict[SettlementState, frozenset] = {
    SettlementState.INIT: frozenset({SettlementState.ORDER_CREATED}),
    SettlementState.ORDER_CREATED: frozenset({SettlementState.VERIFYING}),
    SettlementState.VERIFYING: frozenset({SettlementState.COMPLETED, SettlementState.FAILED}),
    SettlementState.COMPLETED: frozenset({SettlementState.REFUNDED}),
    SettlementState.FAILED: frozenset(),
    SettlementState.REFUNDED: frozenset(),
}

_STATE_BY_PAYMENT_STATUS = {
    "pending": SettlementState.ORDER_CREATED,
    "completed": SettlementState.COMPLETED,
    "failed": SettlementState.FAILED,
    "refunded": SettlementState.REFUNDED,
}


def state_of(transaction: Transaction) -> SettlementState:
    return _STATE_BY_PAYMENT_STATUS[transaction.data.payment_status]


def advance(current: SettlementState, target: SettlementState, subject: str = "settlement") -> SettlementState:
    if target not in _TRANSITIONS[current]:
        raise ConflictError(
            f"Cannot move {subject} from {current.value} to {target.value}"
        )
    return target


# ---------------------------------------------------------------------------
# Options and results
# ---------------------------------------------------------------------------


class SettlementOptions(BaseModel):
    order_create_max_attempts: int = Field(default=3, ge=1)
    order_create_backoff_seconds: float = Field(default=0.2, ge=0)
    direct_purchase_enabled: bool = False
    auto_refund_oversold: bool = False


class OrderHandle(BaseModel):
    external_order_id: str
    receipt: str
    listing_id: str
    buyer_id: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    amount_minor_units: int
    currency: str


class SettlementResult(BaseModel):
    transaction: Transaction
    replayed: bool = False


class RefundResult(BaseModel):
    refund_id: str
    transaction: Transaction


class PaymentStatusView(BaseModel):
    external_order_id: str
    transactions: List[Transaction]
    payments: List[ExternalPayment]


class _Placement(BaseModel):
    taken: bool
    available: Optional[int] = None


class _Oversold(Exception):
    def __init__(self, available: Optional[int]) -> None:
        self.available = available
        super().__init__(f"available={available}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_receipt() -> str:
    return f"rcpt_{secrets.token_hex(10)}"


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
    return quantity


def _require_text(value: Optional[str], name: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return value


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SettlementEngine:
    def __init__(
        self,
        store: LedgerStore,
        gateway: PaymentGateway,
        issuer: Optional[CertificateIssuer] = None,
        options: Optional[SettlementOptions] = None,
        journal: Optional[SettlementJournal] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.issuer = issuer or CertificateIssuer()
        self.options = options or SettlementOptions()
        self.journal = journal

    # -- order creation -----------------------------------------------------

    async def create_order(self, buyer_id: str, listing_id: str, quantity: int) -> OrderHandle:
        """Price the purchase and open a payment order on the gateway.

        Availability is checked but not reserved; settlement re-checks it.
        """
        _require_text(buyer_id, "buyerId")
        _require_text(listing_id, "listingId")
        _require_quantity(quantity)

        listing = await listing_get(self.store, listing_id)
        if listing is None or not listing.data.is_active:
            raise NotFoundError("Listing not available")
        problem = listing_check_purchasable(listing, quantity)
        if problem:
            raise ValidationError(problem)

        advance(SettlementState.INIT, SettlementState.ORDER_CREATED)
        unit_price = listing.data.price
        currency = listing.data.currency
        total = line_total(unit_price, quantity)
        amount_minor_units = to_minor_units(total, currency)
        if amount_minor_units <= 0:
            raise ValidationError(f"Order total {total} {currency} rounds to zero")

        receipt = _new_receipt()
        metadata = {
            "listing_id": listing_id,
            "buyer_id": buyer_id,
            "producer_id": listing.data.producer_id,
            "quantity": str(quantity),
            "unit_price": str(unit_price),
            "energy_source": listing.data.energy_source or "",
        }
        order = await self._create_external_order(amount_minor_units, currency, metadata, receipt)
        logger.info(
            f"Order {order.id} created for buyer {buyer_id}: {quantity} {listing.data.unit} "
            f"of listing {listing_id} at {unit_price} {currency} (receipt {receipt})"
        )
        return OrderHandle(
            external_order_id=order.id,
            receipt=receipt,
            listing_id=listing_id,
            buyer_id=buyer_id,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=total,
            amount_minor_units=order.amount_minor_units,
            currency=currency,
        )

    async def _create_external_order(
        self, amount_minor_units: int, currency: str, metadata: Dict[str, str], receipt: str
    ) -> ExternalOrder:
        """Bounded retry on timeouts; the receipt makes each attempt idempotent."""
        attempts = self.options.order_create_max_attempts
        delay = self.options.order_create_backoff_seconds
        request = dict(
            amount_minor_units=amount_minor_units, currency=currency, metadata=metadata, receipt=receipt
        )
        for attempt in range(1, attempts):
            try:
                return await self.gateway.create_external_order(**request)
            except GatewayTimeoutError:
                logger.warning(
                    f"Order creation for receipt {receipt} timed out "
                    f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                delay *= 2
        try:
            return await self.gateway.create_external_order(**request)
        except GatewayTimeoutError as e:
            logger.error(f"Order creation for receipt {receipt} timed out {attempts} times: {e}")
            raise

    # -- settlement ---------------------------------------------------------

    async def verify_and_settle(
        self,
        external_order_id: str,
        external_payment_id: str,
        signature: Optional[str],
        listing_id: str,
        quantity: int,
        buyer_id: Optional[str] = None,
    ) -> SettlementResult:
        """Check the buyer's payment proof and commit the purchase.

        Safe to call any number of times for the same (order, payment) pair:
        later calls return the first outcome with ``replayed=True``.

        Raises:
            InvalidSignatureError: the gateway did not confirm the payment
                belongs to the order.
            ValidationError: the proof does not match the order it names.
            InsufficientInventoryError: the payment was captured but the
                listing had sold out; a failed transaction flagged for
                reconciliation has been recorded.
        """
        _require_text(external_order_id, "orderId")
        _require_text(external_payment_id, "paymentId")
        _require_text(listing_id, "listingId")
        _require_quantity(quantity)

        if not await self.gateway.verify_payment(external_order_id, external_payment_id, signature):
            logger.warning(f"Rejected payment proof for order {external_order_id} payment {external_payment_id}")
            raise InvalidSignatureError("Payment verification failed")

        return await self._settle_verified(
            external_order_id,
            external_payment_id,
            listing_id=listing_id,
            quantity=quantity,
            buyer_id=buyer_id,
            settled_via="client",
        )

    async def settle_from_webhook(self, event: WebhookEvent) -> Optional[SettlementResult]:
        """Settle from an authenticated gateway notification.

        Returns None for event types that do not settle anything.
        """
        if event.type != "payment_intent.succeeded":
            logger.info(f"Ignoring webhook event {event.type}")
            return None
        if not event.order_id or not event.payment_id:
            raise ValidationError("Webhook event is missing the order or payment id")

        metadata = event.metadata
        try:
            listing_id = metadata["listing_id"]
            buyer_id = metadata["buyer_id"]
            quantity = int(metadata["quantity"])
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Webhook event for order {event.order_id} lacks settlement metadata: {e}")

        return await self._settle_verified(
            event.order_id,
            event.payment_id,
            listing_id=listing_id,
            quantity=_require_quantity(quantity),
            buyer_id=buyer_id,
            settled_via="webhook",
        )

    async def _settle_verified(
        self,
        external_order_id: str,
        external_payment_id: str,
        listing_id: str,
        quantity: int,
        buyer_id: Optional[str],
        settled_via: str,
    ) -> SettlementResult:
        settlement_key = settlement_key_for_payment(external_order_id, external_payment_id)
        key = transaction_key(settlement_key)

        existing = await transaction_get(self.store, key)
        if existing is not None:
            return self._replay(existing)

        conflict = await self._order_conflict(external_order_id, external_payment_id)
        if conflict is not None:
            raise conflict

        order = await self.gateway.get_external_order(external_order_id)
        unit_price, currency = self._match_order(order, listing_id, quantity, buyer_id)
        buyer_id = order.metadata["buyer_id"]

        advance(SettlementState.ORDER_CREATED, SettlementState.VERIFYING)
        transaction = self._new_transaction(
            key=key,
            settlement_key=settlement_key,
            buyer_id=buyer_id,
            listing_id=listing_id,
            quantity=quantity,
            unit_price=unit_price,
            currency=currency,
            settled_via=settled_via,
            producer_id=order.metadata.get("producer_id") or None,
            external_order_id=external_order_id,
            external_payment_id=external_payment_id,
        )

        try:
            committed = await self._commit_completed(transaction)
        except DuplicateKeyError as e:
            if e.kind == "order":
                raise await self._order_conflict(external_order_id, external_payment_id, claimed=True)
            # A concurrent delivery of the same payment won the insert
            return self._replay(await self._must_get(key))
        except _Oversold as e:
            return await self._flag_oversold(transaction, e.available)

        await self._journal("settlement", committed)
        return SettlementResult(transaction=committed)

    async def _order_conflict(
        self, external_order_id: str, external_payment_id: str, claimed: bool = False
    ) -> Optional[ConflictError]:
        """The error to raise when another payment already settled this order.

        With ``claimed`` the store has refused the insert on the order index,
        so a conflict is returned even if the winning transaction is not yet
        visible to queries.
        """
        for other in await transaction_get_by_order(self.store, external_order_id):
            if other.data.external_payment_id != external_payment_id:
                logger.warning(
                    f"Refused payment {external_payment_id} for order {external_order_id}: "
                    f"already settled by payment {other.data.external_payment_id}"
                )
                return ConflictError(
                    f"Order {external_order_id} was already settled by payment "
                    f"{other.data.external_payment_id}",
                    transaction_id=other.id,
                )
        if claimed:
            logger.warning(
                f"Refused payment {external_payment_id} for order {external_order_id}: order already claimed"
            )
            return ConflictError(f"Order {external_order_id} was already settled by another payment")
        return None

    def _match_order(
        self, order: ExternalOrder, listing_id: str, quantity: int, buyer_id: Optional[str]
    ) -> Tuple[Decimal, str]:
        """Cross-check the caller's claim against what the order was opened for."""
        metadata = order.metadata
        mismatched = []
        if metadata.get("listing_id") != listing_id:
            mismatched.append("listingId")
        if metadata.get("quantity") != str(quantity):
            mismatched.append("quantity")
        if buyer_id is not None and metadata.get("buyer_id") != buyer_id:
            mismatched.append("buyerId")
        if not metadata.get("buyer_id"):
            mismatched.append("buyerId")
        if mismatched:
            raise ValidationError(
                f"Payment proof does not match order {order.id}: {', '.join(sorted(set(mismatched)))}"
            )

        try:
            unit_price = Decimal(metadata["unit_price"])
        except (KeyError, InvalidOperation):
            raise ValidationError(f"Order {order.id} carries no unit price")

        expected = to_minor_units(line_total(unit_price, quantity), order.currency)
        if expected != order.amount_minor_units:
            raise ValidationError(
                f"Order {order.id} amount {order.amount_minor_units} does not match "
                f"{quantity} x {unit_price} {order.currency}"
            )
        return unit_price, order.currency.upper()

    def _new_transaction(
        self,
        key: str,
        settlement_key: str,
        buyer_id: str,
        listing_id: str,
        quantity: int,
        unit_price: Decimal,
        currency: str,
        settled_via: str,
        producer_id: Optional[str] = None,
        external_order_id: Optional[str] = None,
        external_payment_id: Optional[str] = None,
    ) -> Transaction:
        total = line_total(unit_price, quantity)
        now = _now()
        return Transaction(
            id=key,
            data=TransactionData(
                transaction_id=new_transaction_id(),
                settlement_key=settlement_key,
                buyer_id=buyer_id,
                producer_id=producer_id,
                listing_id=listing_id,
                quantity=quantity,
                price_per_unit=unit_price,
                total_amount=total,
                amount_minor_units=to_minor_units(total, currency),
                currency=currency,
                settled_via=settled_via,
                external_order_id=external_order_id,
                external_payment_id=external_payment_id,
                created_at=now,
                updated_at=now,
                created_by_user_id=buyer_id,
            ),
        )

    async def _commit_completed(self, transaction: Transaction) -> Transaction:
        """Take inventory, insert the transaction and its certificate as one unit.

        Raises _Oversold when the listing cannot cover the quantity; nothing
        is written in that case.
        """
        data = transaction.data
        data.payment_status = "completed"
        data.status = "completed"
        data.completed_at = _now()

        async def persist(candidate: Transaction) -> _Placement:
            async def work(uow: UnitOfWork) -> _Placement:
                listing = await uow.get_listing(data.listing_id)
                if listing is None:
                    return _Placement(taken=False)
                if not await listing_take_quantity(uow, data.listing_id, data.quantity):
                    return _Placement(taken=False, available=listing.data.available_quantity)
                candidate.data.producer_id = candidate.data.producer_id or listing.data.producer_id
                candidate.data.unit = listing.data.unit
                await uow.insert_transaction(candidate)
                return _Placement(taken=True)

            return await self.store.run_atomic(work)

        try:
            placement = await self.issuer.issue(transaction, persist)
        except DuplicateKeyError:
            raise
        except StoreError as e:
            logger.critical(
                f"Store failed while settling order {data.external_order_id} "
                f"payment {data.external_payment_id}: {e}"
            )
            raise PersistenceError(
                f"Could not record settlement: {e}",
                external_order_id=data.external_order_id,
                external_payment_id=data.external_payment_id,
            ) from e

        if not placement.taken:
            raise _Oversold(placement.available)

        logger.info(
            f"Settled {data.transaction_id}: {data.quantity} {data.unit} of listing {data.listing_id} "
            f"to buyer {data.buyer_id}, certificate {data.certificate_number}"
        )
        return await self._must_get(transaction.id)

    async def _flag_oversold(self, transaction: Transaction, available: Optional[int]) -> SettlementResult:
        data = transaction.data
        advance(SettlementState.VERIFYING, SettlementState.FAILED)
        data.payment_status = "failed"
        data.status = "cancelled"
        data.completed_at = None
        data.certificate_number = None
        data.certificate_path = None
        data.reconciliation_required = True
        data.failure_reason = "insufficient_inventory" if available is not None else "listing_not_found"

        async def work(uow: UnitOfWork) -> None:
            await uow.insert_transaction(transaction)

        try:
            await self.store.run_atomic(work)
        except DuplicateKeyError as e:
            if e.kind == "order":
                raise await self._order_conflict(data.external_order_id, data.external_payment_id, claimed=True)
            return self._replay(await self._must_get(transaction.id))
        except StoreError as e:
            logger.critical(
                f"Captured payment {data.external_payment_id} for order {data.external_order_id} "
                f"could not be settled and could not be flagged: {e}"
            )
            raise PersistenceError(
                f"Could not record failed settlement: {e}",
                external_order_id=data.external_order_id,
                external_payment_id=data.external_payment_id,
            ) from e

        logger.error(
            f"Captured payment {data.external_payment_id} for order {data.external_order_id} "
            f"could not be settled: listing {data.listing_id} has {available} left, "
            f"{data.quantity} requested. Flagged {data.transaction_id} for reconciliation"
        )

        reconciliation_required = True
        if self.options.auto_refund_oversold:
            try:
                await self.resolve_reconciliation(
                    transaction.id, actor_id="system", reason="Automatic refund: insufficient inventory"
                )
                reconciliation_required = False
            except (PaymentGatewayError, SettlementError) as e:
                logger.error(f"Automatic refund of {data.transaction_id} failed, left in reconciliation queue: {e}")

        raise InsufficientInventoryError(
            listing_id=data.listing_id,
            requested=data.quantity,
            available=available,
            transaction_id=transaction.id,
            reconciliation_required=reconciliation_required,
        )

    def _replay(self, existing: Transaction) -> SettlementResult:
        state = state_of(existing)
        if state in (SettlementState.COMPLETED, SettlementState.REFUNDED):
            logger.info(f"Replayed settlement {existing.data.transaction_id} ({state.value})")
            return SettlementResult(transaction=existing, replayed=True)
        if state == SettlementState.FAILED:
            raise InsufficientInventoryError(
                listing_id=existing.data.listing_id,
                requested=existing.data.quantity,
                available=None,
                transaction_id=existing.id,
                reconciliation_required=existing.data.reconciliation_required,
            )
        raise ConflictError(
            f"Settlement {existing.data.transaction_id} is {existing.data.payment_status}",
            transaction_id=existing.id,
        )

    async def _must_get(self, key: str) -> Transaction:
        transaction = await transaction_get(self.store, key)
        if transaction is None:
            raise PersistenceError(f"Transaction {key} vanished after commit", transaction_id=key)
        return transaction

    # -- direct purchase ----------------------------------------------------

    async def direct_purchase(
        self,
        buyer_id: str,
        listing_id: str,
        quantity: int,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        """Settle without a gateway payment. Disabled unless configured."""
        if not self.options.direct_purchase_enabled:
            raise NotFoundError("Direct purchase is not enabled")
        _require_text(buyer_id, "buyerId")
        _require_text(listing_id, "listingId")
        _require_quantity(quantity)

        settlement_key = settlement_key_for_direct(idempotency_key)
        key = transaction_key(settlement_key)
        existing = await transaction_get(self.store, key)
        if existing is not None:
            return self._replay(existing)

        listing = await listing_get(self.store, listing_id)
        if listing is None:
            raise NotFoundError("Listing not available")

        transaction = self._new_transaction(
            key=key,
            settlement_key=settlement_key,
            buyer_id=buyer_id,
            listing_id=listing_id,
            quantity=quantity,
            unit_price=listing.data.price,
            currency=listing.data.currency,
            settled_via="direct",
            producer_id=listing.data.producer_id,
        )
        try:
            committed = await self._commit_completed(transaction)
        except DuplicateKeyError:
            return self._replay(await self._must_get(key))
        except _Oversold as e:
            raise InsufficientInventoryError(listing_id=listing_id, requested=quantity, available=e.available)

        await self._journal("settlement", committed)
        return SettlementResult(transaction=committed)

    # -- refunds ------------------------------------------------------------

    async def refund(self, transaction_id: str, actor_id: str, reason: Optional[str] = None) -> RefundResult:
        """Return the buyer's money and the units to the listing.

        The gateway refund is keyed by the transaction, so a retry after a
        store failure does not refund twice.
        """
        transaction = await transaction_get(self.store, transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        advance(state_of(transaction), SettlementState.REFUNDED, f"transaction {transaction_id}")

        data = transaction.data
        reason = reason or "Refund requested"
        refund_id = await self._refund_at_gateway(transaction, actor_id, reason)
        refunded_at = _now()

        async def work(uow: UnitOfWork) -> Optional[Transaction]:
            current = await uow.get_transaction(transaction.id)
            if current is None or current.data.payment_status != "completed":
                return None
            current.data.payment_status = "refunded"
            current.data.status = "cancelled"
            current.data.refund_id = refund_id
            current.data.refund_reason = reason
            current.data.refunded_by = actor_id
            current.data.refunded_at = refunded_at
            await uow.replace_transaction(current)
            await listing_restore_quantity(uow, current.data.listing_id, current.data.quantity)
            return current

        try:
            updated = await self.store.run_atomic(work)
        except StoreError as e:
            logger.critical(
                f"Refund {refund_id} for {data.transaction_id} was issued at the gateway "
                f"but could not be recorded: {e}"
            )
            raise PersistenceError(
                f"Refund issued but not recorded: {e}",
                external_order_id=data.external_order_id,
                external_payment_id=data.external_payment_id,
                transaction_id=transaction.id,
            ) from e

        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} is no longer refundable", transaction_id=transaction.id)

        logger.info(
            f"Refunded {data.transaction_id} ({refund_id}) by {actor_id}: "
            f"{data.quantity} {data.unit} returned to listing {data.listing_id}"
        )
        refreshed = await self._must_get(transaction.id)
        await self._journal("refund", refreshed)
        return RefundResult(refund_id=refund_id, transaction=refreshed)

    async def _refund_at_gateway(self, transaction: Transaction, actor_id: str, reason: str) -> str:
        data = transaction.data
        if not data.external_payment_id:
            # direct purchases never captured money
            return f"local_{data.transaction_id}"
        external = await self.gateway.refund(
            payment_id=data.external_payment_id,
            amount_minor_units=data.amount_minor_units,
            metadata={
                "transaction_id": data.transaction_id,
                "actor_id": actor_id,
                "reason": reason,
            },
            idempotency_key=f"refund-{transaction.id}",
        )
        return external.id

    async def resolve_reconciliation(
        self, transaction_id: str, actor_id: str, reason: Optional[str] = None
    ) -> RefundResult:
        """Refund a captured payment that could not be settled and clear its flag."""
        transaction = await transaction_get(self.store, transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if not transaction.data.reconciliation_required:
            raise ConflictError(
                f"Transaction {transaction_id} is not awaiting reconciliation",
                transaction_id=transaction.id,
            )

        reason = reason or "Refund of unsettled payment"
        refund_id = await self._refund_at_gateway(transaction, actor_id, reason)
        refunded_at = _now()

        async def work(uow: UnitOfWork) -> Optional[Transaction]:
            current = await uow.get_transaction(transaction.id)
            if current is None or not current.data.reconciliation_required:
                return None
            current.data.reconciliation_required = False
            current.data.refund_id = refund_id
            current.data.refund_reason = reason
            current.data.refunded_by = actor_id
            current.data.refunded_at = refunded_at
            await uow.replace_transaction(current)
            return current

        try:
            updated = await self.store.run_atomic(work)
        except StoreError as e:
            logger.critical(f"Reconciliation refund {refund_id} for {transaction_id} not recorded: {e}")
            raise PersistenceError(
                f"Refund issued but not recorded: {e}",
                external_order_id=transaction.data.external_order_id,
                external_payment_id=transaction.data.external_payment_id,
                transaction_id=transaction.id,
            ) from e
        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} was already reconciled", transaction_id=transaction.id)

        logger.info(f"Reconciled {transaction.data.transaction_id} with refund {refund_id} by {actor_id}")
        return RefundResult(refund_id=refund_id, transaction=await self._must_get(transaction.id))

    # -- reads --------------------------------------------------------------

    async def get_transaction(self, transaction_id: str, buyer_id: Optional[str] = None) -> Transaction:
        transaction = await transaction_get(self.store, transaction_id)
        if transaction is None or (buyer_id is not None and transaction.data.buyer_id != buyer_id):
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    async def transactions_for_buyer(self, buyer_id: str) -> List[Transaction]:
        _require_text(buyer_id, "buyerId")
        return await transaction_get_by_buyer(self.store, buyer_id)

    async def reconciliation_queue(self) -> List[Transaction]:
        return await transaction_get_requiring_reconciliation(self.store)

    async def payment_status(self, external_order_id: str, buyer_id: Optional[str] = None) -> PaymentStatusView:
        """What the store and the gateway each know about an order."""
        transactions = await transaction_get_by_order(self.store, external_order_id)
        if buyer_id is not None:
            transactions = [t for t in transactions if t.data.buyer_id == buyer_id]
        if not transactions and buyer_id is not None:
            raise NotFoundError(f"No transactions for order {external_order_id}")
        payments = await self.gateway.fetch_payments_for_order(external_order_id)
        return PaymentStatusView(
            external_order_id=external_order_id,
            transactions=transactions,
            payments=payments,
        )

    # -- journal ------------------------------------------------------------

    async def _journal(self, kind: str, transaction: Transaction) -> None:
        """Best-effort: the store is authoritative, the journal is a side record."""
        if self.journal is None:
            return
        try:
            if kind == "refund":
                await self.journal.record_refund(transaction)
            else:
                await self.journal.record_settlement(transaction)
        except Exception as e:
            logger.error(f"Ledger: failed to journal {kind} for {transaction.data.transaction_id}: {e}")
