import secrets
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from models.entities.couchbase.transactions import Transaction
from models.stores.exceptions import DuplicateKeyError
from utils import log

from .errors import CertificateIssueError

logger = log.get_logger(__name__)

R = TypeVar("R")

DEFAULT_MAX_ATTEMPTS = 5


class CertificateIssuer:
    """Stamps ``CERT-{year}-{NNNN}`` numbers on completed transactions.

    Numbers are random draws; the store's unique index on the certificate
    number decides whether a draw is free. A clash triggers a new draw, up
    to ``max_attempts`` draws.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Optional[Callable[[], datetime]] = None,
        randbelow: Optional[Callable[[int], int]] = None,
    ) -> None:
        self.max_attempts = max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._randbelow = randbelow or secrets.randbelow

    def draw(self) -> str:
        return f"CERT-{self._clock().year}-{self._randbelow(10000):04d}"

    @staticmethod
    def path_for(transaction: Transaction) -> str:
        return f"/certificates/{transaction.id}.pdf"

    async def issue(
        self,
        transaction: Transaction,
        persist: Callable[[Transaction], Awaitable[R]],
    ) -> R:
        """Attach a certificate to ``transaction`` and persist it.

        ``persist`` must store the transaction atomically and raise
        DuplicateKeyError(kind="certificate") when the number is taken.
        """
        for attempt in range(1, self.max_attempts + 1):
            transaction.data.certificate_number = self.draw()
            transaction.data.certificate_path = self.path_for(transaction)
            try:
                return await persist(transaction)
            except DuplicateKeyError as e:
                if e.kind != "certificate":
                    raise
                logger.warning(
                    f"Certificate number {e.key} already issued "
                    f"(attempt {attempt}/{self.max_attempts}), drawing again"
                )

        transaction.data.certificate_number = None
        transaction.data.certificate_path = None
        logger.critical(
            f"Gave up issuing a certificate for order {transaction.data.external_order_id} "
            f"payment {transaction.data.external_payment_id} after {self.max_attempts} draws"
        )
        raise CertificateIssueError(
            f"Could not issue a unique certificate number after {self.max_attempts} attempts",
            external_order_id=transaction.data.external_order_id,
            external_payment_id=transaction.data.external_payment_id,
        )
