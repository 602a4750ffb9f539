from typing import Literal

DuplicateKind = Literal["transaction", "order", "certificate"]


class StoreError(Exception):
    """A ledger store operation failed; the atomic unit was not applied."""

    def __init__(self, message: str, ambiguous: bool = False) -> None:
        self.ambiguous = ambiguous
        super().__init__(message)


class DuplicateKeyError(StoreError):
    """A unique index rejected an insert; nothing in the atomic unit was applied."""

    def __init__(self, kind: DuplicateKind, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"Duplicate {kind} key: {key}")
