"""
Mirror Node Transport Types

Boundary records and interfaces between the scanner and whatever supplies
transactions (REST API or a mirror node database).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..types import Address, LedgerIdentifier, ResolvedTransfer, TransactionKind


SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class RawTransaction:
    """One transaction as delivered by a source, before decoding."""
    transaction_id: str
    consensus_timestamp: int  # ns
    envelope: Optional[bytes]
    result: str = SUCCESS
    kind: TransactionKind = TransactionKind.CRYPTO_TRANSFER
    transaction_hash: Optional[str] = None
    resolved_transfers: Tuple[ResolvedTransfer, ...] = ()
    memo: Optional[str] = None

    @property
    def successful(self) -> bool:
        return self.result == SUCCESS


class TransactionSource(ABC):
    """
    Supplies ordered pages of transactions after a position marker.

    Implementations raise TransportError on fetch failure.
    """

    name = "source"

    async def start(self):
        """Acquire resources (sessions, connections)."""

    async def stop(self):
        """Release resources."""

    @abstractmethod
    async def fetch_transactions(
        self,
        after: int,
        kinds: Sequence[TransactionKind],
        limit: int
    ) -> List[RawTransaction]:
        """Transactions with consensus_timestamp > after, ascending, at most `limit`."""


class EntityLookup(ABC):
    """Resolves an EVM address to its account id once the account exists."""

    @abstractmethod
    async def lookup_account(self, address: Address) -> Optional[LedgerIdentifier]:
        """Account id for `address`, or None if it has not been created."""
