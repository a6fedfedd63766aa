"""
Hedera EVM Address Transfer Monitor

Watches the Hedera transaction stream for HBAR transfers to a set of EVM
addresses and reports, for every match, whether the sender addressed the
recipient by its raw EVM alias or by its resolved account id.

Components:
- addresses: normalization and the mutable Watchlist
- indexer: envelope decoding, reconciliation, matching, incremental scan
- mirror: mirror node REST and database transports
- monitor: MonitorService wiring and the command line entry point
"""

from .errors import (
    AmbiguousReconciliation,
    DecodeError,
    InvalidAddress,
    MonitorError,
    TransportError,
)
from .types import (
    Address,
    DecodedTransaction,
    DetectionMethod,
    KeyAlias,
    LedgerIdentifier,
    MatchEvent,
    RawAlias,
    ResolvedTransfer,
    TransactionKind,
    TransferInstruction,
    format_hbar,
)
from .addresses import Watchlist, normalize

__version__ = "0.1.0"

__all__ = [
    "AmbiguousReconciliation",
    "DecodeError",
    "InvalidAddress",
    "MonitorError",
    "TransportError",
    "Address",
    "DecodedTransaction",
    "DetectionMethod",
    "KeyAlias",
    "LedgerIdentifier",
    "MatchEvent",
    "RawAlias",
    "ResolvedTransfer",
    "TransactionKind",
    "TransferInstruction",
    "format_hbar",
    "Watchlist",
    "normalize",
]
