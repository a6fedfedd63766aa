"""
Hedera Transfer Indexer

Decodes transaction envelopes and turns the transaction feed into matched
transfer events for watched EVM addresses.

Components:
- EnvelopeDecoder: Transaction -> SignedTransaction -> TransactionBody
- EthereumPayloadDecoder: embedded EVM transactions (RLP)
- IdentityReconciler: EVM address <-> account id bindings
- SettlementResolver: infers ids of lazily created accounts
- WatchlistMatcher: decoded transfers -> MatchEvents
- IncrementalScanner: watermark-driven polling with a bounded seen-set
- WatermarkCheckpoint: optional resume position on disk
"""

from .envelope import EnvelopeDecoder, EnvelopeLayout, UnwrappedEnvelope
from .ethereum import EthereumPayload, EthereumPayloadDecoder
from .reconciler import IdentityReconciler, SettlementResolver, DEFAULT_SYSTEM_ACCOUNTS
from .matcher import WatchlistMatcher
from .scanner import IncrementalScanner, ScanCursor, ScannerConfig
from .checkpoint import WatermarkCheckpoint

__all__ = [
    "EnvelopeDecoder",
    "EnvelopeLayout",
    "UnwrappedEnvelope",
    "EthereumPayload",
    "EthereumPayloadDecoder",
    "IdentityReconciler",
    "SettlementResolver",
    "DEFAULT_SYSTEM_ACCOUNTS",
    "WatchlistMatcher",
    "IncrementalScanner",
    "ScanCursor",
    "ScannerConfig",
    "WatermarkCheckpoint",
]
