"""
Watchlist Matcher

Turns a decoded transaction into MatchEvents for watched addresses.

Matching rules (credits only):
- RawAlias(a), a watched            -> event, sender_used_raw_alias=True
- LedgerIdentifier(id), id bound to
  a watched address                 -> event, sender_used_raw_alias=False
- KeyAlias                          -> never matched

The matcher reads the reconciler but never writes to it; bindings are a
separate step taken by the scanner after matching.
"""

import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from ..types import (
    Address,
    DecodedTransaction,
    DetectionMethod,
    LedgerIdentifier,
    MatchEvent,
    RawAlias,
    ResolvedTransfer,
)
from .reconciler import IdentityReconciler


class WatchlistMatcher:
    """
    Pure matching over one transaction and the current reconciler state.

    Usage:
        matcher = WatchlistMatcher(label_lookup=watchlist.label_for)
        events = matcher.match(decoded, watchlist.snapshot(), reconciler)
    """

    def __init__(self, label_lookup: Optional[Callable[[Address], Optional[str]]] = None):
        self._logger = logging.getLogger("WatchlistMatcher")
        self._label_lookup = label_lookup
        self._stats = {
            "raw_alias_matches": 0,
            "ledger_id_matches": 0,
            "resolved_matches": 0,
        }

    def match(
        self,
        decoded: DecodedTransaction,
        watchlist: FrozenSet[Address],
        reconciler: IdentityReconciler
    ) -> List[MatchEvent]:
        """Match the envelope's credit lines against the watchlist."""
        events: List[MatchEvent] = []

        for transfer in decoded.transfers:
            if transfer.amount <= 0:
                continue

            destination = transfer.destination
            if isinstance(destination, RawAlias):
                address = destination.address
                if address not in watchlist:
                    continue
                ledger_id = reconciler.lookup(address)
                used_raw_alias = True
                self._stats["raw_alias_matches"] += 1

            elif isinstance(destination, LedgerIdentifier):
                address = reconciler.reverse_lookup(destination)
                if address is None or address not in watchlist:
                    continue
                ledger_id = destination
                used_raw_alias = False
                self._stats["ledger_id_matches"] += 1

            else:
                continue

            method = (
                DetectionMethod.ETHEREUM_DATA
                if transfer.ethereum_value is not None
                else DetectionMethod.TRANSACTION_BYTES
            )
            events.append(self._event(
                decoded,
                address=address,
                ledger_id=ledger_id,
                amount=transfer.amount,
                used_raw_alias=used_raw_alias,
                method=method,
                index=transfer.index,
                ethereum_value=transfer.ethereum_value,
            ))

        return events

    def match_resolved(
        self,
        decoded: DecodedTransaction,
        resolved_transfers: Iterable[ResolvedTransfer],
        watchlist: FrozenSet[Address],
        reconciler: IdentityReconciler,
        exclude: Optional[Set[Address]] = None
    ) -> List[MatchEvent]:
        """
        Match the ledger's resolved transfer list against bound addresses.

        Covers credits the envelope pass could not see (missing envelope,
        EVM payload without a foreign decoder). Addresses in `exclude`
        (already matched from the envelope) are skipped.
        """
        exclude = exclude or set()
        events: List[MatchEvent] = []
        matched: Set[Address] = set()

        for index, transfer in enumerate(resolved_transfers):
            if transfer.amount <= 0:
                continue
            address = reconciler.reverse_lookup(transfer.account)
            if address is None or address not in watchlist:
                continue
            if address in exclude or address in matched:
                continue

            matched.add(address)
            self._stats["resolved_matches"] += 1
            events.append(self._event(
                decoded,
                address=address,
                ledger_id=transfer.account,
                amount=transfer.amount,
                used_raw_alias=False,
                method=DetectionMethod.ENTITY_CACHE,
                index=index,
            ))

        return events

    def _event(
        self,
        decoded: DecodedTransaction,
        address: Address,
        ledger_id: Optional[LedgerIdentifier],
        amount: int,
        used_raw_alias: bool,
        method: DetectionMethod,
        index: int,
        ethereum_value: Optional[int] = None
    ) -> MatchEvent:
        return MatchEvent(
            address=address,
            ledger_id=ledger_id,
            amount=amount,
            transaction_id=decoded.transaction_id,
            consensus_timestamp=decoded.consensus_timestamp,
            sender_used_raw_alias=used_raw_alias,
            detection_method=method,
            transfer_index=index,
            kind=decoded.kind,
            label=self._label_lookup(address) if self._label_lookup else None,
            memo=decoded.memo,
            transaction_hash=decoded.transaction_hash,
            ethereum_value=ethereum_value,
        )

    def get_stats(self) -> Dict:
        return dict(self._stats)
