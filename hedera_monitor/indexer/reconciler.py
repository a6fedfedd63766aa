"""
Identity Reconciler

Bidirectional map between watched EVM addresses and the entity ids the
ledger assigns to them. A binding is written once and never revised: the
ledger never reassigns an id, so the first writer is always right.

Resolution sources (outside the reconciler itself):
- Entity lookup: mirror node answers address -> id directly
- SettlementResolver: best-effort inference from the resolved transfer list
  of the transaction that lazily created the account
"""

import logging
import time
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import AmbiguousReconciliation
from ..types import Address, LedgerIdentifier, ResolvedTransfer


# Fee collection and staking reward accounts credited on most transactions
DEFAULT_SYSTEM_ACCOUNTS = ("0.0.98", "0.0.800", "0.0.801")


class IdentityReconciler:
    """
    Append-only Address <-> LedgerIdentifier store.

    bind() is atomic and first-writer-wins, so several scanners may share
    one reconciler without extra locking around lookup/bind pairs.

    Usage:
        reconciler = IdentityReconciler()
        reconciler.bind(address, LedgerIdentifier.parse("0.0.12345"))
        reconciler.lookup(address)            # 0.0.12345
        reconciler.reverse_lookup(ledger_id)  # address
    """

    def __init__(self):
        self._logger = logging.getLogger("IdentityReconciler")
        self._lock = Lock()
        self._by_address: Dict[Address, LedgerIdentifier] = {}
        self._by_id: Dict[LedgerIdentifier, Address] = {}
        self._bound_at: Dict[Address, float] = {}
        self._listeners: List[Callable[[Address, LedgerIdentifier], None]] = []
        self._stats = {
            "bindings": 0,
            "ignored_rebinds": 0,
            "conflicts": 0,
            "listener_errors": 0,
        }

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(self, address: Address) -> Optional[LedgerIdentifier]:
        with self._lock:
            return self._by_address.get(address)

    def reverse_lookup(self, ledger_id: LedgerIdentifier) -> Optional[Address]:
        with self._lock:
            return self._by_id.get(ledger_id)

    def is_bound(self, address: Address) -> bool:
        return self.lookup(address) is not None

    def unbound(self, addresses: Iterable[Address]) -> List[Address]:
        """Addresses from `addresses` that have no binding yet, sorted."""
        with self._lock:
            return sorted(a for a in addresses if a not in self._by_address)

    def bindings(self) -> Dict[Address, LedgerIdentifier]:
        with self._lock:
            return dict(self._by_address)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_address)

    # =========================================================================
    # Binding
    # =========================================================================

    def bind(self, address: Address, ledger_id: LedgerIdentifier) -> bool:
        """
        Record that `address` materialized as `ledger_id`.

        Returns True if a new binding was written, False if the address was
        already bound (to any id) or the id already belongs to another
        address. Existing bindings are never changed.
        """
        with self._lock:
            existing = self._by_address.get(address)
            owner = self._by_id.get(ledger_id)
            created = existing is None and owner is None
            if created:
                self._by_address[address] = ledger_id
                self._by_id[ledger_id] = address
                self._bound_at[address] = time.time()
                self._stats["bindings"] += 1
            elif existing == ledger_id:
                self._stats["ignored_rebinds"] += 1
            else:
                self._stats["conflicts"] += 1

        if created:
            self._logger.info(f"Binding recorded: {address.prefixed} -> {ledger_id}")
            for listener in list(self._listeners):
                try:
                    listener(address, ledger_id)
                except Exception as e:
                    self._stats["listener_errors"] += 1
                    self._logger.error(f"Binding listener {listener!r} failed for {address.prefixed}: {e}")
            return True

        if existing != ledger_id:
            held_by = f"{address.prefixed} -> {existing}" if existing else f"{owner.prefixed} -> {ledger_id}"
            self._logger.warning(
                f"Ignoring bind {address.prefixed} -> {ledger_id}: already bound as {held_by}"
            )
        return False

    def bound_at(self, address: Address) -> Optional[float]:
        with self._lock:
            return self._bound_at.get(address)

    def add_listener(self, listener: Callable[[Address, LedgerIdentifier], None]):
        """Call `listener(address, ledger_id)` after every new binding."""
        self._listeners.append(listener)

    def get_stats(self) -> Dict:
        with self._lock:
            return dict(self._stats, bound_addresses=len(self._by_address))


class SettlementResolver:
    """
    Best-effort inference of a freshly created account id.

    When a transfer credits a raw alias that has no binding, the ledger
    creates the account in the same transaction. The new id should be the
    credited party whose amount equals the transfer amount, excluding
    fee/system accounts and ids already bound to other addresses.

    Ambiguous settlements (several equal credits to unknown accounts) raise
    AmbiguousReconciliation rather than guessing.
    """

    def __init__(self, system_accounts: Optional[Sequence[str]] = None):
        self._logger = logging.getLogger("SettlementResolver")
        accounts = DEFAULT_SYSTEM_ACCOUNTS if system_accounts is None else system_accounts
        self._system_accounts = frozenset(LedgerIdentifier.parse(a) for a in accounts)

    @property
    def system_accounts(self) -> frozenset:
        return self._system_accounts

    def candidates(
        self,
        amount: int,
        resolved_transfers: Iterable[ResolvedTransfer],
        reconciler: IdentityReconciler
    ) -> List[LedgerIdentifier]:
        found: List[LedgerIdentifier] = []
        for transfer in resolved_transfers:
            if transfer.amount <= 0 or transfer.amount != amount:
                continue
            if transfer.account in self._system_accounts:
                continue
            if reconciler.reverse_lookup(transfer.account) is not None:
                continue
            if transfer.account not in found:
                found.append(transfer.account)
        return found

    def resolve(
        self,
        address: Address,
        amount: int,
        resolved_transfers: Iterable[ResolvedTransfer],
        reconciler: IdentityReconciler
    ) -> Optional[LedgerIdentifier]:
        """
        Infer the id for `address` from one settlement. Does not bind.

        Returns None when no credit matches.

        Raises:
            AmbiguousReconciliation: more than one credit matches
        """
        found = self.candidates(amount, resolved_transfers, reconciler)
        if not found:
            return None
        if len(found) > 1:
            raise AmbiguousReconciliation(address, found)
        return found[0]
