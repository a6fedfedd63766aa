"""
Incremental Scanner

Turns a polled transaction feed into an ordered, deduplicated stream of
MatchEvents.

Cycle:
    Fetching   - resolve unbound watched addresses (rate limited), then fetch
                 transactions after the watermark. Only phase that awaits.
    Processing - for each transaction in ascending order: skip if seen, else
                 decode, match, reconcile, emit, mark seen. Then commit the
                 watermark and trim the seen-set.

A fetch failure leaves the cursor untouched; the same window is retried on
the next cycle.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from ..addresses import Watchlist
from ..errors import AmbiguousReconciliation, DecodeError, TransportError
from ..types import (
    DecodedTransaction,
    MatchEvent,
    TransactionKind,
    format_timestamp,
)
from ..mirror.types import EntityLookup, RawTransaction, TransactionSource
from .checkpoint import WatermarkCheckpoint
from .envelope import EnvelopeDecoder
from .matcher import WatchlistMatcher
from .reconciler import IdentityReconciler, SettlementResolver


@dataclass
class ScannerConfig:
    """Configuration for the incremental scanner."""
    polling_interval: float = 3.0  # seconds between cycles
    batch_limit: int = 100

    # Seen-set bounds
    max_seen: int = 10_000
    seen_trim_target: int = 5_000

    # Entity lookups for unbound watched addresses
    resolve_interval: float = 30.0

    kinds: Tuple[TransactionKind, ...] = (
        TransactionKind.CRYPTO_TRANSFER,
        TransactionKind.ETHEREUM_TRANSACTION,
    )

    # Progress line every N polls (0 = off)
    log_cycle_interval: int = 20


class ScanCursor:
    """
    Watermark plus bounded seen-set.

    The watermark never decreases. Seen identifiers are kept in processing
    order so trimming drops the oldest first, and never drops an identifier
    whose position ties the watermark (the next fetch may return it again).
    """

    def __init__(self, watermark: int = 0, max_seen: int = 10_000, trim_target: int = 5_000):
        if trim_target > max_seen:
            raise ValueError("trim_target must not exceed max_seen")
        self._watermark = int(watermark)
        self._seen: "OrderedDict[str, int]" = OrderedDict()
        self.max_seen = max_seen
        self.trim_target = trim_target

    @property
    def watermark(self) -> int:
        return self._watermark

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def mark_seen(self, transaction_id: str, position: int):
        self._seen[transaction_id] = position

    def commit(self, pending: int) -> int:
        """Advance the watermark to `pending` (never backwards)."""
        if pending > self._watermark:
            self._watermark = pending
        return self._watermark

    def trim(self) -> int:
        """Shrink the seen-set once it exceeds max_seen. Returns entries dropped."""
        if len(self._seen) <= self.max_seen:
            return 0

        dropped = 0
        while len(self._seen) > self.trim_target:
            oldest_id, position = next(iter(self._seen.items()))
            if position >= self._watermark:
                break
            del self._seen[oldest_id]
            dropped += 1
        return dropped


class IncrementalScanner:
    """
    Polls a TransactionSource and emits MatchEvents to registered sinks.

    Usage:
        scanner = IncrementalScanner(source, watchlist, reconciler, decoder=decoder)
        scanner.add_sink(LoggingSink())
        await scanner.start()
        ...
        await scanner.stop()

    Or drive cycles manually:
        events = await scanner.poll_once()
    """

    def __init__(
        self,
        source: TransactionSource,
        watchlist: Watchlist,
        reconciler: IdentityReconciler,
        decoder: Optional[EnvelopeDecoder] = None,
        matcher: Optional[WatchlistMatcher] = None,
        resolver: Optional[SettlementResolver] = None,
        entity_lookup: Optional[EntityLookup] = None,
        config: Optional[ScannerConfig] = None,
        start_watermark: int = 0,
        checkpoint: Optional[WatermarkCheckpoint] = None
    ):
        self.config = config or ScannerConfig()
        self._logger = logging.getLogger("IncrementalScanner")

        self._source = source
        self._watchlist = watchlist
        self._reconciler = reconciler
        self._decoder = decoder or EnvelopeDecoder()
        self._matcher = matcher or WatchlistMatcher(label_lookup=watchlist.label_for)
        self._resolver = resolver or SettlementResolver()
        self._entity_lookup = entity_lookup
        self._checkpoint = checkpoint

        self.cursor = ScanCursor(
            watermark=start_watermark,
            max_seen=self.config.max_seen,
            trim_target=self.config.seen_trim_target,
        )

        self._sinks: List[Callable[[MatchEvent], None]] = []

        # State
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._last_resolve: Optional[float] = None

        # Stats
        self._stats = {
            "polls": 0,
            "scanned": 0,
            "duplicates": 0,
            "skipped_unsuccessful": 0,
            "missing_envelopes": 0,
            "matches": 0,
            "native": 0,
            "evm": 0,
            "raw_alias": 0,
            "unresolved": 0,
            "ambiguous": 0,
            "decode_errors": 0,
            "fetch_errors": 0,
            "lookup_errors": 0,
            "sink_errors": 0,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def add_sink(self, sink: Callable[[MatchEvent], None]):
        """Register a consumer called once per MatchEvent."""
        self._sinks.append(sink)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the poll loop in the background."""
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        self._logger.info(
            f"Scanner started at watermark {format_timestamp(self.cursor.watermark)} "
            f"watching {len(self._watchlist)} addresses"
        )

    async def stop(self):
        """Stop after the current cycle finishes."""
        if not self._running:
            return
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        self._save_checkpoint()
        self._logger.info("Scanner stopped")

    async def _run(self):
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                self._logger.exception(f"Scan cycle error: {e}")

            if self.config.log_cycle_interval and self._stats["polls"] % self.config.log_cycle_interval == 0:
                self._log_progress()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.polling_interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # Cycle
    # =========================================================================

    async def poll_once(self) -> List[MatchEvent]:
        """Run one Fetching + Processing cycle. Returns the events emitted."""
        self._stats["polls"] += 1

        await self.resolve_unbound()

        try:
            page = await self._source.fetch_transactions(
                self.cursor.watermark,
                self.config.kinds,
                self.config.batch_limit,
            )
        except TransportError as e:
            self._stats["fetch_errors"] += 1
            self._logger.error(
                f"Fetch failed after {format_timestamp(self.cursor.watermark)}, retrying next cycle: {e}"
            )
            return []

        return self.process_batch(page)

    def process_batch(self, page: List[RawTransaction]) -> List[MatchEvent]:
        """Processing phase. Never awaits."""
        watchlist = self._watchlist.snapshot()
        pending = self.cursor.watermark
        emitted: List[MatchEvent] = []

        for raw in sorted(page, key=lambda t: t.consensus_timestamp):
            if raw.transaction_id in self.cursor:
                self._stats["duplicates"] += 1
                continue

            if not raw.successful:
                self._stats["skipped_unsuccessful"] += 1
            else:
                events = self._process(raw, watchlist)
                for event in events:
                    self._emit(event)
                emitted.extend(events)
                self._stats["scanned"] += 1

            self.cursor.mark_seen(raw.transaction_id, raw.consensus_timestamp)
            pending = max(pending, raw.consensus_timestamp)

        self.cursor.commit(pending)
        dropped = self.cursor.trim()
        if dropped:
            self._logger.debug(f"Trimmed {dropped} seen transaction ids")
        self._save_checkpoint()

        return emitted

    def _process(self, raw: RawTransaction, watchlist) -> List[MatchEvent]:
        decoded = self._decode(raw)

        events = [
            self._reconcile(event, raw)
            for event in self._matcher.match(decoded, watchlist, self._reconciler)
        ]
        matched = {event.address for event in events}
        events.extend(self._matcher.match_resolved(
            decoded,
            raw.resolved_transfers,
            watchlist,
            self._reconciler,
            exclude=matched,
        ))
        return events

    def _decode(self, raw: RawTransaction) -> DecodedTransaction:
        """Decode the envelope, or fall back to a header-only transaction."""
        if raw.envelope:
            try:
                decoded = self._decoder.decode(
                    raw.envelope,
                    consensus_timestamp=raw.consensus_timestamp,
                    transaction_id=raw.transaction_id,
                    transaction_hash=raw.transaction_hash,
                )
                if decoded.memo is None and raw.memo:
                    decoded = replace(decoded, memo=raw.memo)
                return decoded
            except DecodeError as e:
                self._stats["decode_errors"] += 1
                self._logger.warning(f"Skipping envelope of {raw.transaction_id}: {e}")
        else:
            self._stats["missing_envelopes"] += 1

        return DecodedTransaction(
            transaction_id=raw.transaction_id,
            consensus_timestamp=raw.consensus_timestamp,
            kind=raw.kind,
            memo=raw.memo,
            transaction_hash=raw.transaction_hash,
        )

    def _reconcile(self, event: MatchEvent, raw: RawTransaction) -> MatchEvent:
        """Try to bind an unresolved raw-alias credit from its settlement."""
        if event.ledger_id is not None or not event.sender_used_raw_alias:
            return event

        try:
            ledger_id = self._resolver.resolve(
                event.address,
                event.amount,
                raw.resolved_transfers,
                self._reconciler,
            )
        except AmbiguousReconciliation as e:
            self._stats["ambiguous"] += 1
            self._logger.warning(f"{raw.transaction_id}: {e}")
            return event

        if ledger_id is None:
            return event

        self._reconciler.bind(event.address, ledger_id)
        return replace(event, ledger_id=self._reconciler.lookup(event.address))

    def _emit(self, event: MatchEvent):
        self._stats["matches"] += 1
        if event.kind == TransactionKind.ETHEREUM_TRANSACTION:
            self._stats["evm"] += 1
        else:
            self._stats["native"] += 1
        if event.sender_used_raw_alias:
            self._stats["raw_alias"] += 1
        if event.ledger_id is None:
            self._stats["unresolved"] += 1

        for sink in self._sinks:
            try:
                sink(event)
            except Exception as e:
                self._stats["sink_errors"] += 1
                self._logger.error(f"Sink {sink!r} failed on {event.transaction_id}: {e}")

    # =========================================================================
    # Entity resolution
    # =========================================================================

    async def resolve_unbound(self, force: bool = False) -> int:
        """
        Look up watched addresses that have no binding yet.

        Rate limited by resolve_interval unless `force`. Returns the number
        of new bindings.
        """
        if self._entity_lookup is None:
            return 0

        now = time.monotonic()
        if not force and self._last_resolve is not None:
            if now - self._last_resolve < self.config.resolve_interval:
                return 0
        self._last_resolve = now

        bound = 0
        for address in self._reconciler.unbound(self._watchlist.snapshot()):
            try:
                ledger_id = await self._entity_lookup.lookup_account(address)
            except TransportError as e:
                self._stats["lookup_errors"] += 1
                self._logger.warning(f"Entity lookup failed for {address.prefixed}: {e}")
                break
            if ledger_id is not None and self._reconciler.bind(address, ledger_id):
                bound += 1
        return bound

    # =========================================================================
    # Checkpoint / Stats
    # =========================================================================

    def _save_checkpoint(self):
        if self._checkpoint is not None:
            self._checkpoint.save(self.cursor.watermark)

    def _log_progress(self):
        s = self._stats
        self._logger.info(
            f"polls={s['polls']} scanned={s['scanned']} matches={s['matches']} "
            f"native={s['native']} evm={s['evm']} "
            f"watermark={format_timestamp(self.cursor.watermark)}"
        )

    def get_stats(self) -> Dict:
        return dict(
            self._stats,
            running=self._running,
            watermark=format_timestamp(self.cursor.watermark),
            seen=len(self.cursor),
            watched=len(self._watchlist),
            bound=len(self._reconciler),
        )
