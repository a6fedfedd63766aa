"""
Hedera EVM Address Transfer Monitor

Wires a mirror node source, the envelope decoder, the identity reconciler
and the incremental scanner together, and provides the command line entry
point.

Commands:
    hedera-monitor scan     poll the mirror node and report matched transfers
    hedera-monitor decode   inspect one transaction's envelope
"""

import asyncio
import logging
import signal
from typing import Callable, Dict, List, Optional

from .addresses import Watchlist
from .config import MonitorConfig
from .indexer.checkpoint import WatermarkCheckpoint
from .indexer.envelope import EnvelopeDecoder
from .indexer.ethereum import EthereumPayloadDecoder
from .indexer.matcher import WatchlistMatcher
from .indexer.reconciler import IdentityReconciler, SettlementResolver
from .indexer.scanner import IncrementalScanner
from .mirror.db_source import MirrorDatabaseSource
from .mirror.rest_source import MirrorRestSource
from .mirror.types import EntityLookup, TransactionSource
from .sinks import JsonLinesSink, LoggingSink
from .types import Address, LedgerIdentifier, MatchEvent, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


def build_source(config: MonitorConfig) -> TransactionSource:
    if config.source == "db":
        return MirrorDatabaseSource(config.db_config())
    return MirrorRestSource(config.rest_config())


class MonitorService:
    """
    Long-running monitor.

    Usage:
        service = MonitorService(MonitorConfig.from_env())
        service.add_sink(my_handler)
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: MonitorConfig,
        watchlist: Optional[Watchlist] = None,
        source: Optional[TransactionSource] = None,
        reconciler: Optional[IdentityReconciler] = None,
        on_account_created: Optional[Callable[[Address, LedgerIdentifier], None]] = None
    ):
        self.config = config
        self._logger = logging.getLogger("MonitorService")

        self.watchlist = watchlist if watchlist is not None else config.build_watchlist()
        self.source = source or build_source(config)
        self.reconciler = reconciler or IdentityReconciler()
        self.reconciler.add_listener(self._on_binding)
        self._on_account_created = on_account_created

        self.decoder = EnvelopeDecoder(foreign_decoder=EthereumPayloadDecoder())

        self.checkpoint = WatermarkCheckpoint(config.checkpoint_path) if config.checkpoint_path else None

        self.scanner = IncrementalScanner(
            source=self.source,
            watchlist=self.watchlist,
            reconciler=self.reconciler,
            decoder=self.decoder,
            matcher=WatchlistMatcher(label_lookup=self.watchlist.label_for),
            resolver=SettlementResolver(config.system_accounts),
            entity_lookup=self.source if isinstance(self.source, EntityLookup) else None,
            config=config.scanner_config(),
            start_watermark=self._start_watermark(),
            checkpoint=self.checkpoint,
        )

        # Bindings found during bootstrap are pre-existing accounts
        self._bootstrapped = False
        self._stop_event: Optional[asyncio.Event] = None

    def _start_watermark(self) -> int:
        if self.config.start_timestamp is not None:
            return self.config.start_timestamp
        if self.checkpoint is not None:
            saved = self.checkpoint.load()
            if saved is not None:
                return saved
        return self.config.initial_watermark()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def add_sink(self, sink: Callable[[MatchEvent], None]):
        self.scanner.add_sink(sink)

    async def start(self):
        await self.source.start()

        self._logger.info(f"Watching {len(self.watchlist)} addresses")
        for address, label in sorted(self.watchlist.labels().items()):
            self._logger.info(f"  {address.prefixed}{f' ({label})' if label else ''}")

        bound = await self.scanner.resolve_unbound(force=True)
        self._bootstrapped = True
        unbound = self.reconciler.unbound(self.watchlist.snapshot())
        self._logger.info(
            f"Entity cache: {bound} existing accounts, {len(unbound)} not yet created"
        )

        await self.scanner.start()

    async def stop(self):
        await self.scanner.stop()
        await self.source.stop()
        self._logger.info(f"Monitor stopped: {self.get_stats()['scanner']}")

    async def run_forever(self):
        """Run until SIGINT/SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except (NotImplementedError, RuntimeError, ValueError):
                # Signal handlers can only be set in the main thread on Unix
                self._logger.warning("Signal handlers not set (not in main thread)")

        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    def request_stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    # =========================================================================
    # Watchlist
    # =========================================================================

    def add_address(self, address, label: Optional[str] = None) -> Address:
        """Watch another address; takes effect from the next cycle."""
        return self.watchlist.add(address, label)

    def remove_address(self, address) -> bool:
        return self.watchlist.remove(address)

    def _on_binding(self, address: Address, ledger_id: LedgerIdentifier):
        if not self._bootstrapped or address not in self.watchlist:
            return
        label = self.watchlist.label_for(address)
        self._logger.info(
            f"ACCOUNT CREATED: {address.prefixed}{f' ({label})' if label else ''} is now {ledger_id}"
        )
        if self._on_account_created:
            try:
                self._on_account_created(address, ledger_id)
            except Exception as e:
                self._logger.error(f"Account-created callback failed for {address.prefixed}: {e}")

    def get_stats(self) -> Dict:
        stats = {
            "scanner": self.scanner.get_stats(),
            "decoder": self.decoder.get_stats(),
            "reconciler": self.reconciler.get_stats(),
        }
        source_stats = getattr(self.source, "get_stats", None)
        if source_stats:
            stats["source"] = source_stats()
        return stats


# =============================================================================
# CLI
# =============================================================================

def generate_addresses(count: int) -> List[Dict[str, str]]:
    """Fresh ECDSA keys whose addresses have never been seen on chain."""
    from eth_account import Account

    generated = []
    for i in range(count):
        account = Account.create()
        generated.append({
            "address": account.address,
            "private_key": account.key.hex(),
            "label": f"Generated {i + 1}",
        })
    return generated


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None):
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _scan(args) -> int:
    overrides = {}
    if args.source:
        overrides["source"] = args.source
    if args.mirror_url:
        overrides["mirror_node_url"] = args.mirror_url
    if args.start:
        overrides["start_timestamp"] = args.start
    if args.lookback is not None:
        overrides["lookback_seconds"] = args.lookback
    if args.interval_ms is not None:
        overrides["polling_interval"] = args.interval_ms / 1000.0
    if args.checkpoint:
        overrides["checkpoint_path"] = args.checkpoint
    if args.watchlist_file:
        overrides["watchlist_file"] = args.watchlist_file
    if args.watch:
        overrides["watched"] = ",".join(args.watch)

    config = MonitorConfig.from_env(env_file=args.env_file, **overrides)
    watchlist = config.build_watchlist()

    if args.generate:
        for entry in generate_addresses(args.generate):
            watchlist.add(entry["address"], entry["label"])
            if args.show_keys:
                print(f"{entry['label']}: {entry['address']} key={entry['private_key']}")

    service = MonitorService(config, watchlist=watchlist)
    service.add_sink(LoggingSink())
    if args.json:
        service.add_sink(JsonLinesSink())

    logger.info(
        f"Monitoring via {config.source} from {format_timestamp(service.scanner.cursor.watermark)}, "
        f"polling every {config.polling_interval:.1f}s"
    )
    asyncio.run(service.run_forever())
    return 0


def _decode(args) -> int:
    from .debug_tx import TransactionInspector, format_report

    config = MonitorConfig.from_env(env_file=args.env_file)
    inspector = TransactionInspector(args.mirror_url or config.mirror_node_url)
    report = inspector.inspect(args.transaction_id)
    print(format_report(report))
    return 0 if report.found else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Hedera EVM address transfer monitor')
    parser.add_argument('--env-file', default=None, help='Path to .env file')
    parser.add_argument('--log-file', default=None, help='Also write logs to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command')

    scan = subparsers.add_parser('scan', help='Poll for transfers to watched addresses')
    scan.add_argument('--source', choices=['rest', 'db'], default=None)
    scan.add_argument('--mirror-url', default=None)
    scan.add_argument('--watch', action='append', metavar='ADDR[:LABEL]',
                      help='Address to watch (repeatable, replaces WATCHED_EVM_ADDRESSES)')
    scan.add_argument('--watchlist-file', default=None, help='YAML file of address: label')
    scan.add_argument('--generate', type=int, default=0, metavar='N',
                      help='Watch N freshly generated addresses')
    scan.add_argument('--show-keys', action='store_true',
                      help='Print private keys of generated addresses (testnet only)')
    scan.add_argument('--start', default=None, help='Start after this consensus timestamp (S.N)')
    scan.add_argument('--lookback', type=int, default=None, help='Seconds before now to start from')
    scan.add_argument('--interval-ms', type=int, default=None, help='Polling interval')
    scan.add_argument('--checkpoint', default=None, help='Watermark checkpoint file')
    scan.add_argument('--json', action='store_true', help='Print events as JSON lines')

    decode = subparsers.add_parser('decode', help='Inspect one transaction envelope')
    decode.add_argument('transaction_id')
    decode.add_argument('--mirror-url', default=None)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    if args.command == 'decode':
        return _decode(args)
    if args.command == 'scan':
        if args.start:
            args.start = parse_timestamp(args.start)
        return _scan(args)

    parser.print_help()
    return 2


if __name__ == '__main__':
    raise SystemExit(main())
